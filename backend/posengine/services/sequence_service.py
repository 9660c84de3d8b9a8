"""
Per-organization document numbering (S-000123, SR-000123).

WHY: Numbers are minted by one INSERT ... ON CONFLICT DO UPDATE ... RETURNING
statement against organization_counters. The database serializes
concurrent increments on the row, so two completions can never receive
the same number and no read-then-write window exists.
"""

from sqlalchemy.dialects import postgresql, sqlite

from ..extensions import db
from ..models import OrganizationCounter
from .errors import ErrorKind, SequenceError

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

SALE_PREFIX = "S"
RETURN_PREFIX = "SR"


def _increment_counter(org_id: int, column_name: str) -> int:
    dialect = db.session.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise SequenceError("posCounterFailed", ErrorKind.INTERNAL, {"dialect": dialect})

    table = OrganizationCounter.__table__
    column = table.c[column_name]
    stmt = (
        insert(table)
        .values({"org_id": org_id, column_name: 1})
        .on_conflict_do_update(
            index_elements=[table.c.org_id],
            set_={column_name: column + 1},
        )
        .returning(column)
    )
    value = db.session.execute(stmt).scalar()
    if value is None:
        raise SequenceError("posCounterFailed", ErrorKind.INTERNAL, {"org_id": org_id})
    return int(value)


def _format_number(prefix: str, value: int) -> str:
    return f"{prefix}-{value:06d}"


def next_sale_number(org_id: int) -> str:
    return _format_number(SALE_PREFIX, _increment_counter(org_id, "pos_sale_number"))


def next_return_number(org_id: int) -> str:
    return _format_number(RETURN_PREFIX, _increment_counter(org_id, "pos_return_number"))
