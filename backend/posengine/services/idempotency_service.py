"""
Idempotency guard for money-moving operations.

WHY: Cashier devices retry on timeouts and buttons get double-tapped. A
caller-supplied key makes the second request a replay: the stored result
of the first is returned and the operation does not run again.

DESIGN:
- Keys are scoped per organization: (org, key, route) is unique, so two
  tenants picking the same key never see each other's results.
- The row is claimed by INSERT before the operation runs and its result is
  written in the same transaction. Either both commit or neither does, so a
  visible record always carries a result.
- Claiming must be the first write of the transaction. When two requests
  race on a new key the loser's INSERT fails on the unique constraint; the
  guard rolls back, re-reads the winner's row and returns it as a replay.
- A key already claimed by another user is a CONFLICT, never a replay.
- fn must return JSON-serializable data.
"""

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import IdempotencyRecord
from .errors import ErrorKind, IdempotencyError

MAX_KEY_LENGTH = 128


def _find_record(org_id: int, key: str, route: str) -> IdempotencyRecord | None:
    return db.session.query(IdempotencyRecord).filter_by(org_id=org_id, key=key, route=route).first()


def _replay(record: IdempotencyRecord, user_id: int | None):
    if record.user_id is not None and user_id is not None and record.user_id != user_id:
        raise IdempotencyError("idempotencyKeyReused", ErrorKind.CONFLICT, {"route": record.route})
    return record.result, True


def run_idempotent(org_id: int, key: str, route: str, user_id: int | None, fn):
    """
    Run fn at most once per (org_id, key, route).

    Returns (result, replayed). Does not commit; the caller owns the
    transaction.
    """
    if not key or not str(key).strip():
        raise IdempotencyError("idempotencyKeyRequired", ErrorKind.BAD_REQUEST)
    key = str(key).strip()
    if len(key) > MAX_KEY_LENGTH:
        raise IdempotencyError("idempotencyKeyTooLong", ErrorKind.BAD_REQUEST, {"max_length": MAX_KEY_LENGTH})

    existing = _find_record(org_id, key, route)
    if existing is not None:
        return _replay(existing, user_id)

    record = IdempotencyRecord(org_id=org_id, key=key, route=route, user_id=user_id)
    db.session.add(record)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        winner = _find_record(org_id, key, route)
        if winner is None:
            raise
        return _replay(winner, user_id)

    result = fn()
    record.result = result
    db.session.flush()
    return result, False
