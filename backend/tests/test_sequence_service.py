"""Per-organization document numbering."""

from posengine.models import OrganizationCounter
from posengine.services.sequence_service import next_sale_number, next_return_number


def test_sale_numbers_are_sequential_and_padded(db_session, org_a):
    assert next_sale_number(org_a.id) == "S-000001"
    assert next_sale_number(org_a.id) == "S-000002"
    db_session.commit()

    counter = db_session.get(OrganizationCounter, org_a.id)
    assert counter.pos_sale_number == 2
    assert counter.pos_return_number == 0


def test_return_numbers_use_their_own_counter(db_session, org_a):
    next_sale_number(org_a.id)
    assert next_return_number(org_a.id) == "SR-000001"


def test_counters_are_per_organization(db_session, org_a, org_b):
    assert next_sale_number(org_a.id) == "S-000001"
    assert next_sale_number(org_a.id) == "S-000002"
    assert next_sale_number(org_b.id) == "S-000001"


def test_rolled_back_numbers_are_not_consumed(db_session, org_a):
    next_sale_number(org_a.id)
    db_session.commit()
    next_sale_number(org_a.id)
    db_session.rollback()
    assert next_sale_number(org_a.id) == "S-000002"
