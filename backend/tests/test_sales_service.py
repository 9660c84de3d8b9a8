"""
POS sale drafts, line editing and atomic completion.
"""

import pytest

from posengine.events import SALE_COMPLETED, INVENTORY_UPDATED
from posengine.models import AuditLog, Payment, Sale, StockMovement, StoreComplianceProfile
from posengine.services import register_service, sales_service
from posengine.services.errors import SaleError, ShiftError
from posengine.services.inventory_service import get_quantity_on_hand


def _draft_with_line(org, register, product, qty=2, actor_id=1):
    sale = sales_service.create_draft(org.id, register.id, actor_id)
    sales_service.add_line(org.id, sale.id, product.id, qty, actor_id)
    return sales_service.get_sale(org.id, sale.id)


# =============================================================================
# DRAFTS
# =============================================================================

def test_create_draft_requires_open_shift(db_session, org_a, register_a):
    with pytest.raises(ShiftError) as exc:
        sales_service.create_draft(org_a.id, register_a.id, 1)
    assert exc.value.message_key == "posShiftNotOpen"


def test_create_draft_mints_number_and_audits(db_session, org_a, register_a, open_shift):
    sale = sales_service.create_draft(org_a.id, register_a.id, 1, customer_name="Ann")

    assert sale.number == "S-000001"
    assert sale.status == "DRAFT"
    assert sale.shift_id == open_shift["id"]
    assert sale.customer_name == "Ann"
    assert db_session.query(AuditLog).filter_by(action="POS_SALE_CREATE", entity_id=sale.id).count() == 1


def test_create_draft_reuses_actor_draft(db_session, org_a, register_a, open_shift):
    first = sales_service.create_draft(org_a.id, register_a.id, 1)
    again = sales_service.create_draft(org_a.id, register_a.id, 1)
    other_actor = sales_service.create_draft(org_a.id, register_a.id, 2)

    assert again.id == first.id
    assert other_actor.id != first.id
    assert sales_service.get_active_draft(org_a.id, register_a.id, 2).id == other_actor.id


def test_seed_lines_merge_repeats(db_session, org_a, register_a, product_a, product_b, open_shift):
    sale = sales_service.create_draft(org_a.id, register_a.id, 1, lines=[
        {"product_id": product_a.id, "qty": 1},
        {"product_id": product_b.id, "qty": 2},
        {"product_id": product_a.id, "qty": 2},
    ])

    lines = {line.product_id: line for line in sale.lines}
    assert len(lines) == 2
    assert lines[product_a.id].qty == 3
    assert lines[product_a.id].line_total_cents == 45000
    assert lines[product_a.id].unit_cost_cents == 9000
    assert lines[product_b.id].unit_cost_cents is None
    assert sale.total_cents == 45000 + 4000
    assert sale.subtotal_cents == sale.total_cents


def test_draft_index_allows_one_draft_per_creator(db_session, org_a, store_a, register_a, open_shift):
    from sqlalchemy.exc import IntegrityError

    sales_service.create_draft(org_a.id, register_a.id, 1)
    db_session.add(Sale(org_id=org_a.id, store_id=store_a.id, register_id=register_a.id,
                        shift_id=open_shift["id"], number="S-999999", status="DRAFT", created_by=1))
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()


def test_concurrent_draft_create_returns_winner(db_session, org_a, register_a, open_shift, monkeypatch):
    """Both requests missed the existing draft; the loser gets the winner back."""
    first_id = sales_service.create_draft(org_a.id, register_a.id, 1).id
    monkeypatch.setattr(sales_service, "_find_draft", lambda *args: None)

    second = sales_service.create_draft(org_a.id, register_a.id, 1)

    assert second.id == first_id
    assert db_session.query(Sale).filter_by(status="DRAFT").count() == 1
    assert db_session.query(AuditLog).filter_by(action="POS_SALE_CREATE").count() == 1


# =============================================================================
# LINES
# =============================================================================

def test_add_line_prices_and_recomputes(db_session, org_a, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a, qty=2)

    assert sale.total_cents == 30000
    line = sale.lines[0]
    assert line.unit_price_cents == 15000
    assert line.line_cost_total_cents == 18000


def test_duplicate_line_rejected(db_session, org_a, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a)

    with pytest.raises(SaleError) as exc:
        sales_service.add_line(org_a.id, sale.id, product_a.id, 1, 1)
    assert exc.value.message_key == "duplicateLineItem"
    assert exc.value.status_code == 409


@pytest.mark.parametrize("qty", [0, -1, 1.5, "2", True, None])
def test_invalid_quantity_rejected(db_session, org_a, register_a, product_a, open_shift, qty):
    sale = sales_service.create_draft(org_a.id, register_a.id, 1)

    with pytest.raises(SaleError) as exc:
        sales_service.add_line(org_a.id, sale.id, product_a.id, qty, 1)
    assert exc.value.message_key == "invalidQuantity"


def test_update_and_remove_line(db_session, org_a, register_a, product_a, product_b, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)
    line_b = sales_service.add_line(org_a.id, sale.id, product_b.id, 1, 1)

    sales_service.update_line_qty(org_a.id, line_b.id, 5, 1)
    assert sales_service.get_sale(org_a.id, sale.id).total_cents == 15000 + 5 * 2000

    sale_id = sales_service.remove_line(org_a.id, line_b.id, 1)
    assert sale_id == sale.id
    refreshed = sales_service.get_sale(org_a.id, sale.id)
    assert refreshed.total_cents == 15000
    assert len(refreshed.lines) == 1

    actions = [log.action for log in db_session.query(AuditLog).filter_by(entity="Sale").order_by(AuditLog.id)]
    assert "POS_SALE_LINE_UPDATE" in actions
    assert "POS_SALE_LINE_REMOVE" in actions


def test_cross_org_line_access_forbidden(db_session, org_a, org_b, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a)

    with pytest.raises(SaleError) as exc:
        sales_service.update_line_qty(org_b.id, sale.lines[0].id, 3, 1)
    assert exc.value.status_code == 403


# =============================================================================
# COMPLETION
# =============================================================================

def test_simple_sale_scenario(db_session, org_a, store_a, register_a, product_a, open_shift, events):
    """Opening 1000, two units at 150, paid 300 cash: expected cash 1300."""
    events.clear()
    sale = _draft_with_line(org_a, register_a, product_a, qty=2)

    result = sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount": "300.00"}], 1, "complete-1")

    assert result["status"] == "COMPLETED"
    assert result["replayed"] is False
    assert get_quantity_on_hand(store_a.id, product_a.id) == -2

    payments = db_session.query(Payment).filter_by(sale_id=sale.id).all()
    assert [(p.method, p.amount_cents, p.is_refund) for p in payments] == [("CASH", 30000, False)]

    report = register_service.get_shift_report(org_a.id, open_shift["id"])
    assert report["summary"]["expected_cash_cents"] == 130000

    completed = sales_service.get_sale(org_a.id, sale.id)
    assert completed.completed_event_id == "complete-1"
    assert completed.kkm_status == "NOT_SENT"

    assert [t for t, _ in events] == [INVENTORY_UPDATED, SALE_COMPLETED]
    assert events[1][1]["sale_id"] == sale.id


def test_completion_is_idempotent(db_session, org_a, register_a, product_a, open_shift, events):
    sale = _draft_with_line(org_a, register_a, product_a, qty=2)
    events.clear()
    payments = [{"method": "CASH", "amount_cents": 30000}]

    first = sales_service.complete_sale(org_a.id, sale.id, payments, 1, "same-key")
    second = sales_service.complete_sale(org_a.id, sale.id, payments, 1, "same-key")

    assert second["replayed"] is True
    assert {k: v for k, v in second.items() if k != "replayed"} == {k: v for k, v in first.items() if k != "replayed"}
    assert db_session.query(StockMovement).filter_by(reference_id=sale.id, movement_type="SALE").count() == 1
    assert db_session.query(Payment).filter_by(sale_id=sale.id).count() == 1
    assert [t for t, _ in events].count(SALE_COMPLETED) == 1


def test_completed_sale_with_new_key_is_state_replay(db_session, org_a, register_a, product_a, open_shift, events):
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)
    payments = [{"method": "CARD", "amount_cents": 15000}]
    sales_service.complete_sale(org_a.id, sale.id, payments, 1, "key-a")
    events.clear()

    again = sales_service.complete_sale(org_a.id, sale.id, payments, 1, "key-b")

    assert again["replayed"] is True
    assert again["already_completed"] is True
    assert events == []
    assert db_session.query(Payment).filter_by(sale_id=sale.id).count() == 1


def test_split_tender_inserted_in_order(db_session, org_a, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a, qty=2)

    sales_service.complete_sale(org_a.id, sale.id, [
        {"method": "CARD", "amount_cents": 12000, "provider_ref": "auth-1"},
        {"method": "CASH", "amount_cents": 0},
        {"method": "TRANSFER", "amount": "180.00"},
    ], 1, "split")

    payments = db_session.query(Payment).filter_by(sale_id=sale.id).order_by(Payment.id).all()
    assert [(p.method, p.amount_cents) for p in payments] == [("CARD", 12000), ("TRANSFER", 18000)]
    assert payments[0].provider_ref == "auth-1"


def test_payment_total_must_match_exactly(db_session, org_a, store_a, register_a, product_a, open_shift, events):
    sale = _draft_with_line(org_a, register_a, product_a, qty=2)
    events.clear()

    with pytest.raises(SaleError) as exc:
        sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 29999}], 1, "k")

    assert exc.value.message_key == "posPaymentTotalMismatch"
    assert exc.value.details == {"expected_cents": 30000, "received_cents": 29999}
    assert sales_service.get_sale(org_a.id, sale.id).status == "DRAFT"
    assert get_quantity_on_hand(store_a.id, product_a.id) == 0
    assert db_session.query(Payment).count() == 0
    assert events == []

    # The failed key was not consumed
    result = sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 30000}], 1, "k")
    assert result["replayed"] is False


@pytest.mark.parametrize("payments, message_key", [
    ([], "posPaymentMissing"),
    ([{"method": "CASH", "amount_cents": 0}], "posPaymentMissing"),
    ([{"method": "CRYPTO", "amount_cents": 30000}], "invalidPaymentMethod"),
    ([{"method": "CASH", "amount": "lots"}], "invalidPaymentAmount"),
    (["CASH"], "invalidPayment"),
])
def test_payment_validation(db_session, org_a, register_a, product_a, open_shift, payments, message_key):
    sale = _draft_with_line(org_a, register_a, product_a, qty=2)

    with pytest.raises(SaleError) as exc:
        sales_service.complete_sale(org_a.id, sale.id, payments, 1, "k")
    assert exc.value.message_key == message_key
    assert exc.value.status_code == 400


def test_empty_sale_rejected(db_session, org_a, register_a, open_shift):
    sale = sales_service.create_draft(org_a.id, register_a.id, 1)

    with pytest.raises(SaleError) as exc:
        sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 100}], 1, "k")
    assert exc.value.message_key == "salesOrderEmpty"


def test_complete_after_shift_closed_rejected(db_session, org_a, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)
    register_service.close_shift(org_a.id, open_shift["id"], 100000, 1, "close")

    with pytest.raises(SaleError) as exc:
        sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 15000}], 1, "k")
    assert exc.value.message_key == "posShiftClosed"
    assert exc.value.status_code == 409


def test_cancel_only_from_draft(db_session, org_a, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)

    canceled = sales_service.cancel_sale(org_a.id, sale.id, 1)
    assert canceled.status == "CANCELED"
    assert canceled.canceled_at is not None

    with pytest.raises(SaleError) as exc:
        sales_service.cancel_sale(org_a.id, sale.id, 1)
    assert exc.value.message_key == "posSaleNotEditable"

    with pytest.raises(SaleError):
        sales_service.add_line(org_a.id, sale.id, product_a.id, 1, 1)

    with pytest.raises(SaleError) as exc:
        sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 15000}], 1, "k")
    assert exc.value.message_key == "posSaleNotEditable"


def test_canceled_draft_frees_slot_for_new_draft(db_session, org_a, register_a, open_shift):
    first = sales_service.create_draft(org_a.id, register_a.id, 1)
    sales_service.cancel_sale(org_a.id, first.id, 1)

    second = sales_service.create_draft(org_a.id, register_a.id, 1)
    assert second.id != first.id
    assert second.number == "S-000002"


def test_fiscal_draft_dispatched_after_commit(db_session, org_a, store_a, register_a, product_a, open_shift,
                                              fiscal_adapter):
    db_session.add(StoreComplianceProfile(org_id=org_a.id, store_id=store_a.id, enable_kkm=True,
                                          kkm_mode="ADAPTER", kkm_provider_key="fake"))
    db_session.commit()
    sale = _draft_with_line(org_a, register_a, product_a, qty=2)

    sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 30000}], 1, "k")

    completed = sales_service.get_sale(org_a.id, sale.id)
    assert completed.kkm_status == "SENT"
    assert completed.kkm_receipt_id == f"FR-{completed.number}"
    draft = fiscal_adapter.drafts[0]
    assert draft.lines[0].sku == "PROD-A-001"
    assert draft.lines[0].qty == 2
    assert draft.payments[0].amount_cents == 30000


def test_fiscal_failure_does_not_fail_sale(db_session, org_a, store_a, register_a, product_a, open_shift,
                                           fiscal_adapter):
    fiscal_adapter.fail = True
    db_session.add(StoreComplianceProfile(org_id=org_a.id, store_id=store_a.id, enable_kkm=True,
                                          kkm_mode="ADAPTER", kkm_provider_key="fake"))
    db_session.commit()
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)

    result = sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 15000}], 1, "k")

    assert result["status"] == "COMPLETED"
    completed = sales_service.get_sale(org_a.id, sale.id)
    assert completed.kkm_status == "FAILED"
    assert completed.kkm_raw_json["message"] == "device offline"


def test_fiscal_bookkeeping_error_does_not_fail_committed_sale(db_session, org_a, store_a, register_a, product_a,
                                                               open_shift, events, monkeypatch):
    from sqlalchemy.orm.exc import StaleDataError

    db_session.add(StoreComplianceProfile(org_id=org_a.id, store_id=store_a.id, enable_kkm=True,
                                          kkm_mode="ADAPTER", kkm_provider_key="fake"))
    db_session.commit()
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)

    def stale_dispatch(*args):
        raise StaleDataError("sale row changed by a concurrent retry")

    monkeypatch.setattr(sales_service, "dispatch_fiscalization", stale_dispatch)
    events.clear()

    result = sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 15000}], 1, "k")

    assert result["status"] == "COMPLETED"
    assert result["replayed"] is False
    assert [t for t, _ in events] == [INVENTORY_UPDATED, SALE_COMPLETED]
    assert db_session.get(Sale, sale.id).status == "COMPLETED"
    assert db_session.query(Payment).filter_by(sale_id=sale.id).count() == 1


def test_list_sales_filters_and_returned_totals(db_session, org_a, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)
    sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 15000}], 1, "k")
    sales_service.create_draft(org_a.id, register_a.id, 1, customer_name="Zed")

    completed = sales_service.list_sales(org_a.id, statuses=["COMPLETED"])
    assert completed["total"] == 1
    assert completed["items"][0]["returned_total_cents"] == 0

    found = sales_service.list_sales(org_a.id, search="zed")
    assert [item["customer_name"] for item in found["items"]] == ["Zed"]

    with pytest.raises(SaleError):
        sales_service.list_sales(org_a.id, statuses=["BOGUS"])


def test_sale_detail(db_session, org_a, register_a, product_a, open_shift):
    sale = _draft_with_line(org_a, register_a, product_a, qty=1)
    sales_service.complete_sale(org_a.id, sale.id, [{"method": "CASH", "amount_cents": 15000}], 1, "k")

    detail = sales_service.sale_detail(sales_service.get_sale(org_a.id, sale.id))
    assert len(detail["lines"]) == 1
    assert detail["payments"][0]["amount_cents"] == 15000
    assert detail["returns"] == []
