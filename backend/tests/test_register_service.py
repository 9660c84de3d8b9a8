"""
Register and shift lifecycle: open/close, X-report, cash movements.
"""

import pytest

from posengine.events import SHIFT_OPENED, SHIFT_CLOSED
from posengine.models import AuditLog, RegisterShift, CashDrawerMovement, IdempotencyRecord, Register
from posengine.services import register_service, sales_service
from posengine.services.errors import RegisterError, ShiftError


def _types(events):
    return [event_type for event_type, _ in events]


# =============================================================================
# REGISTERS
# =============================================================================

def test_create_register_audited(db_session, org_a, store_a):
    register = register_service.create_register(org_a.id, store_a.id, "REG-02", "Back Counter", actor_id=5)

    assert register.id is not None
    assert register.is_active is True
    log = db_session.query(AuditLog).filter_by(action="POS_REGISTER_CREATE").one()
    assert log.entity_id == register.id
    assert log.actor_id == 5


def test_register_code_unique_per_store(db_session, org_a, store_a, store_a2, register_a):
    with pytest.raises(RegisterError) as exc:
        register_service.create_register(org_a.id, store_a.id, "REG-01", "Duplicate")
    assert exc.value.message_key == "posRegisterCodeExists"
    assert exc.value.status_code == 409

    # Same code in another store is fine
    other = register_service.create_register(org_a.id, store_a2.id, "REG-01", "Store 2 counter")
    assert other.store_id == store_a2.id


def test_create_register_in_foreign_store_rejected(db_session, org_b, store_a):
    with pytest.raises(RegisterError) as exc:
        register_service.create_register(org_b.id, store_a.id, "X", "X")
    assert exc.value.message_key == "storeNotFound"


def test_update_register_and_list_with_open_shift(db_session, org_a, register_a, open_shift):
    register_service.update_register(org_a.id, register_a.id, name="Main Counter", actor_id=1)

    listed = register_service.list_registers(org_a.id)
    assert len(listed) == 1
    assert listed[0]["name"] == "Main Counter"
    assert listed[0]["open_shift"]["id"] == open_shift["id"]


# =============================================================================
# OPEN
# =============================================================================

def test_open_shift(db_session, org_a, register_a, events):
    shift, replayed = register_service.open_shift(org_a.id, register_a.id, 50000, 3, "k-open")

    assert replayed is False
    assert shift["status"] == "OPEN"
    assert shift["opening_cash_cents"] == 50000
    assert shift["opened_by"] == 3
    assert _types(events) == [SHIFT_OPENED]
    assert db_session.query(AuditLog).filter_by(action="POS_SHIFT_OPEN").count() == 1


def test_open_shift_replay_returns_original(db_session, org_a, register_a, events):
    first, _ = register_service.open_shift(org_a.id, register_a.id, 50000, 3, "k-open")
    second, replayed = register_service.open_shift(org_a.id, register_a.id, 50000, 3, "k-open")

    assert replayed is True
    assert second == first
    assert db_session.query(RegisterShift).count() == 1
    assert _types(events) == [SHIFT_OPENED]


def test_no_double_open(db_session, org_a, register_a, open_shift):
    with pytest.raises(ShiftError) as exc:
        register_service.open_shift(org_a.id, register_a.id, 0, 3, "another-key")
    assert exc.value.message_key == "posShiftAlreadyOpen"
    assert exc.value.status_code == 409


def test_open_on_inactive_register_rejected(db_session, org_a, register_a):
    register_service.update_register(org_a.id, register_a.id, is_active=False)

    with pytest.raises(ShiftError) as exc:
        register_service.open_shift(org_a.id, register_a.id, 0, 3, "k")
    assert exc.value.message_key == "posRegisterInactive"


def test_open_on_foreign_register_not_found(db_session, org_b, register_a):
    with pytest.raises(ShiftError) as exc:
        register_service.open_shift(org_b.id, register_a.id, 0, 3, "k")
    assert exc.value.status_code == 404


def test_negative_opening_cash_rejected(db_session, org_a, register_a):
    with pytest.raises(ShiftError) as exc:
        register_service.open_shift(org_a.id, register_a.id, -1, 3, "k")
    assert exc.value.message_key == "invalidAmount"


# =============================================================================
# CASH MOVEMENTS
# =============================================================================

def test_record_cash_movement(db_session, org_a, open_shift):
    movement, replayed = register_service.record_cash_movement(
        org_a.id, open_shift["id"], "PAY_IN", 2500, "Float top-up", 1, "cash-1"
    )
    assert replayed is False
    assert movement["movement_type"] == "PAY_IN"
    assert movement["amount_cents"] == 2500

    again, replayed = register_service.record_cash_movement(
        org_a.id, open_shift["id"], "PAY_IN", 2500, "Float top-up", 1, "cash-1"
    )
    assert replayed is True
    assert again["id"] == movement["id"]
    assert db_session.query(CashDrawerMovement).count() == 1
    assert db_session.query(AuditLog).filter_by(action="POS_CASH_DRAWER_MOVEMENT").count() == 1


def test_cash_movement_locks_shift_row(db_session, org_a, open_shift, monkeypatch):
    locked = []
    real_lock = register_service.lock_for_update

    def recording_lock(query):
        locked.append(query.column_descriptions[0]["entity"])
        return real_lock(query)

    monkeypatch.setattr(register_service, "lock_for_update", recording_lock)
    register_service.record_cash_movement(org_a.id, open_shift["id"], "PAY_OUT", 500, "Courier", 1, "cash-lock")

    assert locked == [RegisterShift]


@pytest.mark.parametrize("movement_type, amount, reason, message_key", [
    ("REFUND", 100, "x", "invalidCashMovementType"),
    ("PAY_OUT", 0, "x", "invalidAmount"),
    ("PAY_OUT", 100, "  ", "cashMovementReasonRequired"),
])
def test_cash_movement_validation(db_session, org_a, open_shift, movement_type, amount, reason, message_key):
    with pytest.raises(ShiftError) as exc:
        register_service.record_cash_movement(org_a.id, open_shift["id"], movement_type, amount, reason, 1, "k")
    assert exc.value.message_key == message_key
    assert exc.value.status_code == 400


def test_cash_movement_on_closed_shift_rejected(db_session, org_a, open_shift):
    register_service.close_shift(org_a.id, open_shift["id"], 100000, 1, "close-1")

    with pytest.raises(ShiftError) as exc:
        register_service.record_cash_movement(org_a.id, open_shift["id"], "PAY_IN", 100, "late", 1, "k")
    assert exc.value.message_key == "posShiftClosed"


def test_cash_movement_unknown_shift(db_session, org_a):
    with pytest.raises(ShiftError) as exc:
        register_service.record_cash_movement(org_a.id, 999, "PAY_IN", 100, "x", 1, "k")
    assert exc.value.message_key == "posShiftNotFound"


# =============================================================================
# X-REPORT AND CLOSE
# =============================================================================

def _cash_sale(org, register, product, qty, key, actor_id=1):
    sale = sales_service.create_draft(org.id, register.id, actor_id)
    sales_service.add_line(org.id, sale.id, product.id, qty, actor_id)
    total = sales_service.get_sale(org.id, sale.id).total_cents
    return sales_service.complete_sale(org.id, sale.id, [{"method": "CASH", "amount_cents": total}], actor_id, key)


def test_close_discrepancy_scenario(db_session, org_a, register_a, product_b, events):
    """Opening 500, one cash sale of 200, one pay-out of 50, counted 640."""
    shift, _ = register_service.open_shift(org_a.id, register_a.id, 50000, 1, "open")
    _cash_sale(org_a, register_a, product_b, 10, "sale-1")  # 10 x 20.00
    register_service.record_cash_movement(org_a.id, shift["id"], "PAY_OUT", 5000, "Supplies", 1, "po-1")

    report = register_service.get_shift_report(org_a.id, shift["id"])
    assert report["summary"]["expected_cash_cents"] == 65000

    events.clear()
    closed, replayed = register_service.close_shift(org_a.id, shift["id"], 64000, 1, "close")

    assert replayed is False
    assert closed["status"] == "CLOSED"
    assert closed["expected_cash_cents"] == 65000
    assert closed["closing_cash_counted_cents"] == 64000
    assert closed["discrepancy_cents"] == -1000
    assert _types(events) == [SHIFT_CLOSED]
    assert events[0][1]["discrepancy_cents"] == -1000


def test_report_groups_payments_by_method(db_session, org_a, register_a, product_a, open_shift):
    sale = sales_service.create_draft(org_a.id, register_a.id, 1)
    sales_service.add_line(org_a.id, sale.id, product_a.id, 2, 1)
    sales_service.complete_sale(org_a.id, sale.id, [
        {"method": "CASH", "amount_cents": 10000},
        {"method": "CARD", "amount_cents": 20000},
    ], 1, "split")
    register_service.record_cash_movement(org_a.id, open_shift["id"], "PAY_IN", 1500, "Change", 1, "pi")

    report = register_service.get_shift_report(org_a.id, open_shift["id"])

    assert report["summary"]["sales_count"] == 1
    assert report["summary"]["sales_total_cents"] == 30000
    assert report["summary"]["pay_in_cents"] == 1500
    assert report["payments_by_method"]["CASH"] == {"sales_cents": 10000, "refunds_cents": 0, "net_cents": 10000}
    assert report["payments_by_method"]["CARD"]["sales_cents"] == 20000
    assert report["payments_by_method"]["TRANSFER"]["net_cents"] == 0
    # 1000.00 opening + 15.00 pay-in + 100.00 cash sales
    assert report["summary"]["expected_cash_cents"] == 111500
    assert report["shift"]["expected_cash_cents"] == 111500


def test_close_is_idempotent_by_state(db_session, org_a, open_shift, events):
    first, _ = register_service.close_shift(org_a.id, open_shift["id"], 100000, 1, "close-a")
    events.clear()

    second, replayed = register_service.close_shift(org_a.id, open_shift["id"], 1, 2, "close-b")

    assert replayed is False
    assert second["closing_cash_counted_cents"] == 100000
    assert second["closed_by"] == 1
    assert second["discrepancy_cents"] == first["discrepancy_cents"] == 0
    assert events == []
    assert db_session.query(AuditLog).filter_by(action="POS_SHIFT_CLOSE").count() == 1


def test_close_replay_with_same_key(db_session, org_a, open_shift, events):
    register_service.close_shift(org_a.id, open_shift["id"], 99000, 1, "close-a")
    events.clear()

    result, replayed = register_service.close_shift(org_a.id, open_shift["id"], 99000, 1, "close-a")
    assert replayed is True
    assert result["discrepancy_cents"] == -1000
    assert events == []


def test_reopen_after_close(db_session, org_a, register_a, open_shift):
    register_service.close_shift(org_a.id, open_shift["id"], 100000, 1, "close")
    shift, _ = register_service.open_shift(org_a.id, register_a.id, 0, 1, "open-2")

    assert shift["id"] != open_shift["id"]
    current = register_service.get_current_shift(org_a.id, register_a.id)
    assert current.id == shift["id"]

    listed = register_service.list_shifts(org_a.id, register_id=register_a.id)
    assert listed["total"] == 2


def test_open_shift_index_blocks_second_open_row(db_session, org_a, store_a, register_a, open_shift):
    from sqlalchemy.exc import IntegrityError

    db_session.add(RegisterShift(org_id=org_a.id, store_id=store_a.id, register_id=register_a.id,
                                 status="OPEN", opened_by=1, opening_cash_cents=0))
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()


def test_concurrent_open_surfaces_conflict(db_session, org_a, register_a, open_shift, events, monkeypatch):
    """Both opens passed the open-shift check; the partial index decides."""
    events.clear()
    monkeypatch.setattr(register_service, "get_open_shift", lambda register_id: None)

    with pytest.raises(ShiftError) as exc:
        register_service.open_shift(org_a.id, register_a.id, 0, 2, "open-race")

    assert exc.value.message_key == "posShiftAlreadyOpen"
    assert exc.value.status_code == 409
    assert events == []
    assert db_session.query(RegisterShift).filter_by(register_id=register_a.id, status="OPEN").count() == 1
    assert db_session.query(IdempotencyRecord).filter_by(key="open-race").count() == 0


def test_require_open_shift_checks_register_active(db_session, org_a, register_a, open_shift):
    register = db_session.get(Register, register_a.id)
    register.is_active = False
    db_session.commit()

    with pytest.raises(ShiftError) as exc:
        register_service.require_open_shift(org_a.id, register_a.id)
    assert exc.value.message_key == "posRegisterInactive"
