"""Fixed-point money helpers."""

from decimal import Decimal

import pytest

from posengine.money import (
    amount_cents_from,
    cents_or_zero,
    format_cents,
    line_total_cents,
    round_money,
    to_cents,
)


def test_round_money_half_up():
    assert round_money("1.005") == Decimal("1.01")
    assert round_money(2.675) == Decimal("2.68")
    assert round_money(None) == Decimal("0.00")


def test_to_cents_accepts_major_units():
    assert to_cents("150.50") == 15050
    assert to_cents(150) == 15000
    assert to_cents(Decimal("0.1") + Decimal("0.2")) == 30


@pytest.mark.parametrize("bad", ["abc", "NaN", True, "Infinity"])
def test_to_cents_rejects_garbage(bad):
    with pytest.raises(ValueError):
        to_cents(bad)


def test_cents_helpers():
    assert cents_or_zero(None) == 0
    assert line_total_cents(15000, 3) == 45000
    assert line_total_cents(None, 3) == 0
    assert format_cents(-1050) == "-10.50"


def test_amount_cents_from_prefers_cents_field():
    assert amount_cents_from({"amount_cents": 1234, "amount": "99.00"}, "amount") == 1234
    assert amount_cents_from({"amount": "12.34"}, "amount") == 1234
    assert amount_cents_from({}, "amount") is None


def test_amount_cents_from_rejects_non_integer_cents():
    with pytest.raises(ValueError):
        amount_cents_from({"amount_cents": "12"}, "amount")
    with pytest.raises(ValueError):
        amount_cents_from({"amount_cents": 12.5}, "amount")
