from decimal import Decimal

import pytest

from ridebook.utils.money import (
    derive_total,
    format_amount,
    optional_amount,
    surcharges_total,
    to_amount,
    to_multiplier,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, "0.00"),
        ("", "0.00"),
        ("abc", "0.00"),
        ("NaN", "0.00"),
        (True, "0.00"),
        (12, "12.00"),
        (" 7.5 ", "7.50"),
        (10.005, "10.01"),
        (Decimal("2.345"), "2.35"),
        ("1e40", "0.00"),
        (Decimal("-1E+30"), "0.00"),
    ],
)
def test_to_amount_coerces_legacy_values(raw, expected):
    assert to_amount(raw) == Decimal(expected)


def test_optional_amount_keeps_zero_as_none():
    assert optional_amount("0") is None
    assert optional_amount(None) is None
    assert optional_amount("15") == Decimal("15.00")


def test_surcharges_total_ignores_bad_entries():
    items = [
        {"description": "Toll", "amount": "25.00"},
        {"description": "Broken", "amount": "n/a"},
        {"description": "Missing"},
        "not-a-dict",
        {"description": "Wait", "amount": 10},
    ]
    assert surcharges_total(items) == Decimal("35.00")
    assert surcharges_total(None) == Decimal("0.00")


def test_derive_total_floors_at_zero():
    assert derive_total("100", "10", [{"amount": "5"}]) == Decimal("95.00")
    assert derive_total("10", "50", []) == Decimal("0.00")


def test_format_amount():
    assert format_amount(Decimal("25")) == "25.00"
    assert format_amount("junk") == "0.00"


def test_to_multiplier_keeps_four_places():
    assert to_multiplier("1.125") == Decimal("1.1250")
    assert to_multiplier(Decimal("1.33335")) == Decimal("1.3334")
    assert to_multiplier("junk") is None
    assert to_multiplier(None) is None
