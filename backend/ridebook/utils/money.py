"""Tolerant currency arithmetic for stored booking amounts.

Legacy rows can hold blanks, non-numeric strings or floats in amount
columns and inside the ``surcharges`` JSON list; every helper here coerces
those to zero instead of raising.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest value a Numeric(10, 2) column holds
MAX_AMOUNT = Decimal("99999999.99")
MULTIPLIER_PLACES = Decimal("0.0001")


def _to_decimal(value: Any, places: Decimal) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite():
            return None
        # Huge exponents overflow the context precision here
        return amount.quantize(places, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def to_amount(value: Any) -> Decimal:
    """Return ``value`` as a 2-decimal ``Decimal``; invalid input becomes 0.00."""
    amount = _to_decimal(value, CENT)
    return ZERO if amount is None else amount


def to_multiplier(value: Any) -> Decimal | None:
    """Surge multiplier kept to four places; invalid input becomes ``None``."""
    return _to_decimal(value, MULTIPLIER_PLACES)


def optional_amount(value: Any) -> Decimal | None:
    """Like ``to_amount`` but keeps zero/empty values as ``None`` (invoice style)."""
    amount = to_amount(value)
    return amount if amount > 0 else None


def surcharges_total(surcharges: Iterable[dict] | None) -> Decimal:
    total = ZERO
    for item in surcharges or []:
        if isinstance(item, dict):
            total += to_amount(item.get("amount"))
    return total


def derive_total(regular_price: Any, discount_amount: Any, surcharges: Iterable[dict] | None) -> Decimal:
    """``regular_price - discount_amount + sum(surcharges)``, floored at zero."""
    total = to_amount(regular_price) - to_amount(discount_amount) + surcharges_total(surcharges)
    return max(ZERO, total)


def format_amount(value: Any) -> str:
    return f"{to_amount(value):.2f}"
