"""Booking lifecycle: creation with paired invoice, charges, driver assignment.

Every write that touches pricing, ``surcharges`` or ``payment_status`` must
be followed by ``crud_invoice.sync_invoice_with_booking``. ``update_booking``
does this itself; ``add_additional_charge`` leaves it to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .. import models, schemas
from ..models.base import utcnow
from ..models.booking import BookingStatus, PaymentStatus
from ..utils.errors import (
    BookingCreationError,
    InvalidStateTransition,
    NotFoundException,
    ValidationException,
)
from ..utils.money import (
    CENT,
    ZERO,
    derive_total,
    format_amount,
    surcharges_total,
    to_amount,
    to_multiplier,
)
from ..utils.settings_cache import SettingsCache
from . import crud_invoice, crud_settings

logger = logging.getLogger(__name__)

AMOUNT_FIELDS = frozenset({
    "base_fare",
    "gratuity_amount",
    "airport_fee_amount",
    "surge_pricing_amount",
    "regular_price",
    "discount_percentage",
    "discount_amount",
    "total_amount",
})
PRICING_FIELDS = AMOUNT_FIELDS | {"surge_pricing_multiplier", "surcharges"}
# Any of these in an update triggers an invoice sync
INVOICE_SYNC_FIELDS = PRICING_FIELDS | {"payment_status"}
TOTAL_COMPONENT_FIELDS = frozenset({"regular_price", "discount_amount", "surcharges"})
UPDATABLE_FIELDS = INVOICE_SYNC_FIELDS | {
    "vehicle_type_id",
    "booking_type",
    "pickup_address",
    "destination_address",
    "passenger_count",
    "scheduled_date_time",
    "payment_intent_id",
    "driver_payment",
}

S = BookingStatus
STATUS_TRANSITIONS: Dict[str, frozenset] = {
    S.PENDING.value: frozenset({S.PENDING_DRIVER_ACCEPTANCE.value, S.CONFIRMED.value, S.CANCELLED.value}),
    S.PENDING_DRIVER_ACCEPTANCE.value: frozenset({S.PENDING.value, S.CONFIRMED.value, S.CANCELLED.value}),
    S.CONFIRMED.value: frozenset({
        S.PENDING.value, S.PENDING_DRIVER_ACCEPTANCE.value, S.ON_THE_WAY.value, S.CANCELLED.value,
    }),
    S.ON_THE_WAY.value: frozenset({S.ARRIVED.value, S.ON_BOARD.value, S.CANCELLED.value}),
    S.ARRIVED.value: frozenset({S.ON_BOARD.value, S.CANCELLED.value}),
    S.ON_BOARD.value: frozenset({S.IN_PROGRESS.value, S.COMPLETED.value, S.CANCELLED.value}),
    S.IN_PROGRESS.value: frozenset({S.COMPLETED.value, S.CANCELLED.value}),
    S.COMPLETED.value: frozenset(),
    S.CANCELLED.value: frozenset(),
}
# Journey stamp written (once) when a booking enters the status
STATUS_TIMESTAMPS = {
    S.CONFIRMED.value: "accepted_at",
    S.ON_THE_WAY.value: "started_at",
    S.ON_BOARD.value: "pob_at",
    S.COMPLETED.value: "ended_at",
    S.CANCELLED.value: "cancelled_at",
}
# Driver (re)assignment is allowed only before the trip starts
ASSIGNABLE_STATUSES = frozenset({
    S.PENDING.value, S.PENDING_DRIVER_ACCEPTANCE.value, S.CONFIRMED.value,
})


def get_booking(db: Session, booking_id: str) -> Optional[models.Booking]:
    return db.get(models.Booking, booking_id)


def require_booking(db: Session, booking_id: str) -> models.Booking:
    booking = get_booking(db, booking_id)
    if booking is None:
        raise NotFoundException("Booking not found", details={"booking_id": booking_id})
    return booking


def get_all_bookings(db: Session) -> List[models.Booking]:
    return (
        db.query(models.Booking)
        .order_by(models.Booking.scheduled_date_time.desc())
        .all()
    )


def _serialize_surcharges(items: Iterable[Any]) -> List[dict]:
    """Store surcharge entries as JSON-safe dicts with 2-decimal string amounts."""
    out: List[dict] = []
    for item in items or []:
        if hasattr(item, "model_dump"):
            item = item.model_dump()
        if not isinstance(item, dict):
            continue
        added_at = item.get("added_at")
        if isinstance(added_at, datetime):
            added_at = added_at.isoformat()
        out.append({
            "description": item.get("description") or "",
            "amount": format_amount(item.get("amount")),
            "added_by": item.get("added_by"),
            "added_at": added_at or utcnow().isoformat(),
        })
    return out


def _normalize_new_pricing(data: Dict[str, Any]) -> None:
    for key in AMOUNT_FIELDS:
        if data.get(key) is not None:
            data[key] = to_amount(data[key])
    if data.get("surge_pricing_multiplier") is not None:
        data["surge_pricing_multiplier"] = to_multiplier(data["surge_pricing_multiplier"])
    data["surcharges"] = _serialize_surcharges(data.get("surcharges") or [])

    regular = data.get("regular_price")
    pct = data.get("discount_percentage")
    if data.get("discount_amount") is None and regular is not None and pct:
        data["discount_amount"] = (regular * pct / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)

    if data.get("total_amount") is None:
        data["total_amount"] = derive_total(regular, data.get("discount_amount"), data["surcharges"])
    elif regular is not None:
        expected = derive_total(regular, data.get("discount_amount"), data["surcharges"])
        if data["total_amount"] != expected:
            raise ValidationException(
                "total_amount does not match the pricing components",
                details={"total_amount": format_amount(data["total_amount"]), "expected": format_amount(expected)},
            )
    if regular is None:
        data["regular_price"] = max(
            ZERO,
            data["total_amount"] + to_amount(data.get("discount_amount")) - surcharges_total(data["surcharges"]),
        )


def compensate_booking_creation(db: Session, booking_id: str) -> bool:
    """Undo step of the create-booking saga: remove the booking and any partial invoice.

    Returns True when a booking row was deleted.
    """
    db.rollback()
    db.query(models.Invoice).filter(models.Invoice.booking_id == booking_id).delete(synchronize_session=False)
    deleted = (
        db.query(models.Booking)
        .filter(models.Booking.id == booking_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    db.expunge_all()
    logger.warning("Rolled back booking %s after invoice creation failed", booking_id)
    return deleted > 0


def create_booking(db: Session, booking_in: schemas.BookingCreate) -> models.Booking:
    """Persist a booking and its invoice as one logical operation.

    Step 1 inserts the booking, step 2 creates the invoice. If step 2 fails
    for any reason the booking is deleted again and ``BookingCreationError``
    is raised, chained to the original error.
    """
    data = booking_in.model_dump()
    _normalize_new_pricing(data)
    booking = models.Booking(
        **data,
        status=BookingStatus.PENDING.value,
        booked_at=utcnow(),
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    booking_id = booking.id

    try:
        crud_invoice.create_invoice_for_booking(db, booking)
    except Exception as exc:
        compensate_booking_creation(db, booking_id)
        raise BookingCreationError(
            f"Failed to create invoice for booking: {exc}",
            details={"booking_id": booking_id},
        ) from exc

    db.refresh(booking)
    logger.info("Created booking %s", booking_id)
    return booking


def _apply_explicit_total(booking: models.Booking, fields: Dict[str, Any]) -> None:
    """Keep ``total = regular_price - discount + surcharges`` when the total is set directly.

    Sent alone, the total re-derives ``regular_price``. Sent with any of its
    components, it must agree with them.
    """
    total = to_amount(booking.total_amount)
    if TOTAL_COMPONENT_FIELDS & set(fields):
        expected = derive_total(booking.regular_price, booking.discount_amount, booking.surcharges)
        if total != expected:
            raise ValidationException(
                "total_amount does not match the pricing components",
                details={"total_amount": format_amount(total), "expected": format_amount(expected)},
            )
        return
    regular = total + to_amount(booking.discount_amount) - surcharges_total(booking.surcharges)
    if regular < ZERO:
        raise ValidationException(
            "total_amount is lower than the booking's surcharges less discount",
            details={"total_amount": format_amount(total)},
        )
    booking.regular_price = regular


def update_booking(db: Session, booking_id: str, fields: Dict[str, Any]) -> models.Booking:
    """Apply a partial update and re-sync the invoice when money fields change.

    When ``regular_price``, ``discount_amount`` or ``surcharges`` change and
    no explicit ``total_amount`` is given, the total is recomputed from them.
    See ``_apply_explicit_total`` for updates that set the total directly.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationException(
            "Unsupported booking fields", details={"fields": sorted(unknown)}
        )
    booking = require_booking(db, booking_id)

    for key, value in fields.items():
        if key in AMOUNT_FIELDS or key == "driver_payment":
            value = to_amount(value) if value is not None else None
        elif key == "surge_pricing_multiplier":
            value = to_multiplier(value)
        elif key == "surcharges":
            value = _serialize_surcharges(value or [])
        setattr(booking, key, value)

    if fields.get("total_amount") is not None:
        try:
            _apply_explicit_total(booking, fields)
        except ValidationException:
            db.rollback()
            raise
    elif TOTAL_COMPONENT_FIELDS & set(fields) or "total_amount" in fields:
        booking.total_amount = derive_total(booking.regular_price, booking.discount_amount, booking.surcharges)

    db.commit()
    db.refresh(booking)

    if INVOICE_SYNC_FIELDS & set(fields):
        crud_invoice.sync_invoice_with_booking(db, booking)
        db.refresh(booking)
    return booking


def update_booking_payment(
    db: Session, booking_id: str, payment_status: str, payment_intent_id: Optional[str] = None
) -> models.Booking:
    valid = {s.value for s in PaymentStatus}
    if payment_status not in valid:
        raise ValidationException("Invalid payment status", details={"payment_status": payment_status})
    fields: Dict[str, Any] = {"payment_status": payment_status}
    if payment_intent_id is not None:
        fields["payment_intent_id"] = payment_intent_id
    return update_booking(db, booking_id, fields)


def add_additional_charge(
    db: Session,
    booking_id: str,
    description: str,
    amount: Any,
    added_by: Optional[str] = None,
) -> models.Booking:
    """Append a surcharge and recompute the total.

    The pre-surcharge base is re-derived as ``total_amount - sum(existing
    surcharges)`` rather than read from a stored column. Does not sync the
    invoice; callers must follow up with ``sync_invoice_with_booking``.
    """
    booking = require_booking(db, booking_id)

    existing = list(booking.surcharges or [])
    base = max(ZERO, to_amount(booking.total_amount) - surcharges_total(existing))
    charge = {
        "description": description,
        "amount": format_amount(amount),
        "added_by": added_by,
        "added_at": utcnow().isoformat(),
    }
    surcharges = existing + [charge]

    booking.surcharges = surcharges
    booking.total_amount = base + surcharges_total(surcharges)
    db.commit()
    db.refresh(booking)
    logger.info(
        "Added charge %s to booking %s; total now %s",
        charge["amount"], booking_id, format_amount(booking.total_amount),
    )
    return booking


def compute_driver_payment(total_amount: Any, commission_percentage: Decimal) -> Decimal:
    share = Decimal(1) - (Decimal(commission_percentage) / Decimal(100))
    return (to_amount(total_amount) * share).quantize(CENT, rounding=ROUND_HALF_UP)


def assign_driver_to_booking(
    db: Session,
    booking_id: str,
    driver_id: str,
    driver_payment: Any = None,
    settings_cache: Optional[SettingsCache] = None,
) -> models.Booking:
    """Assign a driver and set their payment.

    An explicit ``driver_payment`` is used as given; otherwise the driver gets
    ``total_amount`` minus the system commission percentage.
    """
    booking = require_booking(db, booking_id)
    if booking.status not in ASSIGNABLE_STATUSES:
        raise InvalidStateTransition(
            f"Cannot assign a driver to a booking in status {booking.status}",
            details={"booking_id": booking_id, "status": booking.status},
        )
    if db.get(models.Driver, driver_id) is None:
        raise NotFoundException("Driver not found", details={"driver_id": driver_id})

    if driver_payment is not None:
        payment = to_amount(driver_payment)
    else:
        pct = crud_settings.get_commission_percentage(db, settings_cache)
        payment = compute_driver_payment(booking.total_amount, pct)

    booking.driver_id = driver_id
    booking.driver_payment = payment
    booking.status = BookingStatus.PENDING_DRIVER_ACCEPTANCE.value
    booking.assigned_at = utcnow()
    db.commit()
    db.refresh(booking)
    logger.info("Assigned driver %s to booking %s (payment %s)", driver_id, booking_id, payment)
    return booking


def _stamp_once(booking: models.Booking, attr: str, now: datetime) -> None:
    if getattr(booking, attr) is None:
        setattr(booking, attr, now)


def update_booking_status(
    db: Session,
    booking_id: str,
    status: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Booking:
    """Move a booking along the journey state machine."""
    if status not in STATUS_TRANSITIONS:
        raise ValidationException("Invalid booking status", details={"status": status})
    booking = require_booking(db, booking_id)
    current = booking.status
    if status == current:
        return booking
    if status not in STATUS_TRANSITIONS.get(current, frozenset()):
        raise InvalidStateTransition(
            f"Cannot move booking from {current} to {status}",
            details={"booking_id": booking_id, "from": current, "to": status},
        )
    if status == S.PENDING_DRIVER_ACCEPTANCE.value and not booking.driver_id:
        raise ValidationException("Assign a driver before requesting acceptance", details={"booking_id": booking_id})

    now = now or utcnow()
    booking.status = status
    if status == S.PENDING.value:
        # Driver declined or was removed
        booking.driver_id = None
        booking.driver_payment = None
    elif status == S.PENDING_DRIVER_ACCEPTANCE.value:
        booking.assigned_at = now
    if status in STATUS_TIMESTAMPS:
        _stamp_once(booking, STATUS_TIMESTAMPS[status], now)
    if status == S.CANCELLED.value:
        booking.cancel_reason = reason or "Cancelled"

    db.commit()
    db.refresh(booking)
    logger.info("Booking %s moved %s -> %s", booking_id, current, status)
    return booking


def mark_booking_completed(db: Session, booking_id: str, now: Optional[datetime] = None) -> models.Booking:
    """Admin completion; allowed from any status except cancelled."""
    booking = require_booking(db, booking_id)
    if booking.status == S.CANCELLED.value:
        raise InvalidStateTransition(
            "Cannot complete a cancelled booking", details={"booking_id": booking_id}
        )
    now = now or utcnow()
    booking.status = S.COMPLETED.value
    _stamp_once(booking, "marked_completed_at", now)
    _stamp_once(booking, "ended_at", now)
    db.commit()
    db.refresh(booking)
    return booking


def auto_cancel_booking(db: Session, booking: models.Booking, reason: str, now: datetime) -> models.Booking:
    booking.status = S.CANCELLED.value
    booking.auto_cancelled_at = now
    _stamp_once(booking, "cancelled_at", now)
    booking.cancel_reason = reason
    db.commit()
    db.refresh(booking)
    return booking


def mark_reminder_sent(db: Session, booking: models.Booking, now: datetime) -> models.Booking:
    booking.reminder_sent_at = now
    db.commit()
    db.refresh(booking)
    return booking
