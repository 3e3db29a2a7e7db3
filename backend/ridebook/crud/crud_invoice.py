"""Invoice numbering and booking/invoice synchronisation.

Invoice numbers are allocated optimistically: read the highest number for
the year, look up the candidate, insert, and let the ``uq_invoices_invoice_number``
constraint reject a lost race. No in-process lock is taken; concurrent
API processes are serialised only by the constraint.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..models.base import utcnow
from ..utils.errors import InvoiceCreationFailure
from ..utils.money import ZERO, optional_amount, to_amount, to_multiplier

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
SEQUENCE_DIGITS = 5
NUMBER_LOOKUP_DELAY_S = 0.05
INSERT_BASE_DELAY_S = 0.05


def format_invoice_number(year: int, sequence: int) -> str:
    """``INV-{year}{sequence:05d}``, e.g. ``INV-202600042``."""
    return f"{INVOICE_PREFIX}-{year}{sequence:0{SEQUENCE_DIGITS}d}"


def parse_invoice_sequence(invoice_number: Optional[str], year: int) -> Optional[int]:
    prefix = f"{INVOICE_PREFIX}-{year}"
    if not invoice_number or not invoice_number.startswith(prefix):
        return None
    tail = invoice_number[len(prefix):]
    return int(tail) if tail.isdigit() else None


def _latest_invoice_number(db: Session, year: int) -> Optional[str]:
    row = (
        db.query(models.Invoice.invoice_number)
        .filter(models.Invoice.invoice_number.like(f"{INVOICE_PREFIX}-{year}%"))
        .order_by(models.Invoice.invoice_number.desc())
        .first()
    )
    return row[0] if row else None


def invoice_number_exists(db: Session, invoice_number: str) -> bool:
    return (
        db.query(models.Invoice.id)
        .filter(models.Invoice.invoice_number == invoice_number)
        .first()
        is not None
    )


def _timestamp_invoice_number(year: int) -> str:
    millis = int(time.time() * 1000)
    return format_invoice_number(year, millis % 10 ** SEQUENCE_DIGITS)


def generate_invoice_number(db: Session, now: Optional[datetime] = None) -> str:
    """Return an unused invoice number for the current calendar year.

    Uniqueness is only final at insert time; callers must retry with a new
    number when the insert hits the unique constraint.
    """
    year = (now or utcnow()).year
    attempts = max(1, settings.INVOICE_NUMBER_LOOKUP_ATTEMPTS)
    for attempt in range(attempts):
        latest = _latest_invoice_number(db, year)
        sequence = (parse_invoice_sequence(latest, year) or 0) + 1
        candidate = format_invoice_number(year, sequence)
        if not invoice_number_exists(db, candidate):
            return candidate
        if attempt < attempts - 1:
            time.sleep(NUMBER_LOOKUP_DELAY_S * (attempt + 1))

    # Liveness over strict sequencing: the unique constraint still guards
    # against a duplicate here.
    fallback = _timestamp_invoice_number(year)
    logger.warning("Invoice sequence probing exhausted; using timestamp number %s", fallback)
    return fallback


def is_invoice_number_conflict(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", None) or exc).lower()
    return "invoice_number" in message


def _insert_backoff(attempt: int) -> float:
    base = INSERT_BASE_DELAY_S * (2 ** attempt)
    return base + random.uniform(0, base * 0.5)


def invoice_fields_from_booking(booking: models.Booking) -> dict[str, Any]:
    """Invoice financials derived from the booking's current pricing."""
    regular_price = booking.regular_price if booking.regular_price is not None else booking.total_amount
    return {
        "base_fare": optional_amount(booking.base_fare),
        "gratuity_amount": optional_amount(booking.gratuity_amount),
        "airport_fee_amount": optional_amount(booking.airport_fee_amount),
        "surge_pricing_multiplier": to_multiplier(booking.surge_pricing_multiplier),
        "surge_pricing_amount": optional_amount(booking.surge_pricing_amount),
        "subtotal": to_amount(regular_price),
        "discount_percentage": optional_amount(booking.discount_percentage),
        "discount_amount": optional_amount(booking.discount_amount),
        # No tax engine yet
        "tax_amount": ZERO,
        "total_amount": to_amount(booking.total_amount),
    }


def get_invoice(db: Session, invoice_id: str) -> Optional[models.Invoice]:
    return db.get(models.Invoice, invoice_id)


def get_invoice_by_booking(db: Session, booking_id: str) -> Optional[models.Invoice]:
    return (
        db.query(models.Invoice)
        .filter(models.Invoice.booking_id == booking_id)
        .order_by(models.Invoice.created_at.asc())
        .first()
    )


def create_invoice_for_booking(db: Session, booking: models.Booking) -> models.Invoice:
    """Create the booking's invoice, or return the existing one.

    Lost numbering races are retried with exponential backoff plus jitter;
    any other database error propagates immediately.
    """
    existing = get_invoice_by_booking(db, booking.id)
    if existing:
        return existing

    booking_id = booking.id
    fields = invoice_fields_from_booking(booking)
    paid = booking.payment_status == models.PaymentStatus.PAID.value
    max_attempts = max(1, settings.INVOICE_CREATE_MAX_ATTEMPTS)

    for attempt in range(max_attempts):
        invoice = models.Invoice(
            booking_id=booking_id,
            invoice_number=generate_invoice_number(db),
            paid_at=utcnow() if paid else None,
            **fields,
        )
        db.add(invoice)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if not is_invoice_number_conflict(exc):
                raise
            if attempt == max_attempts - 1:
                raise InvoiceCreationFailure(
                    f"Could not allocate a unique invoice number after {max_attempts} attempts",
                    details={"booking_id": booking_id},
                ) from exc
            delay = _insert_backoff(attempt)
            logger.info(
                "Invoice number collision for %s (attempt %s/%s), retrying in %.0fms",
                invoice.invoice_number, attempt + 1, max_attempts, delay * 1000,
            )
            time.sleep(delay)
            continue
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(invoice)
        logger.info("Created invoice %s for booking %s", invoice.invoice_number, booking_id)
        return invoice

    raise InvoiceCreationFailure("Invoice creation retry budget exhausted", details={"booking_id": booking_id})


def sync_invoice_with_booking(db: Session, booking: models.Booking) -> models.Invoice:
    """Bring the booking's invoice in line with its pricing and payment status.

    The booking must already be committed. Creates the invoice if it is missing.
    """
    invoice = get_invoice_by_booking(db, booking.id)
    if invoice is None:
        return create_invoice_for_booking(db, booking)

    for key, value in invoice_fields_from_booking(booking).items():
        setattr(invoice, key, value)

    paid = booking.payment_status == models.PaymentStatus.PAID.value
    if paid and invoice.paid_at is None:
        invoice.paid_at = utcnow()
    elif not paid and invoice.paid_at is not None:
        invoice.paid_at = None

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(invoice)
    return invoice


def backfill_invoices(db: Session) -> dict:
    """Create invoices for bookings that predate automatic invoicing."""
    bookings = (
        db.query(models.Booking)
        .order_by(models.Booking.scheduled_date_time.desc())
        .all()
    )
    results = {"total": len(bookings), "created": 0, "skipped": 0, "errors": 0, "error_details": []}
    for booking in bookings:
        booking_id = booking.id
        try:
            if get_invoice_by_booking(db, booking_id) is not None:
                results["skipped"] += 1
                continue
            create_invoice_for_booking(db, booking)
            results["created"] += 1
        except Exception as exc:
            db.rollback()
            results["errors"] += 1
            results["error_details"].append(f"Booking {booking_id}: {exc}")
            logger.exception("Invoice backfill failed for booking %s", booking_id)
    return results
