import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import schemas
from ..crud import crud_booking, crud_invoice
from ..database import get_db
from ..services.driver_notifications import dispatch_driver_assignment
from ..utils.errors import NotFoundException
from ..utils.notification_dispatcher import NotificationDispatcher
from ..utils.notifications import Notifier
from ..utils.settings_cache import SettingsCache
from .dependencies import get_dispatcher, get_notifier, get_session_factory, get_settings_cache

router = APIRouter(tags=["bookings"])
logger = logging.getLogger(__name__)


@router.post("/bookings", response_model=schemas.BookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(booking_in: schemas.BookingCreate, db: Session = Depends(get_db)):
    return crud_booking.create_booking(db, booking_in)


@router.get("/bookings/{booking_id}", response_model=schemas.BookingRead)
def read_booking(booking_id: str, db: Session = Depends(get_db)):
    return crud_booking.require_booking(db, booking_id)


@router.patch("/bookings/{booking_id}", response_model=schemas.BookingRead)
def update_booking(booking_id: str, booking_in: schemas.BookingUpdate, db: Session = Depends(get_db)):
    fields = booking_in.model_dump(exclude_unset=True)
    return crud_booking.update_booking(db, booking_id, fields)


@router.patch("/bookings/{booking_id}/status", response_model=schemas.BookingRead)
def update_booking_status(
    booking_id: str, status_in: schemas.BookingStatusUpdate, db: Session = Depends(get_db)
):
    return crud_booking.update_booking_status(db, booking_id, status_in.status, reason=status_in.reason)


@router.post("/bookings/{booking_id}/charges", response_model=schemas.BookingRead)
def add_additional_charge(
    booking_id: str, charge: schemas.AdditionalChargeCreate, db: Session = Depends(get_db)
):
    booking = crud_booking.add_additional_charge(
        db, booking_id, charge.description, charge.amount, added_by=charge.added_by
    )
    crud_invoice.sync_invoice_with_booking(db, booking)
    db.refresh(booking)
    return booking


@router.patch("/bookings/{booking_id}/assign-driver", response_model=schemas.BookingRead)
def assign_driver(
    booking_id: str,
    assignment: schemas.DriverAssignment,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    settings_cache: SettingsCache = Depends(get_settings_cache),
    session_factory=Depends(get_session_factory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    booking = crud_booking.assign_driver_to_booking(
        db,
        booking_id,
        assignment.driver_id,
        driver_payment=assignment.driver_payment,
        settings_cache=settings_cache,
    )
    dispatch_driver_assignment(dispatcher, session_factory, notifier, booking.id)
    return booking


@router.post("/bookings/{booking_id}/complete", response_model=schemas.BookingRead)
def complete_booking(booking_id: str, db: Session = Depends(get_db)):
    return crud_booking.mark_booking_completed(db, booking_id)


@router.get("/bookings/{booking_id}/invoice", response_model=schemas.InvoiceRead)
def read_booking_invoice(booking_id: str, db: Session = Depends(get_db)):
    crud_booking.require_booking(db, booking_id)
    invoice = crud_invoice.get_invoice_by_booking(db, booking_id)
    if invoice is None:
        raise NotFoundException("Invoice not found", details={"booking_id": booking_id})
    return invoice
