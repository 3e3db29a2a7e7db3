"""Best-effort passenger, driver and admin notifications.

Every send returns ``True``/``False`` and logs failures; nothing here raises
into the lifecycle or job code that calls it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from twilio.rest import Client

from .. import models
from ..core.config import settings
from .email import send_email
from .money import format_amount

logger = logging.getLogger(__name__)


def alert_scheduler_failure(exc: Exception) -> None:
    """Emit an error log when a background scheduler run fails."""
    logger.error("Scheduler run failed: %s", exc, exc_info=exc)


def short_ref(booking: models.Booking) -> str:
    return str(booking.id)[:8]


def _when(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "TBD"


class Notifier:
    """SMS via Twilio, email via SMTP, admin reports via email."""

    def __init__(
        self,
        sms_client: Optional[Client] = None,
        email_sender: Callable[[str, str, str], None] = send_email,
        from_number: Optional[str] = None,
        admin_email: Optional[str] = None,
    ) -> None:
        self._sms_client = sms_client
        self._email_sender = email_sender
        self.from_number = from_number if from_number is not None else settings.TWILIO_FROM_NUMBER
        self.admin_email = admin_email if admin_email is not None else settings.ADMIN_REPORT_EMAIL

    def _client(self) -> Optional[Client]:
        if self._sms_client is None and settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN:
            self._sms_client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        return self._sms_client

    def send_sms(self, phone: Optional[str], text: str) -> bool:
        client = self._client()
        if not phone or client is None or not self.from_number:
            logger.debug("SMS skipped (phone or Twilio config missing)")
            return False
        try:
            client.messages.create(body=text, from_=self.from_number, to=phone)
        except Exception as exc:
            logger.warning("SMS to %s failed: %s", phone, exc)
            return False
        return True

    def send_email(self, to: Optional[str], subject: str, html: str) -> bool:
        if not to:
            return False
        try:
            self._email_sender(to, subject, html)
        except Exception as exc:
            logger.warning("Email to %s failed: %s", to, exc)
            return False
        return True

    def report_cancellation(
        self,
        booking: models.Booking,
        passenger: Optional[models.User],
        vehicle_type_name: str,
        cancelled_by: str,
        reason: str,
    ) -> bool:
        if not self.admin_email:
            logger.debug("Cancellation report skipped (ADMIN_REPORT_EMAIL unset)")
            return False
        subject = f"Booking Cancelled - #{short_ref(booking)}"
        return self.send_email(
            self.admin_email,
            subject,
            cancellation_report_html(booking, passenger, vehicle_type_name, cancelled_by, reason),
        )


def auto_cancel_sms(booking: models.Booking) -> str:
    return (
        f"Your ride scheduled for {_when(booking.scheduled_date_time)} has been automatically "
        "cancelled as the scheduled time passed. Please book again if needed. "
        f"Booking #{short_ref(booking)}"
    )


def auto_cancel_email_html(booking: models.Booking) -> str:
    return (
        "<h2>Ride Cancelled</h2>"
        f"<p>Your ride scheduled for {_when(booking.scheduled_date_time)} has been automatically "
        "cancelled as the scheduled time has passed.</p>"
        f"<p><strong>Booking ID:</strong> {short_ref(booking)}</p>"
        f"<p><strong>Pickup:</strong> {booking.pickup_address}</p>"
        "<p>Please book again if you still need transportation.</p>"
    )


def cancellation_report_html(
    booking: models.Booking,
    passenger: Optional[models.User],
    vehicle_type_name: str,
    cancelled_by: str,
    reason: str,
) -> str:
    name = passenger.full_name if passenger else "Unknown"
    return (
        "<h2>Booking Cancellation Report</h2>"
        f"<p><strong>Booking ID:</strong> {booking.id}</p>"
        f"<p><strong>Passenger:</strong> {name}</p>"
        f"<p><strong>Vehicle:</strong> {vehicle_type_name}</p>"
        f"<p><strong>Scheduled:</strong> {_when(booking.scheduled_date_time)}</p>"
        f"<p><strong>Total:</strong> ${format_amount(booking.total_amount)}</p>"
        f"<p><strong>Cancelled by:</strong> {cancelled_by}</p>"
        f"<p><strong>Reason:</strong> {reason}</p>"
    )


def _driver_payment_label(booking: models.Booking, default: str) -> str:
    if booking.driver_payment is None:
        return default
    return f"${format_amount(booking.driver_payment)}"


def driver_reminder_sms(booking: models.Booking) -> str:
    return (
        "REMINDER: You have a ride in 2 hours!\n"
        f"Pickup: {_when(booking.scheduled_date_time)}\n"
        f"Location: {booking.pickup_address}\n"
        f"Payment: {_driver_payment_label(booking, 'TBD')}\n"
        f"Booking #{short_ref(booking)}"
    )


def driver_reminder_email_html(booking: models.Booking) -> str:
    destination = (
        f"<p><strong>Destination:</strong> {booking.destination_address}</p>"
        if booking.destination_address
        else ""
    )
    return (
        "<h2>Upcoming Ride Reminder</h2>"
        "<p>You have a ride starting in approximately 2 hours.</p>"
        f"<p><strong>Scheduled Pickup:</strong> {_when(booking.scheduled_date_time)}</p>"
        f"<p><strong>Pickup Location:</strong> {booking.pickup_address}</p>"
        f"{destination}"
        f"<p><strong>Passengers:</strong> {booking.passenger_count}</p>"
        f"<p><strong>Your Payment:</strong> {_driver_payment_label(booking, 'Not set')}</p>"
        f"<p><strong>Booking ID:</strong> {short_ref(booking)}</p>"
        '<p>You can now mark yourself as "On the Way" from your driver dashboard.</p>'
    )


def driver_assignment_email_html(booking: models.Booking, driver_user: models.User) -> str:
    return (
        "<h2>New Ride Assignment</h2>"
        f"<p>Hi {driver_user.full_name or 'there'}, a ride has been assigned to you.</p>"
        f"<p><strong>Scheduled Pickup:</strong> {_when(booking.scheduled_date_time)}</p>"
        f"<p><strong>Pickup Location:</strong> {booking.pickup_address}</p>"
        f"<p><strong>Destination:</strong> {booking.destination_address or 'N/A'}</p>"
        f"<p><strong>Your Payment:</strong> {_driver_payment_label(booking, 'Not set')}</p>"
        f"<p><strong>Booking ID:</strong> {short_ref(booking)}</p>"
        "<p>Please accept or decline the job from your driver dashboard.</p>"
    )


def driver_assignment_sms(booking: models.Booking) -> str:
    return (
        f"New ride assigned: {_when(booking.scheduled_date_time)} from {booking.pickup_address}. "
        f"Payment: {_driver_payment_label(booking, 'TBD')}. Booking #{short_ref(booking)}"
    )
