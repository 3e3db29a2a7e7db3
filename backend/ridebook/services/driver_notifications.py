from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .. import models
from ..utils.notification_dispatcher import NotificationDispatcher
from ..utils.notifications import (
    Notifier,
    driver_assignment_email_html,
    driver_assignment_sms,
    short_ref,
)

logger = logging.getLogger(__name__)


def driver_contact(db: Session, driver_id: Optional[str]) -> Optional[models.User]:
    """Return the user record holding the driver's phone and email."""
    if not driver_id:
        return None
    driver = db.get(models.Driver, driver_id)
    return driver.user if driver else None


def notify_driver_assignment(
    session_factory: Callable[[], Session], notifier: Notifier, booking_id: str
) -> dict:
    """Tell the assigned driver about a new job. Runs off the request path."""
    sent = {"email": False, "sms": False}
    with session_factory() as db:
        booking = db.get(models.Booking, booking_id)
        if booking is None:
            return sent
        user = driver_contact(db, booking.driver_id)
        if user is None:
            logger.info("No driver contact for booking %s", booking_id)
            return sent
        sent["email"] = notifier.send_email(
            user.email,
            f"New Ride Assignment - #{short_ref(booking)}",
            driver_assignment_email_html(booking, user),
        )
        sent["sms"] = notifier.send_sms(user.phone, driver_assignment_sms(booking))
    return sent


def dispatch_driver_assignment(
    dispatcher: NotificationDispatcher,
    session_factory: Callable[[], Session],
    notifier: Notifier,
    booking_id: str,
) -> Future:
    """Queue the assignment email/SMS so the request does not wait on delivery."""
    return dispatcher.submit(
        f"driver_assignment:{booking_id}", notify_driver_assignment, session_factory, notifier, booking_id
    )
