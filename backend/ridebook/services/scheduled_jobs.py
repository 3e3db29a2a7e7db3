"""Time-based booking transitions: auto-cancellation and driver reminders.

Both jobs scan every booking and treat each one independently: a failure on
one booking is logged and the scan moves on. Notifications are best effort
and never undo a transition.

The runner assumes a single API process. Running several instances
double-fires both jobs because nothing coordinates them across processes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..crud import crud_booking
from ..database import SessionLocal
from ..models.base import utcnow
from ..models.booking import BookingStatus
from ..utils.notifications import (
    Notifier,
    alert_scheduler_failure,
    auto_cancel_email_html,
    auto_cancel_sms,
    driver_reminder_email_html,
    driver_reminder_sms,
)
from .driver_notifications import driver_contact

logger = logging.getLogger(__name__)

AUTO_CANCEL_REASON = "Automatically cancelled - scheduled time passed without driver starting trip"
# Driver accepted but the trip never finished
AUTO_CANCEL_STATUSES = frozenset({
    BookingStatus.CONFIRMED.value,
    BookingStatus.ON_THE_WAY.value,
    BookingStatus.ARRIVED.value,
    BookingStatus.ON_BOARD.value,
})


def _minutes_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 60.0


def should_auto_cancel(booking: models.Booking, now: datetime) -> bool:
    if booking.scheduled_date_time is None or not booking.driver_id:
        return False
    if booking.status not in AUTO_CANCEL_STATUSES or booking.auto_cancelled_at is not None:
        return False
    return _minutes_between(now, booking.scheduled_date_time) > settings.AUTO_CANCEL_GRACE_MINUTES


def reminder_due(booking: models.Booking, now: datetime) -> bool:
    if booking.scheduled_date_time is None or not booking.driver_id:
        return False
    if booking.status != BookingStatus.CONFIRMED.value or booking.reminder_sent_at is not None:
        return False
    minutes_until = _minutes_between(booking.scheduled_date_time, now)
    lead = settings.REMINDER_LEAD_MINUTES
    window = settings.REMINDER_WINDOW_MINUTES
    return lead - window < minutes_until <= lead + window


def _scan_booking_ids(db: Session) -> List[str]:
    # Ids, not instances: commits during the scan expire loaded rows
    return [booking.id for booking in crud_booking.get_all_bookings(db)]


def _reload(db: Session, booking_id: str) -> Optional[models.Booking]:
    """Current row for ``booking_id``, or None when it was deleted mid-scan."""
    booking = db.get(models.Booking, booking_id)
    if booking is None:
        logger.info("Booking %s disappeared during scan; skipping", booking_id)
    return booking


def _best_effort(label: str, booking_id: str, send: Callable[..., bool], *args) -> bool:
    try:
        return bool(send(*args))
    except Exception as exc:
        logger.warning("%s failed for booking %s: %s", label, booking_id, exc)
        return False


def _notify_auto_cancel(db: Session, notifier: Notifier, booking: models.Booking) -> None:
    passenger = db.get(models.User, booking.passenger_id)
    if passenger is None:
        return
    _best_effort("Auto-cancel SMS", booking.id, notifier.send_sms, passenger.phone, auto_cancel_sms(booking))
    _best_effort(
        "Auto-cancel email",
        booking.id,
        notifier.send_email,
        passenger.email,
        "Ride Automatically Cancelled",
        auto_cancel_email_html(booking),
    )
    vehicle_type = db.get(models.VehicleType, booking.vehicle_type_id) if booking.vehicle_type_id else None
    _best_effort(
        "Cancellation report",
        booking.id,
        notifier.report_cancellation,
        booking,
        passenger,
        vehicle_type.name if vehicle_type and vehicle_type.name else "Unknown Vehicle",
        "system",
        AUTO_CANCEL_REASON,
    )


def auto_cancel_expired_bookings(
    db: Session, notifier: Notifier, now: Optional[datetime] = None
) -> dict:
    """Cancel driver-accepted bookings whose pickup passed more than the grace period ago."""
    now = now or utcnow()
    results = {"scanned": 0, "auto_cancelled": 0, "errors": 0}
    for booking_id in _scan_booking_ids(db):
        results["scanned"] += 1
        try:
            booking = _reload(db, booking_id)
            if booking is None or not should_auto_cancel(booking, now):
                continue
            logger.info("Auto-cancelling expired booking %s", booking_id)
            crud_booking.auto_cancel_booking(db, booking, AUTO_CANCEL_REASON, now)
            results["auto_cancelled"] += 1
        except Exception:
            db.rollback()
            results["errors"] += 1
            logger.exception("Auto-cancel failed for booking %s", booking_id)
            continue
        try:
            _notify_auto_cancel(db, notifier, booking)
        except Exception as exc:
            logger.warning("Auto-cancel notifications failed for booking %s: %s", booking_id, exc)
    return results


def _notify_driver_reminder(db: Session, notifier: Notifier, booking: models.Booking) -> None:
    user = driver_contact(db, booking.driver_id)
    if user is None:
        return
    _best_effort("Reminder SMS", booking.id, notifier.send_sms, user.phone, driver_reminder_sms(booking))
    _best_effort(
        "Reminder email",
        booking.id,
        notifier.send_email,
        user.email,
        "Upcoming Ride Reminder - 2 Hours",
        driver_reminder_email_html(booking),
    )


def send_driver_reminders(db: Session, notifier: Notifier, now: Optional[datetime] = None) -> dict:
    """Remind assigned drivers once, about two hours before pickup.

    ``reminder_sent_at`` is committed before sending, so a crash mid-send
    loses the reminder instead of repeating it on the next scan.
    """
    now = now or utcnow()
    results = {"scanned": 0, "reminders_sent": 0, "errors": 0}
    for booking_id in _scan_booking_ids(db):
        results["scanned"] += 1
        try:
            booking = _reload(db, booking_id)
            if booking is None or not reminder_due(booking, now):
                continue
            logger.info("Sending 2-hour reminder for booking %s", booking_id)
            crud_booking.mark_reminder_sent(db, booking, now)
            results["reminders_sent"] += 1
        except Exception:
            db.rollback()
            results["errors"] += 1
            logger.exception("Reminder failed for booking %s", booking_id)
            continue
        try:
            _notify_driver_reminder(db, notifier, booking)
        except Exception as exc:
            logger.warning("Reminder notifications failed for booking %s: %s", booking_id, exc)
    return results


def run_scheduled_jobs(
    session_factory: Callable[[], Session] = SessionLocal,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Run both jobs once, each with its own short-lived session."""
    notifier = notifier or Notifier()
    with session_factory() as db:
        cancelled = auto_cancel_expired_bookings(db, notifier, now)
    with session_factory() as db:
        reminders = send_driver_reminders(db, notifier, now)
    return {"auto_cancel": cancelled, "reminders": reminders}


class ScheduledJobRunner:
    """Fixed-interval loop around ``run_scheduled_jobs``.

    Runs once immediately, then every ``interval_seconds``. Each cycle runs
    in a worker thread; transient ``OperationalError`` is retried with capped
    backoff, anything else is logged and the loop waits for the next tick.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        notifier: Optional[Notifier] = None,
        interval_seconds: Optional[float] = None,
        retry_delay_seconds: float = 5,
        max_retries: int = 5,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier or Notifier()
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.SCHEDULED_JOB_INTERVAL_SECONDS
        )
        self.retry_delay_seconds = retry_delay_seconds
        self.max_retries = max_retries
        self._task: Optional[asyncio.Task] = None

    def run_once(self) -> dict:
        return run_scheduled_jobs(self.session_factory, self.notifier)

    async def run_cycle(self) -> Optional[dict]:
        delay = self.retry_delay_seconds
        for attempt in range(self.max_retries):
            try:
                summary = await asyncio.to_thread(self.run_once)
                logger.info("Scheduled jobs summary: %s", summary)
                return summary
            except OperationalError as exc:
                alert_scheduler_failure(exc)
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60)
                    continue
            except Exception as exc:
                alert_scheduler_failure(exc)
                break
        return None

    async def run_forever(self) -> None:
        while True:
            await self.run_cycle()
            await asyncio.sleep(self.interval_seconds)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop on the running event loop; a second call is a no-op."""
        if self.running:
            logger.warning("Scheduled jobs already running; ignoring start()")
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run_forever())
        logger.info("Scheduled jobs started (every %ss)", self.interval_seconds)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None


def start_scheduled_jobs(runner: Optional[ScheduledJobRunner] = None) -> ScheduledJobRunner:
    """Start the auto-cancel and reminder scans. Call once per process."""
    runner = runner or ScheduledJobRunner()
    runner.start()
    return runner
