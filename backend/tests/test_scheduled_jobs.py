import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from ridebook import models
from ridebook.services import scheduled_jobs
from ridebook.services.scheduled_jobs import (
    AUTO_CANCEL_REASON,
    ScheduledJobRunner,
    auto_cancel_expired_bookings,
    run_scheduled_jobs,
    send_driver_reminders,
)

from conftest import NOW


def test_auto_cancel_boundary(db, notifier, make_trip):
    late = make_trip(-31)
    on_time = make_trip(-29)

    result = auto_cancel_expired_bookings(db, notifier, now=NOW)

    assert result == {"scanned": 2, "auto_cancelled": 1, "errors": 0}
    db.refresh(late)
    db.refresh(on_time)
    assert late.status == "cancelled"
    assert late.auto_cancelled_at == NOW
    assert late.cancelled_at == NOW
    assert late.cancel_reason == AUTO_CANCEL_REASON
    assert on_time.status == "confirmed"
    assert on_time.auto_cancelled_at is None


@pytest.mark.parametrize(
    "status, with_driver, extra",
    [
        ("pending", False, {}),
        ("pending_driver_acceptance", True, {}),
        ("completed", True, {}),
        ("confirmed", False, {}),
        ("on_board", True, {"auto_cancelled_at": NOW - timedelta(minutes=5)}),
    ],
)
def test_auto_cancel_skips_ineligible(db, notifier, make_trip, status, with_driver, extra):
    make_trip(-120, status=status, with_driver=with_driver, **extra)

    result = auto_cancel_expired_bookings(db, notifier, now=NOW)

    assert result["auto_cancelled"] == 0
    notifier.send_sms.assert_not_called()


def test_auto_cancel_notifies_passenger_and_admin(db, notifier, make_trip, passenger):
    vehicle = models.VehicleType(name="Executive Sedan")
    db.add(vehicle)
    db.commit()
    trip = make_trip(-45, status="on_the_way", vehicle_type_id=vehicle.id)

    auto_cancel_expired_bookings(db, notifier, now=NOW)

    notifier.send_sms.assert_called_once()
    assert notifier.send_sms.call_args.args[0] == passenger.phone
    notifier.send_email.assert_called_once()
    assert notifier.send_email.call_args.args[:2] == (passenger.email, "Ride Automatically Cancelled")
    args = notifier.report_cancellation.call_args.args
    assert args[0].id == trip.id
    assert args[2:] == ("Executive Sedan", "system", AUTO_CANCEL_REASON)


def test_auto_cancel_isolates_notification_failures(db, notifier, make_trip):
    other = models.User(email="sam@example.com", phone="+15550003333", first_name="Sam", last_name="Fail")
    db.add(other)
    db.commit()
    failing = make_trip(-40, passenger_id=other.id)
    fine = make_trip(-50)

    def send_sms(phone, text):
        if phone == other.phone:
            raise RuntimeError("Twilio down")
        return True

    notifier.send_sms.side_effect = send_sms

    result = auto_cancel_expired_bookings(db, notifier, now=NOW)

    assert result["auto_cancelled"] == 2
    assert result["errors"] == 0
    db.refresh(failing)
    db.refresh(fine)
    assert failing.status == "cancelled"
    assert fine.status == "cancelled"
    # Failing SMS did not stop the email for the same booking
    assert notifier.send_email.call_count == 2


def test_auto_cancel_isolates_transition_failures(db, notifier, make_trip, monkeypatch):
    broken = make_trip(-40)
    ok = make_trip(-50)
    broken_id = broken.id
    real = scheduled_jobs.crud_booking.auto_cancel_booking

    def flaky(session, booking, reason, now):
        if booking.id == broken_id:
            raise OperationalError("UPDATE bookings", {}, Exception("locked"))
        return real(session, booking, reason, now)

    monkeypatch.setattr(scheduled_jobs.crud_booking, "auto_cancel_booking", flaky)

    result = auto_cancel_expired_bookings(db, notifier, now=NOW)

    assert result == {"scanned": 2, "auto_cancelled": 1, "errors": 1}
    db.refresh(ok)
    assert ok.status == "cancelled"


def test_reminder_window(db, notifier, make_trip, driver):
    due = make_trip(121)
    early = make_trip(130)
    late = make_trip(114)
    wrong_status = make_trip(121, status="on_the_way")

    result = send_driver_reminders(db, notifier, now=NOW)

    assert result["reminders_sent"] == 1
    for trip in (due, early, late, wrong_status):
        db.refresh(trip)
    assert due.reminder_sent_at == NOW
    assert early.reminder_sent_at is None
    assert late.reminder_sent_at is None
    assert wrong_status.reminder_sent_at is None
    notifier.send_sms.assert_called_once()
    assert notifier.send_sms.call_args.args[0] == driver.user.phone
    assert notifier.send_email.call_args.args[:2] == (driver.user.email, "Upcoming Ride Reminder - 2 Hours")


def test_reminder_sent_only_once(db, notifier, make_trip):
    make_trip(121)

    send_driver_reminders(db, notifier, now=NOW)
    second = send_driver_reminders(db, notifier, now=NOW + timedelta(minutes=2))

    assert second["reminders_sent"] == 0
    assert notifier.send_sms.call_count == 1


def test_reminder_stamp_survives_send_failure(db, notifier, make_trip):
    trip = make_trip(120)
    notifier.send_sms.side_effect = RuntimeError("carrier error")
    notifier.send_email.side_effect = RuntimeError("smtp down")

    result = send_driver_reminders(db, notifier, now=NOW)

    assert result["reminders_sent"] == 1
    db.refresh(trip)
    assert trip.reminder_sent_at == NOW


def test_run_scheduled_jobs_uses_fresh_sessions(session_factory, notifier, make_trip):
    make_trip(-45)
    make_trip(122)

    summary = run_scheduled_jobs(session_factory, notifier, now=NOW)

    assert summary["auto_cancel"]["auto_cancelled"] == 1
    assert summary["reminders"]["reminders_sent"] == 1


def test_runner_start_is_idempotent(session_factory, notifier):
    runner = ScheduledJobRunner(session_factory=session_factory, notifier=notifier, interval_seconds=3600)
    runner.run_once = MagicMock(return_value={})

    async def scenario():
        first = runner.start()
        second = runner.start()
        assert first is second
        for _ in range(100):
            if runner.run_once.called:
                break
            await asyncio.sleep(0.01)
        assert runner.running
        await runner.stop()

    asyncio.run(scenario())

    runner.run_once.assert_called_once()
    assert not runner.running


def test_runner_retries_operational_errors(session_factory, notifier):
    runner = ScheduledJobRunner(
        session_factory=session_factory, notifier=notifier, interval_seconds=3600, retry_delay_seconds=0
    )
    summary = {"auto_cancel": {}, "reminders": {}}
    runner.run_once = MagicMock(
        side_effect=[OperationalError("SELECT", {}, Exception("database is locked")), summary]
    )

    assert asyncio.run(runner.run_cycle()) == summary
    assert runner.run_once.call_count == 2


def test_runner_gives_up_on_unexpected_errors(session_factory, notifier):
    runner = ScheduledJobRunner(session_factory=session_factory, notifier=notifier, retry_delay_seconds=0)
    runner.run_once = MagicMock(side_effect=ValueError("bad data"))

    assert asyncio.run(runner.run_cycle()) is None
    assert runner.run_once.call_count == 1


@pytest.mark.parametrize("minutes_ago, cancelled", [(30, False), (30.5, True)])
def test_auto_cancel_grace_edge(db, notifier, make_trip, minutes_ago, cancelled):
    trip = make_trip(-minutes_ago)

    result = auto_cancel_expired_bookings(db, notifier, now=NOW)

    assert result["auto_cancelled"] == int(cancelled)
    db.refresh(trip)
    assert (trip.status == "cancelled") is cancelled


@pytest.mark.parametrize(
    "minutes_until, due",
    [(115, False), (115.5, True), (125, True), (125.5, False)],
)
def test_reminder_window_edges(db, notifier, make_trip, minutes_until, due):
    trip = make_trip(minutes_until)

    result = send_driver_reminders(db, notifier, now=NOW)

    assert result["reminders_sent"] == int(due)
    db.refresh(trip)
    assert (trip.reminder_sent_at == NOW) is due


def _delete_once_on_first_sms(notifier, session_factory, booking_id):
    deleted = []

    def send_sms(phone, text):
        if not deleted:
            with session_factory() as other:
                other.query(models.Booking).filter_by(id=booking_id).delete()
                other.commit()
            deleted.append(booking_id)
        return True

    notifier.send_sms.side_effect = send_sms
    return deleted


def test_auto_cancel_survives_booking_deleted_mid_scan(db, notifier, make_trip, session_factory):
    first = make_trip(-35)
    gone_id = make_trip(-60).id
    last = make_trip(-90)
    deleted = _delete_once_on_first_sms(notifier, session_factory, gone_id)

    result = auto_cancel_expired_bookings(db, notifier, now=NOW)

    assert deleted == [gone_id]
    assert result == {"scanned": 3, "auto_cancelled": 2, "errors": 0}
    db.refresh(first)
    db.refresh(last)
    assert first.status == "cancelled"
    assert last.status == "cancelled"
    assert db.get(models.Booking, gone_id) is None


def test_reminders_survive_booking_deleted_mid_scan(db, notifier, make_trip, session_factory):
    first = make_trip(124)
    gone_id = make_trip(122).id
    last = make_trip(118)
    deleted = _delete_once_on_first_sms(notifier, session_factory, gone_id)

    result = send_driver_reminders(db, notifier, now=NOW)

    assert deleted == [gone_id]
    assert result == {"scanned": 3, "reminders_sent": 2, "errors": 0}
    db.refresh(first)
    db.refresh(last)
    assert first.reminder_sent_at == NOW
    assert last.reminder_sent_at == NOW
