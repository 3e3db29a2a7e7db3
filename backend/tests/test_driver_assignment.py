from decimal import Decimal

import pytest

from ridebook.crud import crud_booking, crud_settings
from ridebook.utils.errors import InvalidStateTransition, NotFoundException
from ridebook.utils.settings_cache import SettingsCache


def test_compute_driver_payment_rounds_half_up():
    assert crud_booking.compute_driver_payment(Decimal("200"), Decimal("30")) == Decimal("140.00")
    assert crud_booking.compute_driver_payment("99.99", Decimal("12.5")) == Decimal("87.49")
    assert crud_booking.compute_driver_payment(None, Decimal("30")) == Decimal("0.00")


def test_assignment_uses_default_commission(db, make_trip, driver):
    trip = make_trip(600, status="pending", with_driver=False, total_amount=Decimal("200.00"))

    assigned = crud_booking.assign_driver_to_booking(db, trip.id, driver.id)

    assert assigned.driver_id == driver.id
    assert assigned.driver_payment == Decimal("140.00")
    assert assigned.status == "pending_driver_acceptance"
    assert assigned.assigned_at is not None


def test_assignment_uses_stored_commission(db, make_trip, driver):
    crud_settings.set_setting(db, crud_settings.COMMISSION_SETTING_KEY, "25")
    trip = make_trip(600, status="pending", with_driver=False, total_amount=Decimal("200.00"))

    assigned = crud_booking.assign_driver_to_booking(db, trip.id, driver.id)

    assert assigned.driver_payment == Decimal("150.00")


def test_explicit_driver_payment_wins(db, make_trip, driver):
    trip = make_trip(600, status="pending", with_driver=False, total_amount=Decimal("200.00"))

    assigned = crud_booking.assign_driver_to_booking(db, trip.id, driver.id, driver_payment="175")

    assert assigned.driver_payment == Decimal("175.00")


def test_commission_read_through_cache(db, make_trip, driver):
    cache = SettingsCache(ttl_seconds=3600)
    first = make_trip(600, status="pending", with_driver=False, total_amount=Decimal("100.00"))
    crud_booking.assign_driver_to_booking(db, first.id, driver.id, settings_cache=cache)

    # Written without the cache, so the cached default is still served
    crud_settings.set_setting(db, crud_settings.COMMISSION_SETTING_KEY, "50")
    second = make_trip(660, status="pending", with_driver=False, total_amount=Decimal("100.00"))
    assigned = crud_booking.assign_driver_to_booking(db, second.id, driver.id, settings_cache=cache)
    assert assigned.driver_payment == Decimal("70.00")

    cache.clear()
    third = make_trip(720, status="pending", with_driver=False, total_amount=Decimal("100.00"))
    assigned = crud_booking.assign_driver_to_booking(db, third.id, driver.id, settings_cache=cache)
    assert assigned.driver_payment == Decimal("50.00")


def test_reassignment_before_trip_start(db, make_trip, driver):
    trip = make_trip(600, status="confirmed")
    reassigned = crud_booking.assign_driver_to_booking(db, trip.id, driver.id, driver_payment="60")
    assert reassigned.status == "pending_driver_acceptance"
    assert reassigned.driver_payment == Decimal("60.00")


@pytest.mark.parametrize("status", ["on_the_way", "on_board", "completed", "cancelled"])
def test_assignment_rejected_once_trip_started_or_closed(db, make_trip, driver, status):
    trip = make_trip(600, status=status)
    with pytest.raises(InvalidStateTransition):
        crud_booking.assign_driver_to_booking(db, trip.id, driver.id)


def test_assignment_unknown_driver_or_booking(db, make_trip):
    trip = make_trip(600, status="pending", with_driver=False)
    with pytest.raises(NotFoundException):
        crud_booking.assign_driver_to_booking(db, trip.id, "ghost-driver")
    with pytest.raises(NotFoundException):
        crud_booking.assign_driver_to_booking(db, "ghost-booking", "ghost-driver")
