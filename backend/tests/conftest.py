from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

from dotenv import load_dotenv
import pytest

# Load environment variables for tests before the app settings are imported
load_dotenv(Path(__file__).resolve().parents[1] / ".env.test")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from ridebook import models  # noqa: E402
from ridebook.models.base import BaseModel  # noqa: E402
from ridebook.schemas import BookingCreate  # noqa: E402
from ridebook.utils.notifications import Notifier  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    BaseModel.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False)
    yield Session
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    """Notifier double whose sends all succeed."""
    mock = MagicMock(spec=Notifier)
    mock.send_sms.return_value = True
    mock.send_email.return_value = True
    mock.report_cancellation.return_value = True
    return mock


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip retry backoff sleeps in invoice numbering."""
    delays = []
    monkeypatch.setattr("ridebook.crud.crud_invoice.time.sleep", delays.append)
    return delays


@pytest.fixture
def passenger(db):
    user = models.User(email="pat@example.com", phone="+15550001111", first_name="Pat", last_name="Rider")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def driver(db):
    user = models.User(email="dana@example.com", phone="+15550002222", first_name="Dana", last_name="Wheel")
    db.add(user)
    db.commit()
    drv = models.Driver(user_id=user.id)
    db.add(drv)
    db.commit()
    db.refresh(drv)
    return drv


@pytest.fixture
def booking_in(passenger):
    def _make(**overrides) -> BookingCreate:
        data = {
            "passenger_id": passenger.id,
            "pickup_address": "1 Airport Rd",
            "destination_address": "99 Main St",
            "scheduled_date_time": NOW + timedelta(days=2),
            "regular_price": Decimal("100.00"),
        }
        data.update(overrides)
        return BookingCreate(**data)

    return _make


@pytest.fixture
def make_trip(db, passenger, driver):
    """Insert a booking row directly, positioned relative to NOW."""

    def _make(minutes_from_now: float, status: str = "confirmed", with_driver: bool = True, **extra):
        trip = models.Booking(
            passenger_id=extra.pop("passenger_id", passenger.id),
            driver_id=driver.id if with_driver else None,
            status=status,
            pickup_address="1 Airport Rd",
            scheduled_date_time=NOW + timedelta(minutes=minutes_from_now),
            regular_price=extra.pop("regular_price", Decimal("80.00")),
            total_amount=extra.pop("total_amount", Decimal("80.00")),
            **extra,
        )
        db.add(trip)
        db.commit()
        db.refresh(trip)
        return trip

    return _make
