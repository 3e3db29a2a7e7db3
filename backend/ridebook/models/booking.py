import enum
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel, new_id


class BookingType(str, enum.Enum):
    TRANSFER = "transfer"
    HOURLY = "hourly"


class BookingStatus(str, enum.Enum):
    """Journey states in the order a trip moves through them."""
    PENDING = "pending"
    PENDING_DRIVER_ACCEPTANCE = "pending_driver_acceptance"
    CONFIRMED = "confirmed"
    ON_THE_WAY = "on_the_way"
    ARRIVED = "arrived"
    ON_BOARD = "on_board"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Booking(BaseModel):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=new_id)
    passenger_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=True, index=True)
    vehicle_type_id = Column(String(36), ForeignKey("vehicle_types.id"), nullable=True)
    booking_type = Column(String, nullable=False, default=BookingType.TRANSFER.value)
    status = Column(String, nullable=False, default=BookingStatus.PENDING.value, index=True)

    pickup_address = Column(Text, nullable=False, default="")
    destination_address = Column(Text, nullable=True)
    passenger_count = Column(Integer, nullable=False, default=1)
    scheduled_date_time = Column(DateTime, nullable=False, index=True)

    # Pricing
    base_fare = Column(Numeric(10, 2), nullable=True)
    gratuity_amount = Column(Numeric(10, 2), nullable=True)
    airport_fee_amount = Column(Numeric(10, 2), nullable=True)
    surge_pricing_multiplier = Column(Numeric(8, 4), nullable=True)
    surge_pricing_amount = Column(Numeric(10, 2), nullable=True)
    # Pre-discount subtotal
    regular_price = Column(Numeric(10, 2), nullable=True)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=True)
    driver_payment = Column(Numeric(10, 2), nullable=True)
    # [{description, amount, added_by, added_at}]
    surcharges = Column(JSON, nullable=True)

    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    payment_intent_id = Column(String, nullable=True)

    cancel_reason = Column(Text, nullable=True)

    # Journey trail; each stamp is written once when its transition happens
    booked_at = Column(DateTime, nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    pob_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    auto_cancelled_at = Column(DateTime, nullable=True)
    reminder_sent_at = Column(DateTime, nullable=True)
    marked_completed_at = Column(DateTime, nullable=True)

    passenger = relationship("User", foreign_keys=[passenger_id])
    driver = relationship("Driver", foreign_keys=[driver_id])
    vehicle_type = relationship("VehicleType")
