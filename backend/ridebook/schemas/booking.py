from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models.booking import BookingStatus, BookingType, PaymentStatus
from ..utils.money import MAX_AMOUNT

# Numeric(8, 4)
MAX_MULTIPLIER = Decimal("9999.9999")


def _naive_utc(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SurchargeIn(BaseModel):
    description: str = Field(min_length=1)
    amount: Decimal = Field(ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    added_by: Optional[str] = None


class Surcharge(BaseModel):
    description: str
    amount: Decimal = Field(ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    added_by: Optional[str] = None
    added_at: Optional[datetime] = None


class BookingPricing(BaseModel):
    base_fare: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    gratuity_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    airport_fee_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    surge_pricing_multiplier: Optional[Decimal] = Field(default=None, ge=0, le=MAX_MULTIPLIER)
    surge_pricing_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    regular_price: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    discount_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    total_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)


class BookingCreate(BookingPricing):
    model_config = ConfigDict(use_enum_values=True)

    passenger_id: str
    vehicle_type_id: Optional[str] = None
    booking_type: BookingType = BookingType.TRANSFER
    pickup_address: str = Field(min_length=1)
    destination_address: Optional[str] = None
    passenger_count: int = Field(default=1, ge=1)
    scheduled_date_time: datetime
    surcharges: List[SurchargeIn] = Field(default_factory=list)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_intent_id: Optional[str] = None

    @field_validator("scheduled_date_time")
    @classmethod
    def schedule_to_naive_utc(cls, v: Any) -> Any:
        return _naive_utc(v)

    @model_validator(mode="after")
    def require_price(self) -> "BookingCreate":
        if self.total_amount is None and self.regular_price is None:
            raise ValueError("total_amount or regular_price is required")
        return self


class BookingUpdate(BookingPricing):
    """Partial update; only fields that were sent are applied."""

    model_config = ConfigDict(use_enum_values=True)

    vehicle_type_id: Optional[str] = None
    booking_type: Optional[BookingType] = None
    pickup_address: Optional[str] = None
    destination_address: Optional[str] = None
    passenger_count: Optional[int] = Field(default=None, ge=1)
    scheduled_date_time: Optional[datetime] = None
    surcharges: Optional[List[Surcharge]] = None
    payment_status: Optional[PaymentStatus] = None
    payment_intent_id: Optional[str] = None
    driver_payment: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)

    @field_validator("scheduled_date_time")
    @classmethod
    def schedule_to_naive_utc(cls, v: Any) -> Any:
        return _naive_utc(v)


class BookingStatusUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: BookingStatus
    reason: Optional[str] = None


class AdditionalChargeCreate(BaseModel):
    description: str = Field(min_length=1)
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    added_by: Optional[str] = None


class DriverAssignment(BaseModel):
    driver_id: str
    # Admin override; computed from the commission setting when omitted
    driver_payment: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)


class BookingRead(BaseModel):
    id: str
    passenger_id: str
    driver_id: Optional[str] = None
    vehicle_type_id: Optional[str] = None
    booking_type: str
    status: str
    pickup_address: str
    destination_address: Optional[str] = None
    passenger_count: int
    scheduled_date_time: datetime
    base_fare: Optional[Decimal] = None
    gratuity_amount: Optional[Decimal] = None
    airport_fee_amount: Optional[Decimal] = None
    surge_pricing_multiplier: Optional[Decimal] = None
    surge_pricing_amount: Optional[Decimal] = None
    regular_price: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    driver_payment: Optional[Decimal] = None
    surcharges: Optional[List[dict]] = None
    payment_status: str
    payment_intent_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    booked_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    pob_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    auto_cancelled_at: Optional[datetime] = None
    reminder_sent_at: Optional[datetime] = None
    marked_completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
