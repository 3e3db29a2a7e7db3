from .booking import (
    AdditionalChargeCreate,
    BookingCreate,
    BookingRead,
    BookingStatusUpdate,
    BookingUpdate,
    DriverAssignment,
    Surcharge,
    SurchargeIn,
)
from .invoice import InvoiceBackfillResult, InvoiceRead

__all__ = [
    "AdditionalChargeCreate",
    "BookingCreate",
    "BookingRead",
    "BookingStatusUpdate",
    "BookingUpdate",
    "DriverAssignment",
    "Surcharge",
    "SurchargeIn",
    "InvoiceBackfillResult",
    "InvoiceRead",
]
