from .user import User
from .driver import Driver, VehicleType
from .booking import Booking, BookingStatus, BookingType, PaymentStatus
from .invoice import Invoice
from .system_setting import SystemSetting

__all__ = [
    "User",
    "Driver",
    "VehicleType",
    "Booking",
    "BookingStatus",
    "BookingType",
    "PaymentStatus",
    "Invoice",
    "SystemSetting",
]
