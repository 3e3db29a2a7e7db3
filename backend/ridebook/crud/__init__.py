from . import crud_settings
from . import crud_invoice
from . import crud_booking

__all__ = ["crud_booking", "crud_invoice", "crud_settings"]
