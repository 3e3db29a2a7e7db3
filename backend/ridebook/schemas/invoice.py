from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class InvoiceRead(BaseModel):
    id: str
    booking_id: str
    invoice_number: str
    base_fare: Optional[Decimal] = None
    gratuity_amount: Optional[Decimal] = None
    airport_fee_amount: Optional[Decimal] = None
    surge_pricing_multiplier: Optional[Decimal] = None
    surge_pricing_amount: Optional[Decimal] = None
    subtotal: Decimal
    discount_percentage: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    tax_amount: Decimal
    total_amount: Decimal
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class InvoiceBackfillResult(BaseModel):
    total: int
    created: int
    skipped: int
    errors: int
    error_details: List[str] = []
