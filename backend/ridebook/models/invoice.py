from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel, new_id


class Invoice(BaseModel):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    # One invoice per booking is enforced by check-then-create in crud_invoice
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    invoice_number = Column(String(32), nullable=False)
    base_fare = Column(Numeric(10, 2), nullable=True)
    gratuity_amount = Column(Numeric(10, 2), nullable=True)
    airport_fee_amount = Column(Numeric(10, 2), nullable=True)
    surge_pricing_multiplier = Column(Numeric(8, 4), nullable=True)
    surge_pricing_amount = Column(Numeric(10, 2), nullable=True)
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=True)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    paid_at = Column(DateTime, nullable=True)

    booking = relationship("Booking")
