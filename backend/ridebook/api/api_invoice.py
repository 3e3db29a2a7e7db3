import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..crud import crud_invoice
from ..database import get_db
from ..utils.errors import NotFoundException

router = APIRouter(tags=["invoices"])
logger = logging.getLogger(__name__)


@router.get("/invoices/{invoice_id}", response_model=schemas.InvoiceRead)
def read_invoice(invoice_id: str, db: Session = Depends(get_db)):
    invoice = crud_invoice.get_invoice(db, invoice_id)
    if invoice is None:
        raise NotFoundException("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


@router.post("/admin/invoices/backfill", response_model=schemas.InvoiceBackfillResult)
def backfill_invoices(db: Session = Depends(get_db)):
    result = crud_invoice.backfill_invoices(db)
    logger.info(
        "Invoice backfill: created=%s skipped=%s errors=%s",
        result["created"], result["skipped"], result["errors"],
    )
    return result
