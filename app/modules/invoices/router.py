from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.config import settings
from app.database.database import get_db
from app.modules.invoices.schemas import (
    Invoice, InvoiceList, InvoiceRangeCreate, InvoiceRangeOut, InvoiceRangeStatusReport, InvoiceType
)
from app.modules.invoices.service import InvoiceService
from app.modules.payments.schemas import GenerateInvoiceRequest, PaymentDetail
from app.modules.payments.service import PaymentService

invoices_router = APIRouter(prefix="/invoices", tags=["Invoices"])
invoice_ranges_router = APIRouter(prefix="/invoice-ranges", tags=["Invoice Ranges"])


@invoices_router.post("/generate", response_model=PaymentDetail, status_code=status.HTTP_201_CREATED)
def generate_invoice(request: GenerateInvoiceRequest, db: Session = Depends(get_db)):
    """
    Generar factura legal o recibo simple de un pago pendiente

    El pago pasa a 'paid' en la misma operación. Si algo falla el pago queda
    pendiente y no se consume ningún número.
    """
    return PaymentService(db).pay(request.payment_id, request)


@invoices_router.get("/", response_model=InvoiceList)
def list_invoices(
    type: Optional[InvoiceType] = Query(None, description="simple o legal"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    return InvoiceService(db).get_invoices(type, limit, offset)


@invoices_router.get("/{invoice_id}", response_model=Invoice)
def get_invoice(invoice_id: str, db: Session = Depends(get_db)):
    return InvoiceService(db).get_invoice_by_id(invoice_id)


# ===== RANGOS CAI =====

@invoice_ranges_router.post("/", response_model=InvoiceRangeOut, status_code=status.HTTP_201_CREATED)
def create_invoice_range(invoice_range: InvoiceRangeCreate, db: Session = Depends(get_db)):
    """Registrar un rango de facturación autorizado (CAI)"""
    return InvoiceService(db).create_range(invoice_range)


@invoice_ranges_router.get("/", response_model=List[InvoiceRangeOut])
def list_invoice_ranges(db: Session = Depends(get_db)):
    return InvoiceService(db).get_ranges()


@invoice_ranges_router.get("/status", response_model=InvoiceRangeStatusReport)
def get_invoice_range_status(db: Session = Depends(get_db)):
    """Advertencias del rango activo: vencimiento cercano o pocos correlativos"""
    return InvoiceService(db).get_range_status()
