from sqlalchemy.orm import Session, selectinload
from fastapi import HTTPException, status
from datetime import date
from decimal import Decimal
from typing import Dict, Any, Optional
import logging

from app.common.exceptions import BillingError, BillingValidationError, NotFoundError, raise_http_error
from app.modules.invoices.models import InvoiceRecord, InvoiceItemRecord, InvoiceRange
from app.modules.invoices.numbering import SqlInvoiceNumbering, build_range_status
from app.modules.invoices.schemas import (
    Invoice, InvoiceItem, InvoicePaymentLine, InvoiceRangeCreate, InvoiceRangeStatusReport, InvoiceType
)
from app.modules.payments.enums import PaymentMethod

logger = logging.getLogger(__name__)


def invoice_to_record(invoice: Invoice) -> InvoiceRecord:
    """Copiar el snapshot emitido a filas persistentes"""
    record = InvoiceRecord(
        id=invoice.id,
        payment_id=invoice.payment_id,
        type=invoice.type,
        numero_documento=invoice.numero_documento,
        fecha_emision=invoice.fecha_emision,
        emisor_nombre=invoice.emisor_nombre,
        emisor_rtn=invoice.emisor_rtn,
        emisor_razon_social=invoice.emisor_razon_social,
        cai=invoice.cai,
        correlativo=invoice.correlativo,
        invoice_range_id=invoice.invoice_range_id,
        cliente_nombre=invoice.cliente_nombre,
        cliente_identidad=invoice.cliente_identidad,
        cliente_rtn=invoice.cliente_rtn,
        detalle_generico=invoice.detalle_generico,
        subtotal=invoice.subtotal,
        discount_amount=invoice.discount_amount,
        discount_reason=invoice.discount_reason,
        isv=invoice.isv,
        total=invoice.total,
        payments=[
            {"method": line.method.value, "amount": str(line.amount)}
            for line in invoice.payments
        ],
        observaciones=invoice.observaciones
    )
    for position, item in enumerate(invoice.items):
        record.items.append(InvoiceItemRecord(
            position=position,
            nombre=item.nombre,
            cantidad=item.cantidad,
            precio_unitario=item.precio_unitario,
            total=item.total
        ))
    return record


def invoice_from_record(record: InvoiceRecord) -> Invoice:
    return Invoice(
        id=record.id,
        payment_id=record.payment_id,
        type=record.type,
        numero_documento=record.numero_documento,
        fecha_emision=record.fecha_emision,
        emisor_nombre=record.emisor_nombre,
        emisor_rtn=record.emisor_rtn,
        emisor_razon_social=record.emisor_razon_social,
        cai=record.cai,
        correlativo=record.correlativo,
        invoice_range_id=record.invoice_range_id,
        cliente_nombre=record.cliente_nombre,
        cliente_identidad=record.cliente_identidad,
        cliente_rtn=record.cliente_rtn,
        detalle_generico=record.detalle_generico,
        items=tuple(InvoiceItem.model_validate(item) for item in record.items),
        subtotal=record.subtotal,
        discount_amount=record.discount_amount,
        discount_reason=record.discount_reason,
        isv=record.isv,
        total=record.total,
        payments=tuple(
            InvoicePaymentLine(method=PaymentMethod(line["method"]), amount=Decimal(line["amount"]))
            for line in (record.payments or [])
        ),
        observaciones=record.observaciones
    )


class InvoiceService:
    """Consulta de facturas emitidas y administración de rangos CAI"""

    def __init__(self, db: Session):
        self.db = db
        self.numbering = SqlInvoiceNumbering(db)

    # ===== FACTURAS =====

    def get_invoices(
        self,
        invoice_type: Optional[InvoiceType] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Dict[str, Any]:
        """
        Listar facturas emitidas, más recientes primero

        Returns:
            Dict con invoices, total, limit, offset
        """
        query = self.db.query(InvoiceRecord).options(selectinload(InvoiceRecord.items))
        if invoice_type:
            query = query.filter(InvoiceRecord.type == invoice_type)

        total = query.count()
        records = query.order_by(
            InvoiceRecord.fecha_emision.desc()
        ).offset(offset).limit(limit).all()

        return {
            "invoices": [invoice_from_record(r) for r in records],
            "total": total,
            "limit": limit,
            "offset": offset
        }

    def get_invoice_by_id(self, invoice_id: str) -> Invoice:
        record = self.db.query(InvoiceRecord).options(
            selectinload(InvoiceRecord.items)
        ).filter(InvoiceRecord.id == invoice_id).first()

        if not record:
            raise_http_error(NotFoundError("Factura", invoice_id))
        return invoice_from_record(record)

    # ===== RANGOS CAI =====

    def create_range(self, range_data: InvoiceRangeCreate) -> InvoiceRange:
        """
        Registrar un rango de facturación autorizado

        El primer correlativo emitido será rango_inicio.

        Raises:
            HTTPException: CAI duplicado o error de BD
        """
        try:
            existing = self.db.query(InvoiceRange).filter(InvoiceRange.cai == range_data.cai).first()
            if existing:
                raise BillingValidationError(
                    f"Ya existe un rango con el CAI '{range_data.cai}'",
                    "DUPLICATE_CAI",
                    {"cai": range_data.cai}
                )

            invoice_range = self.numbering.create_range(range_data)
            self.db.commit()
            self.db.refresh(invoice_range)

            logger.info(
                f"Invoice range {invoice_range.cai} registered: "
                f"{invoice_range.rango_inicio}-{invoice_range.rango_fin}"
            )
            return invoice_range

        except BillingError as e:
            self.db.rollback()
            raise_http_error(e)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating invoice range: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error interno: {str(e)}"
            )

    def get_ranges(self):
        return self.db.query(InvoiceRange).order_by(InvoiceRange.created_at.desc()).all()

    def get_range_status(self, today: Optional[date] = None) -> InvoiceRangeStatusReport:
        return build_range_status(self.numbering.active_range(), today or date.today())
