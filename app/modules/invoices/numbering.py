"""
Numeración de documentos

- Recibos simples: secuencia "REC-000001", "REC-000002", ...
- Facturas legales: correlativo dentro de un rango CAI autorizado, con formato
  "<punto_emision>-01-<correlativo de 8 dígitos>".

Un rango es utilizable mientras esté activo, tenga correlativos disponibles y
su fecha límite de emisión no haya llegado. Al emitir el último correlativo el
rango queda agotado.
"""
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Protocol
from sqlalchemy.orm import Session
import logging

from app.common.exceptions import InvoiceNumberingError
from app.core.config import settings
from app.common.mixins import new_id
from app.modules.invoices.models import InvoiceRange, ReceiptSequence
from app.modules.invoices.schemas import (
    DocumentNumber, InvoiceRangeCreate, InvoiceRangeState, InvoiceRangeStatus, InvoiceRangeStatusReport
)

logger = logging.getLogger(__name__)


class DocumentNumbering(Protocol):
    def next_receipt_number(self) -> DocumentNumber:
        ...

    def next_legal_number(self, today: date) -> DocumentNumber:
        ...


def format_receipt_number(prefix: str, number: int) -> str:
    return f"{prefix}{number:06d}"


def format_legal_number(punto_emision: str, correlativo: int) -> str:
    return f"{punto_emision}-01-{correlativo:08d}"


def select_usable_range(ranges: Iterable, today: date):
    """
    Primer rango activo y vigente de la lista (ordenada del más reciente al
    más antiguo). Los rangos con fecha límite cumplida se marcan vencidos.
    """
    for invoice_range in ranges:
        if invoice_range.estado != InvoiceRangeStatus.ACTIVE:
            continue
        if invoice_range.fecha_limite_emision <= today:
            invoice_range.estado = InvoiceRangeStatus.EXPIRED
            logger.warning(f"Invoice range {invoice_range.cai} expired on {invoice_range.fecha_limite_emision}")
            continue
        if invoice_range.correlativo_actual >= invoice_range.rango_fin:
            invoice_range.estado = InvoiceRangeStatus.EXHAUSTED
            continue
        return invoice_range
    return None


def reserve_correlativo(invoice_range) -> DocumentNumber:
    """
    Tomar el siguiente correlativo del rango

    Raises:
        InvoiceNumberingError: si el siguiente correlativo excede el rango
    """
    correlativo = invoice_range.correlativo_actual + 1

    if correlativo > invoice_range.rango_fin:
        invoice_range.estado = InvoiceRangeStatus.EXHAUSTED
        raise InvoiceNumberingError(
            "El rango de facturación se ha agotado. Configure un nuevo rango.",
            {"cai": invoice_range.cai, "rango_fin": invoice_range.rango_fin}
        )

    invoice_range.correlativo_actual = correlativo
    if correlativo == invoice_range.rango_fin:
        invoice_range.estado = InvoiceRangeStatus.EXHAUSTED
        logger.warning(f"Invoice range {invoice_range.cai} exhausted at correlativo {correlativo}")

    return DocumentNumber(
        numero_documento=format_legal_number(invoice_range.punto_emision, correlativo),
        correlativo=correlativo,
        invoice_range_id=invoice_range.id,
        cai=invoice_range.cai,
        emisor_rtn=invoice_range.rtn,
        emisor_razon_social=invoice_range.razon_social,
        emisor_nombre_comercial=invoice_range.nombre_comercial
    )


def no_range_error() -> InvoiceNumberingError:
    return InvoiceNumberingError("No hay rangos de facturación activos disponibles")


def build_range_status(invoice_range, today: date) -> InvoiceRangeStatusReport:
    """Advertencias de vencimiento y de correlativos disponibles del rango activo"""
    if invoice_range is None:
        return InvoiceRangeStatusReport(
            has_active_range=False,
            warnings=["No hay un rango de facturación activo configurado"]
        )

    warnings: List[str] = []
    days_remaining = (invoice_range.fecha_limite_emision - today).days
    available = invoice_range.rango_fin - invoice_range.correlativo_actual

    if days_remaining < settings.RANGE_WARNING_DAYS:
        if days_remaining < 0:
            warnings.append(f"El rango de facturación CAI {invoice_range.cai} ha vencido")
        else:
            warnings.append(
                f"El rango de facturación vence en {days_remaining} días "
                f"({invoice_range.fecha_limite_emision.strftime('%d/%m/%Y')})"
            )

    if available < settings.RANGE_WARNING_REMAINING:
        warnings.append(f"Solo quedan {available} facturas disponibles en el rango actual")

    return InvoiceRangeStatusReport(
        has_active_range=True,
        warnings=warnings,
        cai=invoice_range.cai,
        correlativo_actual=invoice_range.correlativo_actual,
        rango_fin=invoice_range.rango_fin,
        correlativos_disponibles=available,
        fecha_limite_emision=invoice_range.fecha_limite_emision,
        days_remaining=days_remaining
    )


class InvoiceSequence:
    """Numeración en memoria (caja sin conexión, pruebas)"""

    def __init__(
        self,
        ranges: Optional[List[InvoiceRangeState]] = None,
        receipt_prefix: Optional[str] = None,
        last_receipt: int = 0
    ):
        self.ranges: List[InvoiceRangeState] = list(ranges or [])
        self.receipt_prefix = receipt_prefix or settings.RECEIPT_PREFIX
        self.last_receipt = last_receipt

    def add_range(self, data: InvoiceRangeCreate) -> InvoiceRangeState:
        invoice_range = InvoiceRangeState(
            **data.model_dump(),
            id=new_id(),
            correlativo_actual=data.rango_inicio - 1
        )
        self.ranges.append(invoice_range)
        return invoice_range

    def active_range(self) -> Optional[InvoiceRangeState]:
        return next(
            (r for r in reversed(self.ranges) if r.estado == InvoiceRangeStatus.ACTIVE),
            None
        )

    def next_receipt_number(self) -> DocumentNumber:
        self.last_receipt += 1
        return DocumentNumber(numero_documento=format_receipt_number(self.receipt_prefix, self.last_receipt))

    def next_legal_number(self, today: date) -> DocumentNumber:
        invoice_range = select_usable_range(reversed(self.ranges), today)
        if invoice_range is None:
            raise no_range_error()
        return reserve_correlativo(invoice_range)


class SqlInvoiceNumbering:
    """
    Numeración persistida. Los contadores se actualizan en la sesión del
    llamador y se confirman junto con la factura.
    """

    def __init__(self, db: Session, receipt_prefix: Optional[str] = None):
        self.db = db
        self.receipt_prefix = receipt_prefix or settings.RECEIPT_PREFIX

    def next_receipt_number(self) -> DocumentNumber:
        sequence = self.db.query(ReceiptSequence).filter(
            ReceiptSequence.prefix == self.receipt_prefix
        ).with_for_update().first()

        if not sequence:
            sequence = ReceiptSequence(prefix=self.receipt_prefix, current_number=0)
            self.db.add(sequence)
            self.db.flush()

        sequence.current_number += 1
        sequence.updated_at = datetime.now(timezone.utc)

        return DocumentNumber(numero_documento=format_receipt_number(sequence.prefix, sequence.current_number))

    def next_legal_number(self, today: date) -> DocumentNumber:
        ranges = self.db.query(InvoiceRange).filter(
            InvoiceRange.estado == InvoiceRangeStatus.ACTIVE
        ).order_by(
            InvoiceRange.created_at.desc(),
            InvoiceRange.rango_inicio.desc()
        ).with_for_update().all()

        invoice_range = select_usable_range(ranges, today)
        if invoice_range is None:
            raise no_range_error()
        return reserve_correlativo(invoice_range)

    def active_range(self) -> Optional[InvoiceRange]:
        return self.db.query(InvoiceRange).filter(
            InvoiceRange.estado == InvoiceRangeStatus.ACTIVE
        ).order_by(
            InvoiceRange.created_at.desc(),
            InvoiceRange.rango_inicio.desc()
        ).first()

    def create_range(self, data: InvoiceRangeCreate) -> InvoiceRange:
        invoice_range = InvoiceRange(
            **data.model_dump(),
            correlativo_actual=data.rango_inicio - 1,
            estado=InvoiceRangeStatus.ACTIVE
        )
        self.db.add(invoice_range)
        self.db.flush()
        return invoice_range
