"""
Emisión de facturas

La factura es una copia inmutable del pago al momento del cobro. Toda la
validación ocurre antes de tocar el pago: si algo falla no se reserva número,
no se emite documento y el pago sigue pendiente.
"""
from datetime import datetime
from typing import Callable, Optional
import logging

from app.common.exceptions import BillingValidationError, PaymentStateError, ReconciliationError
from app.common.mixins import new_id
from app.common.money import round_money
from app.common.validators import validate_honduras_rtn, format_honduras_rtn
from app.core.config import settings
from app.modules.invoices.numbering import DocumentNumbering
from app.modules.invoices.schemas import (
    GenerateOptions, Invoice, InvoiceItem, InvoicePaymentLine, InvoiceType
)
from app.modules.payments.discounts import DiscountEngine
from app.modules.payments.enums import PaymentStatus, ReconciliationMode
from app.modules.payments.schemas import Discount, Payment, PaymentTotals, Reconciliation, utcnow
from app.modules.payments.totals import calculate_payment_totals
from app.modules.taxes.calculator import TaxCalculator

logger = logging.getLogger(__name__)


class InvoiceGenerator:

    def __init__(
        self,
        numbering: DocumentNumbering,
        tax_calculator: Optional[TaxCalculator] = None,
        discount_engine: Optional[DiscountEngine] = None,
        emisor_nombre: Optional[str] = None,
        generic_label: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.numbering = numbering
        self.tax_calculator = tax_calculator or TaxCalculator()
        self.discount_engine = discount_engine or DiscountEngine()
        self.emisor_nombre = emisor_nombre or settings.EMISOR_NOMBRE
        self.generic_label = generic_label or settings.GENERIC_ITEM_LABEL
        self.clock = clock

    def generate(
        self,
        payment: Payment,
        reconciliation: Reconciliation,
        options: Optional[GenerateOptions] = None,
        allow_empty: bool = False,
        draft_discount: Optional[Discount] = None
    ) -> Invoice:
        """
        Emitir la factura de un pago pendiente y marcarlo como pagado

        Args:
            payment: Pago en estado pending
            reconciliation: Conciliación calculada contra el total del pago
            options: Descripción genérica y datos de RTN
            allow_empty: Permite emitir un pago sin items
            draft_discount: Descuento en edición; reemplaza al del pago solo
                si la emisión tiene éxito

        Raises:
            PaymentStateError: el pago no está pendiente
            BillingValidationError: sin items, descuento o RTN inválidos
            ReconciliationError: pagos sin cuadrar o contra otro total
            InvoiceNumberingError: sin rango CAI disponible
        """
        options = options or GenerateOptions()

        if payment.status != PaymentStatus.PENDING or payment.invoice is not None:
            raise PaymentStateError(payment.id, payment.status, "emitir la factura")

        if not payment.items and not allow_empty:
            raise BillingValidationError(
                "El pago no tiene items",
                "EMPTY_PAYMENT",
                {"payment_id": payment.id}
            )

        discount = draft_discount if draft_discount is not None else payment.discount
        totals = calculate_payment_totals(payment.items, discount, self.tax_calculator, self.discount_engine)

        cliente_rtn = self._resolve_rtn(options)
        self._check_reconciliation(reconciliation, totals)

        issued_at = self.clock()
        if options.use_rtn:
            number = self.numbering.next_legal_number(issued_at.date())
        else:
            number = self.numbering.next_receipt_number()

        invoice = Invoice(
            id=new_id(),
            payment_id=payment.id,
            type=InvoiceType.LEGAL if options.use_rtn else InvoiceType.SIMPLE,
            numero_documento=number.numero_documento,
            fecha_emision=issued_at,
            emisor_nombre=number.emisor_nombre_comercial or self.emisor_nombre,
            emisor_rtn=number.emisor_rtn,
            emisor_razon_social=number.emisor_razon_social,
            cai=number.cai,
            correlativo=number.correlativo,
            invoice_range_id=number.invoice_range_id,
            cliente_nombre=self._client_name(payment, options),
            cliente_identidad=payment.patient_identity,
            cliente_rtn=cliente_rtn,
            detalle_generico=options.use_generic_description,
            items=tuple(
                InvoiceItem(
                    nombre=self.generic_label if options.use_generic_description else item.name,
                    cantidad=item.quantity,
                    precio_unitario=item.unit_price,
                    total=item.line_total
                )
                for item in payment.items
            ),
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            discount_reason=discount.reason if discount else None,
            isv=totals.isv,
            total=totals.total,
            payments=tuple(
                InvoicePaymentLine(method=a.method, amount=a.amount)
                for a in reconciliation.allocations
            ),
            observaciones=options.observaciones
        )

        # Desde aquí nada puede fallar: se aplica todo junto
        payment.discount = discount
        payment.status = PaymentStatus.PAID
        payment.paid_at = issued_at
        if reconciliation.mode == ReconciliationMode.SINGLE:
            payment.payment_method = reconciliation.allocations[0].method
            payment.partial_payments = []
        else:
            payment.payment_method = None
            payment.partial_payments = list(reconciliation.allocations)
        payment.invoice = invoice

        logger.info(
            f"Invoice {invoice.numero_documento} ({invoice.type.value}) issued for payment "
            f"{payment.id}: total={invoice.total}"
        )
        return invoice

    def _resolve_rtn(self, options: GenerateOptions) -> Optional[str]:
        if not options.use_rtn:
            return None

        if not options.cliente_rtn or not options.cliente_rtn.strip():
            raise BillingValidationError("El RTN es requerido para factura legal", "EMPTY_FIELD", {"field": "cliente_rtn"})
        if not validate_honduras_rtn(options.cliente_rtn):
            raise BillingValidationError(
                "RTN inválido. Formato: 0000-0000-000000",
                "INVALID_RTN",
                {"cliente_rtn": options.cliente_rtn}
            )
        if not options.company_name or not options.company_name.strip():
            raise BillingValidationError(
                "El nombre de la empresa es requerido para factura legal",
                "EMPTY_FIELD",
                {"field": "company_name"}
            )
        return format_honduras_rtn(options.cliente_rtn)

    def _check_reconciliation(self, reconciliation: Reconciliation, totals: PaymentTotals) -> None:
        if reconciliation.total != totals.total:
            raise ReconciliationError(
                totals.total,
                round_money(totals.total - reconciliation.allocated),
                reason=(
                    f"La conciliación se calculó contra {reconciliation.total} "
                    f"pero el total del pago es {totals.total}"
                )
            )
        if not reconciliation.balanced:
            raise ReconciliationError(reconciliation.total, reconciliation.remaining)

    @staticmethod
    def _client_name(payment: Payment, options: GenerateOptions) -> str:
        if options.use_rtn:
            return options.company_name.strip()
        if options.cliente_nombre and options.cliente_nombre.strip():
            return options.cliente_nombre.strip()
        return payment.patient_name or payment.patient_ref
