"""
Ciclo de vida de un pago

    pending --pay--> paid --refund--> paid
    pending --cancel--> cancelled

Un pago pasa a 'paid' una sola vez y en ese momento se emite su factura.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Set
import logging

from app.common.exceptions import BillingValidationError, PaymentStateError
from app.common.money import round_money
from app.core.config import settings
from app.modules.invoices.generator import InvoiceGenerator
from app.modules.invoices.schemas import GenerateOptions, Invoice
from app.modules.payments.enums import PaymentMethod, PaymentStatus
from app.modules.payments.reconciliation import AllocationInput, PartialPaymentReconciler
from app.modules.payments.refunds import RefundLedger
from app.modules.payments.schemas import Discount, Payment, PaymentTotals, Refund, utcnow
from app.modules.payments.totals import calculate_payment_totals

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.CANCELLED},
    PaymentStatus.PAID: {PaymentStatus.PAID},
    PaymentStatus.CANCELLED: set(),
}


class PaymentLifecycle:

    def __init__(
        self,
        generator: InvoiceGenerator,
        reconciler: Optional[PartialPaymentReconciler] = None,
        refund_ledger: Optional[RefundLedger] = None
    ):
        self.generator = generator
        self.reconciler = reconciler or PartialPaymentReconciler()
        self.refund_ledger = refund_ledger or RefundLedger()

    @staticmethod
    def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
        return target in TRANSITIONS.get(current, set())

    def totals(self, payment: Payment, discount: Optional[Discount] = None) -> PaymentTotals:
        return calculate_payment_totals(
            payment.items,
            discount if discount is not None else payment.discount,
            self.generator.tax_calculator,
            self.generator.discount_engine
        )

    def pay(
        self,
        payment: Payment,
        method: Optional[PaymentMethod] = None,
        allocations: Optional[Iterable[AllocationInput]] = None,
        options: Optional[GenerateOptions] = None,
        allow_empty: bool = False,
        draft_discount: Optional[Discount] = None
    ) -> Invoice:
        """
        Cobrar un pago pendiente con un solo método o con pagos parciales

        Raises:
            PaymentStateError, BillingValidationError, ReconciliationError,
            InvoiceNumberingError
        """
        if payment.status != PaymentStatus.PENDING:
            raise PaymentStateError(payment.id, payment.status, "cobrar")

        if (method is None) == (allocations is None):
            raise BillingValidationError(
                "Debe indicar un método de pago o pagos parciales, no ambos",
                "INVALID_PAYMENT_MODE"
            )

        totals = self.totals(payment, draft_discount)
        if method is not None:
            reconciliation = self.reconciler.single(totals.total, method)
        else:
            reconciliation = self.reconciler.ensure_balanced(
                self.reconciler.reconcile(totals.total, allocations)
            )

        return self.generator.generate(
            payment,
            reconciliation,
            options=options,
            allow_empty=allow_empty,
            draft_discount=draft_discount
        )

    def cancel(self, payment: Payment) -> Payment:
        """Cancelar un pago pendiente; cancelar uno ya cancelado no hace nada"""
        if payment.status == PaymentStatus.CANCELLED:
            return payment
        if not self.can_transition(payment.status, PaymentStatus.CANCELLED):
            raise PaymentStateError(payment.id, payment.status, "cancelar")

        payment.status = PaymentStatus.CANCELLED
        payment.cancelled_at = utcnow()
        logger.info(f"Payment {payment.id} cancelled")
        return payment

    def refund(self, payment: Payment, amount: Any, reason: str, created_by: Optional[str] = None) -> Refund:
        """
        Registrar un reembolso sobre un pago cobrado

        La factura no cambia; solo baja el total neto reportado.
        """
        if payment.status != PaymentStatus.PAID or payment.invoice is None:
            raise PaymentStateError(payment.id, payment.status, "reembolsar")

        reason = (reason or "").strip()
        if not reason:
            raise BillingValidationError(
                "El motivo del reembolso es requerido",
                "EMPTY_FIELD",
                {"field": "reason"}
            )

        net = self.refund_ledger.add_refund(payment.invoice.total, payment.refunds, amount)
        refund = Refund(
            amount=round_money(Decimal(str(amount))),
            reason=reason,
            created_by=created_by
        )
        payment.refunds.append(refund)

        logger.info(f"Refund {refund.amount} registered on payment {payment.id}; net total {net}")
        return refund

    def net_total(self, payment: Payment) -> Optional[Decimal]:
        """Total facturado menos reembolsos; None si aún no hay factura"""
        if payment.invoice is None:
            return None
        return self.refund_ledger.net_total(payment.invoice.total, payment.refunds)


def build_lifecycle(numbering) -> PaymentLifecycle:
    """Armar el ciclo de vida con la configuración del despliegue"""
    return PaymentLifecycle(
        InvoiceGenerator(numbering),
        PartialPaymentReconciler(settings.RECONCILIATION_TOLERANCE),
        RefundLedger()
    )
