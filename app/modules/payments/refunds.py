from decimal import Decimal
from typing import Any, Iterable
import logging

from app.common.exceptions import BillingValidationError
from app.common.money import ZERO, round_money, to_decimal
from app.modules.payments.schemas import Refund

logger = logging.getLogger(__name__)


class RefundLedger:
    """
    Registro de reembolsos de un pago cobrado

    Solo agrega; nunca modifica la factura emitida. El total neto reportado
    es total facturado menos la suma de reembolsos.
    """

    def total_refunded(self, refunds: Iterable[Refund]) -> Decimal:
        return round_money(sum((r.amount for r in refunds), ZERO))

    def net_total(self, invoice_total: Decimal, refunds: Iterable[Refund]) -> Decimal:
        return round_money(invoice_total - self.total_refunded(refunds))

    def add_refund(self, invoice_total: Any, prior_refunds: Iterable[Refund], amount: Any) -> Decimal:
        """
        Validar un nuevo reembolso y devolver el total neto resultante

        Raises:
            BillingValidationError: monto no positivo o reembolsos que superan
                el total facturado
        """
        invoice_total = round_money(to_decimal(invoice_total, "total facturado"))
        amount = round_money(to_decimal(amount, "monto del reembolso"))

        if amount <= 0:
            raise BillingValidationError(
                f"El monto del reembolso debe ser mayor a 0: {amount}",
                "INVALID_REFUND",
                {"amount": str(amount)}
            )

        already = self.total_refunded(prior_refunds)
        net = round_money(invoice_total - already - amount)
        if net < 0:
            raise BillingValidationError(
                f"El reembolso excede lo disponible: facturado {invoice_total}, "
                f"reembolsado {already}, solicitado {amount}",
                "REFUND_EXCEEDS_TOTAL",
                {
                    "invoice_total": str(invoice_total),
                    "total_refunded": str(already),
                    "amount": str(amount),
                    "available": str(round_money(invoice_total - already))
                }
            )
        return net
