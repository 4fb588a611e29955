"""
Conciliación de pagos parciales

Un pago dividido se acepta cuando la suma de sus montos cubre el total con
una tolerancia de un centavo, en cualquier dirección. La suma y el saldo se
calculan con los montos tal como llegaron; cada asignación se redondea a
centavos solo para guardarla.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import logging

from app.common.exceptions import BillingValidationError, ReconciliationError
from app.common.money import ZERO, round_money, to_decimal
from app.core.config import settings
from app.modules.payments.enums import PaymentMethod, ReconciliationMode
from app.modules.payments.schemas import PartialPayment, Reconciliation

logger = logging.getLogger(__name__)

AllocationInput = Union[PartialPayment, Dict[str, Any]]


class PartialPaymentReconciler:

    def __init__(self, tolerance: Optional[Decimal] = None):
        self.tolerance = Decimal(str(tolerance)) if tolerance is not None else settings.RECONCILIATION_TOLERANCE

    def reconcile(self, total: Any, allocations: Iterable[AllocationInput]) -> Reconciliation:
        """
        Conciliar asignaciones contra el total del pago

        Todas las asignaciones inválidas se reportan juntas en un solo error.

        Raises:
            BillingValidationError: lista vacía o asignaciones inválidas
        """
        total = round_money(to_decimal(total, "total"))
        amounts = self._parse_allocations(list(allocations))

        allocated = sum((amount for _, amount in amounts), ZERO)
        remaining = total - allocated

        return Reconciliation(
            total=total,
            allocations=[PartialPayment(method=method, amount=round_money(amount)) for method, amount in amounts],
            allocated=allocated,
            remaining=remaining,
            balanced=abs(remaining) <= self.tolerance,
            mode=ReconciliationMode.SPLIT
        )

    def single(self, total: Any, method: Union[PaymentMethod, str]) -> Reconciliation:
        """Conciliación de un solo método: una asignación por el total exacto"""
        total = round_money(to_decimal(total, "total"))
        method = self._parse_method(method)
        if method is None:
            raise BillingValidationError(
                "Método de pago inválido",
                "INVALID_PAYMENT_METHOD",
                {"allowed": [m.value for m in PaymentMethod]}
            )

        return Reconciliation(
            total=total,
            allocations=[PartialPayment(method=method, amount=total)],
            allocated=total,
            remaining=ZERO,
            balanced=True,
            mode=ReconciliationMode.SINGLE
        )

    def ensure_balanced(self, reconciliation: Reconciliation) -> Reconciliation:
        if not reconciliation.balanced:
            logger.info(
                f"Unbalanced reconciliation: total={reconciliation.total} "
                f"remaining={reconciliation.remaining}"
            )
            raise ReconciliationError(reconciliation.total, reconciliation.remaining)
        return reconciliation

    def summarize_by_method(self, allocations: Iterable[PartialPayment]) -> Dict[PaymentMethod, Decimal]:
        """Montos agrupados por método, en orden de primera aparición"""
        summary: Dict[PaymentMethod, Decimal] = {}
        for allocation in allocations:
            summary[allocation.method] = round_money(summary.get(allocation.method, ZERO) + allocation.amount)
        return summary

    # ===== HELPERS =====

    def _parse_allocations(self, allocations: List[AllocationInput]) -> List[Tuple[PaymentMethod, Decimal]]:
        if not allocations:
            raise BillingValidationError(
                "Debe indicar al menos un pago parcial",
                "EMPTY_ALLOCATIONS"
            )

        parsed: List[Tuple[PaymentMethod, Decimal]] = []
        errors: List[Dict[str, Any]] = []

        for index, allocation in enumerate(allocations):
            if isinstance(allocation, PartialPayment):
                raw_method, raw_amount = allocation.method, allocation.amount
            elif isinstance(allocation, dict):
                raw_method, raw_amount = allocation.get("method"), allocation.get("amount")
            else:
                errors.append({"index": index, "error": "Asignación inválida"})
                continue

            method = self._parse_method(raw_method)
            if method is None:
                errors.append({"index": index, "error": f"Método de pago inválido: {raw_method}"})

            try:
                amount = to_decimal(raw_amount, "monto")
            except BillingValidationError as e:
                errors.append({"index": index, "error": e.message})
                continue

            if amount <= 0:
                errors.append({"index": index, "error": f"El monto debe ser mayor a 0: {amount}"})
                continue

            if method is not None:
                parsed.append((method, amount))

        if errors:
            raise BillingValidationError(
                f"{len(errors)} pago(s) parcial(es) inválido(s)",
                "INVALID_ALLOCATIONS",
                {"errors": errors}
            )
        return parsed

    @staticmethod
    def _parse_method(value: Any) -> Optional[PaymentMethod]:
        if isinstance(value, PaymentMethod):
            return value
        try:
            return PaymentMethod(value)
        except ValueError:
            return None
