"""
Descuento global de un pago

El descuento siempre se calcula sobre el subtotal SIN ISV y el impuesto se
calcula después sobre la base descontada. Invertir el orden cambia el ISV
reportado en la factura.
"""
from decimal import Decimal
from typing import Optional

from app.common.exceptions import BillingValidationError
from app.common.money import ZERO, is_whole_cents, round_money, to_decimal
from app.modules.payments.enums import DiscountType
from app.modules.payments.schemas import Discount

HUNDRED = Decimal('100')


class DiscountEngine:
    """Aplica un único descuento (porcentual o absoluto) a un subtotal"""

    def validate(self, subtotal: Decimal, discount: Optional[Discount]) -> None:
        """
        Validar el descuento contra el subtotal sin ISV

        Raises:
            BillingValidationError: porcentaje fuera de [0, 100], monto
                absoluto negativo o mayor al subtotal, más de 2 decimales
        """
        if discount is None:
            return

        value = to_decimal(discount.value, "descuento")
        if value < 0:
            raise BillingValidationError(
                f"El descuento no puede ser negativo: {value}",
                "INVALID_DISCOUNT",
                {"type": discount.type.value, "value": str(value)}
            )
        if not is_whole_cents(value):
            raise BillingValidationError(
                f"El descuento admite como máximo 2 decimales: {value}",
                "INVALID_DISCOUNT",
                {"type": discount.type.value, "value": str(value)}
            )

        if discount.type == DiscountType.PERCENTAGE:
            if value > HUNDRED:
                raise BillingValidationError(
                    f"El descuento porcentual no puede ser mayor a 100%: {value}",
                    "INVALID_DISCOUNT",
                    {"type": discount.type.value, "value": str(value)}
                )
            return

        if value > subtotal:
            raise BillingValidationError(
                f"El descuento absoluto ({value}) no puede ser mayor al subtotal ({subtotal})",
                "INVALID_DISCOUNT",
                {"type": discount.type.value, "value": str(value), "subtotal": str(subtotal)}
            )

    def apply(self, subtotal: Decimal, discount: Optional[Discount]) -> Decimal:
        """
        Calcular el monto del descuento (ruta autoritativa, nunca recorta)

        Args:
            subtotal: Subtotal sin ISV
            discount: Descuento a aplicar o None

        Returns:
            Monto del descuento redondeado a 2 decimales
        """
        if discount is None:
            return ZERO

        self.validate(subtotal, discount)
        value = Decimal(str(discount.value))

        if discount.type == DiscountType.PERCENTAGE:
            return round_money(subtotal * value / HUNDRED)
        return round_money(value)

    def display_amount(self, subtotal: Decimal, discount: Optional[Discount]) -> Decimal:
        """
        Monto a mostrar mientras el cajero edita el descuento.

        Recorta a [0, subtotal] en lugar de rechazar; nunca se usa para
        totales persistidos ni facturas.
        """
        if discount is None:
            return ZERO

        value = Decimal(str(discount.value))
        if not value.is_finite():
            return ZERO

        if discount.type == DiscountType.PERCENTAGE:
            value = min(max(value, ZERO), HUNDRED)
            amount = subtotal * value / HUNDRED
        else:
            amount = value
        return round_money(min(max(amount, ZERO), subtotal))
