"""
Helper para cálculo del ISV (Impuesto Sobre Ventas, Honduras)

Los precios del catálogo ya incluyen el ISV. El impuesto se desglosa sobre el
total de la transacción y nunca por línea, para no acumular errores de
redondeo entre muchos items.
"""

from decimal import Decimal
from typing import Optional, Union

from app.common.money import round_money
from app.core.config import settings
from app.modules.taxes.schemas import TaxBreakdown

Amount = Union[Decimal, int, str]


class TaxCalculator:
    """Helper para desglosar y componer montos con una tasa única de ISV"""

    def __init__(self, rate: Optional[Decimal] = None):
        self.rate = Decimal(str(rate)) if rate is not None else settings.ISV_RATE

    def decompose(self, total: Amount) -> TaxBreakdown:
        """
        Extraer el ISV de un monto que YA lo incluye

        Fórmula: subtotal = total / (1 + tasa)

        Args:
            total: Monto con ISV incluido

        Returns:
            Desglose con subtotal e ISV (isv = total - subtotal)
        """
        total = Decimal(str(total))
        subtotal = round_money(total / (1 + self.rate))
        return TaxBreakdown(
            subtotal=subtotal,
            isv=round_money(total - subtotal),
            total=total,
            rate=self.rate
        )

    def compose(self, subtotal: Amount) -> TaxBreakdown:
        """
        Agregar el ISV a un subtotal sin impuesto

        Args:
            subtotal: Monto base sin ISV

        Returns:
            Desglose con el total resultante
        """
        subtotal = Decimal(str(subtotal))
        isv = self.calculate_tax(subtotal)
        return TaxBreakdown(
            subtotal=subtotal,
            isv=isv,
            total=round_money(subtotal + isv),
            rate=self.rate
        )

    def calculate_tax(self, base_amount: Amount) -> Decimal:
        """Calcular el valor del impuesto con redondeo comercial"""
        return round_money(Decimal(str(base_amount)) * self.rate)


def get_isv_rate_info() -> dict:
    """
    Obtener la tasa vigente del sistema
    Útil para interfaces de usuario
    """
    return {
        "name": f"ISV {(settings.ISV_RATE * 100).normalize():f}%",
        "rate": settings.ISV_RATE,
        "description": "Impuesto Sobre Ventas incluido en los precios"
    }
