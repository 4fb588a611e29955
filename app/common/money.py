"""
Helpers de montos: todo el dinero se maneja como Decimal redondeado a centavos
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from app.common.exceptions import BillingValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def round_money(value: Decimal) -> Decimal:
    """Redondear a 2 decimales usando ROUND_HALF_UP (redondeo comercial)"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field: str = "monto") -> Decimal:
    """
    Convertir un valor numérico a Decimal.

    Raises:
        BillingValidationError: si el valor no es numérico o no es finito
    """
    if isinstance(value, bool) or value is None:
        raise BillingValidationError(
            f"El {field} debe ser numérico",
            details={"field": field, "value": repr(value)}
        )
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise BillingValidationError(
            f"El {field} debe ser numérico",
            details={"field": field, "value": repr(value)}
        )
    if not result.is_finite():
        raise BillingValidationError(
            f"El {field} debe ser un número finito",
            details={"field": field, "value": repr(value)}
        )
    return result


def is_whole_cents(value: Decimal) -> bool:
    """True si el monto no tiene fracciones de centavo (se guarda tal cual en Numeric(15, 2))"""
    return value == round_money(value)
