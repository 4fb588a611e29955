from fastapi import APIRouter, Query
from decimal import Decimal

from app.modules.taxes.calculator import TaxCalculator, get_isv_rate_info
from app.modules.taxes.schemas import TaxBreakdown, TaxRateOut

taxes_router = APIRouter(prefix="/taxes", tags=["Taxes"])


@taxes_router.get("/isv", response_model=TaxRateOut)
def get_isv_rate():
    """
    Obtener la tasa de ISV vigente

    La tasa es una constante de despliegue, no un parámetro por transacción.
    """
    return get_isv_rate_info()


@taxes_router.get("/isv/breakdown", response_model=TaxBreakdown)
def get_isv_breakdown(total: Decimal = Query(..., ge=0, description="Monto con ISV incluido")):
    """
    Desglosar el ISV incluido en un monto final

    Útil para mostrar subtotal e impuesto de un precio con ISV incluido.
    """
    return TaxCalculator().decompose(total)
