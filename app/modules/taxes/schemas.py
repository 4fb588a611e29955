from pydantic import BaseModel, ConfigDict, Field
from decimal import Decimal


class TaxBreakdown(BaseModel):
    """Desglose de ISV de un monto: subtotal (sin ISV) + isv = total"""
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = Field(..., description="Monto sin impuesto")
    isv: Decimal = Field(..., description="Impuesto sobre ventas")
    total: Decimal = Field(..., description="Monto con impuesto incluido")
    rate: Decimal = Field(..., description="Tasa aplicada (ej. 0.15 para 15%)")


class TaxRateOut(BaseModel):
    """Tasa vigente del sistema"""
    name: str
    rate: Decimal
    description: str
