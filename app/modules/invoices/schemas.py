from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List, Tuple
from datetime import date, datetime
from enum import Enum

from app.common.validators import validate_honduras_rtn, format_honduras_rtn
from app.modules.payments.enums import PaymentMethod


class InvoiceType(str, Enum):
    SIMPLE = "simple"    # Recibo simple, sin RTN
    LEGAL = "legal"      # Factura fiscal con RTN y CAI


class InvoiceRangeStatus(str, Enum):
    ACTIVE = "activo"
    EXPIRED = "vencido"
    EXHAUSTED = "agotado"


# ===== SNAPSHOT DE FACTURA =====

class InvoiceItem(BaseModel):
    """Línea de factura: copia del item del pago al momento de emitir"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    nombre: str
    cantidad: int
    precio_unitario: Decimal
    total: Decimal


class InvoicePaymentLine(BaseModel):
    """Método y monto con el que se pagó la factura"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    method: PaymentMethod
    amount: Decimal


class Invoice(BaseModel):
    """
    Documento emitido al pasar un pago a 'paid'.

    Es el registro legal: nunca se recalcula desde datos vivos y los
    reembolsos no lo modifican.
    """
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    payment_id: str
    type: InvoiceType
    numero_documento: str
    fecha_emision: datetime

    # Emisor
    emisor_nombre: str
    emisor_rtn: Optional[str] = None
    emisor_razon_social: Optional[str] = None
    cai: Optional[str] = None
    correlativo: Optional[int] = None
    invoice_range_id: Optional[str] = None

    # Cliente
    cliente_nombre: str
    cliente_identidad: Optional[str] = None
    cliente_rtn: Optional[str] = None

    # Detalle y montos
    detalle_generico: bool = False
    items: Tuple[InvoiceItem, ...] = ()
    subtotal: Decimal
    discount_amount: Decimal = Decimal('0.00')
    discount_reason: Optional[str] = None
    isv: Decimal
    total: Decimal
    payments: Tuple[InvoicePaymentLine, ...] = ()
    observaciones: Optional[str] = None


class GenerateOptions(BaseModel):
    """
    Opciones explícitas de emisión.

    use_generic_description: reemplaza el nombre de cada línea por la etiqueta
    genérica solo en el documento emitido.
    use_rtn: emite factura legal a nombre de la empresa indicada.
    """
    use_generic_description: bool = False
    use_rtn: bool = False
    cliente_rtn: Optional[str] = Field(None, max_length=20)
    company_name: Optional[str] = Field(None, max_length=200)
    cliente_nombre: Optional[str] = Field(None, max_length=200, description="Nombre para recibo simple")
    observaciones: Optional[str] = Field(None, max_length=500)


# ===== RANGOS DE FACTURACIÓN (CAI) =====

class InvoiceRangeCreate(BaseModel):
    rtn: str = Field(..., min_length=14, max_length=20)
    razon_social: str = Field(..., min_length=1, max_length=200)
    nombre_comercial: str = Field(..., min_length=1, max_length=200)
    cai: str = Field(..., min_length=1, max_length=50)
    fecha_limite_emision: date
    punto_emision: str = Field(..., min_length=1, max_length=20, description="Ej. 000-001")
    rango_inicio: int = Field(..., ge=1)
    rango_fin: int = Field(..., ge=1)

    @model_validator(mode='after')
    def validate_range(self):
        if self.rango_fin < self.rango_inicio:
            raise ValueError('El fin del rango no puede ser menor al inicio')
        return self

    @field_validator('rtn')
    @classmethod
    def validate_rtn(cls, v):
        if not validate_honduras_rtn(v):
            raise ValueError('RTN inválido. Formato: 0000-0000-000000')
        return format_honduras_rtn(v)


class InvoiceRangeState(InvoiceRangeCreate):
    """Rango mutable usado por la numeración en memoria"""
    id: str
    correlativo_actual: int
    estado: InvoiceRangeStatus = InvoiceRangeStatus.ACTIVE


class DocumentNumber(BaseModel):
    """Número reservado para un documento, con los datos fiscales del rango si aplica"""
    model_config = ConfigDict(frozen=True)

    numero_documento: str
    correlativo: Optional[int] = None
    invoice_range_id: Optional[str] = None
    cai: Optional[str] = None
    emisor_rtn: Optional[str] = None
    emisor_razon_social: Optional[str] = None
    emisor_nombre_comercial: Optional[str] = None


class InvoiceRangeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    rtn: str
    razon_social: str
    nombre_comercial: str
    cai: str
    fecha_limite_emision: date
    punto_emision: str
    rango_inicio: int
    rango_fin: int
    correlativo_actual: int
    estado: InvoiceRangeStatus
    created_at: datetime


class InvoiceRangeStatusReport(BaseModel):
    """Estado del rango activo con advertencias para caja"""
    has_active_range: bool
    warnings: List[str] = Field(default_factory=list)
    cai: Optional[str] = None
    correlativo_actual: Optional[int] = None
    rango_fin: Optional[int] = None
    correlativos_disponibles: Optional[int] = None
    fecha_limite_emision: Optional[date] = None
    days_remaining: Optional[int] = None


# ===== API =====

class InvoiceList(BaseModel):
    invoices: List[Invoice]
    total: int
    limit: int
    offset: int
