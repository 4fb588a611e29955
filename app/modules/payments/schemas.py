from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List, Union, Literal, Annotated
from datetime import datetime, timezone

from app.common.mixins import new_id
from app.common.money import round_money
from app.modules.invoices.schemas import Invoice, GenerateOptions
from app.modules.payments.enums import PaymentStatus, PaymentMethod, DiscountType, ReconciliationMode


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ===== ORIGEN DE LOS ITEMS =====

class CatalogSource(BaseModel):
    """Item del catálogo de precios, con su precio base"""
    kind: Literal["catalog"] = "catalog"
    id: str = Field(..., min_length=1)


class VariantSource(BaseModel):
    """Variante con precio propio de un item del catálogo"""
    kind: Literal["variant"] = "variant"
    base_id: str = Field(..., min_length=1)
    variant_id: str = Field(..., min_length=1)


class CustomSource(BaseModel):
    """Item variable creado en caja, sin referencia al catálogo"""
    kind: Literal["custom"] = "custom"
    name: str
    unit_price: Decimal


LineItemSource = Annotated[
    Union[CatalogSource, VariantSource, CustomSource],
    Field(discriminator="kind")
]


class CatalogRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    variant_id: Optional[str] = None


# ===== AGREGADO DE PAGO =====

class LineItem(BaseModel):
    """
    Línea del carrito. `name` y `unit_price` son una copia del catálogo al
    momento de agregarla y no se pueden reasignar.
    """
    id: str = Field(default_factory=new_id)
    source_ref: Optional[CatalogRef] = None
    name: str = Field(..., frozen=True)
    unit_price: Decimal = Field(..., frozen=True, description="Precio unitario con ISV incluido")
    quantity: int
    is_custom: bool = False

    @property
    def line_total(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)


class Discount(BaseModel):
    type: DiscountType
    value: Decimal
    reason: Optional[str] = None


class PartialPayment(BaseModel):
    method: PaymentMethod
    amount: Decimal


class Refund(BaseModel):
    id: str = Field(default_factory=new_id)
    amount: Decimal
    reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Payment(BaseModel):
    """Transacción de cobro de un paciente"""
    id: str = Field(default_factory=new_id)
    patient_ref: str
    patient_name: Optional[str] = None
    patient_identity: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    discount: Optional[Discount] = None
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    partial_payments: List[PartialPayment] = Field(default_factory=list)
    refunds: List[Refund] = Field(default_factory=list)
    invoice: Optional[Invoice] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class PaymentTotals(BaseModel):
    """Desglose del total: subtotal sin ISV -> descuento -> ISV sobre la base descontada"""
    subtotal_inclusive: Decimal = Field(..., description="Suma de líneas con ISV incluido")
    subtotal: Decimal = Field(..., description="Subtotal sin ISV antes del descuento")
    discount_amount: Decimal
    discounted_subtotal: Decimal
    isv: Decimal
    total: Decimal


class Reconciliation(BaseModel):
    """
    Resultado de conciliar asignaciones de pago contra un total.

    `allocated` y `remaining` son exactos (sin redondear); las asignaciones
    quedan redondeadas a centavos para la factura.
    """
    model_config = ConfigDict(frozen=True)

    total: Decimal
    allocations: List[PartialPayment]
    allocated: Decimal
    remaining: Decimal
    balanced: bool
    mode: ReconciliationMode


# ===== API: REQUESTS =====

class LineItemCreate(BaseModel):
    source: LineItemSource
    quantity: int = Field(1, ge=1, description="Cantidad entera mayor a 0")


class DiscountIn(BaseModel):
    type: DiscountType
    value: Decimal = Field(..., ge=0)
    reason: Optional[str] = Field(None, max_length=500)

    def to_discount(self) -> Discount:
        return Discount(type=self.type, value=self.value, reason=self.reason)


class PaymentCreate(BaseModel):
    patient_ref: str = Field(..., min_length=1, max_length=100)
    patient_name: Optional[str] = Field(None, max_length=200)
    patient_identity: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None
    items: List[LineItemCreate] = Field(default_factory=list)
    discount: Optional[DiscountIn] = None


class QuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class PartialPaymentIn(BaseModel):
    method: PaymentMethod
    amount: Decimal = Field(..., gt=0, description="Monto debe ser mayor a 0")


class ReconcileRequest(BaseModel):
    partial_payments: List[PartialPaymentIn] = Field(..., min_length=1)


class PayRequest(BaseModel):
    """Cobro de un pago: un solo método o pago dividido, nunca ambos"""
    payment_method: Optional[PaymentMethod] = None
    partial_payments: Optional[List[PartialPaymentIn]] = None
    options: GenerateOptions = Field(default_factory=GenerateOptions)
    allow_empty: bool = Field(False, description="Continuar sin items")
    draft_discount: Optional[DiscountIn] = None

    @model_validator(mode='after')
    def validate_mode(self):
        if self.payment_method is None and not self.partial_payments:
            raise ValueError('Debe indicar un método de pago o pagos parciales')
        if self.payment_method is not None and self.partial_payments:
            raise ValueError('No se puede combinar método único con pagos parciales')
        return self


class GenerateInvoiceRequest(PayRequest):
    payment_id: str


class RefundCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Monto debe ser mayor a 0")
    reason: str = Field(..., min_length=1, max_length=500)
    created_by: Optional[str] = Field(None, max_length=100)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, v):
        if not v.strip():
            raise ValueError('El motivo del reembolso es requerido')
        return v.strip()


# ===== API: RESPONSES =====

class LineItemOut(BaseModel):
    id: str
    source_ref: Optional[CatalogRef]
    name: str
    unit_price: Decimal
    quantity: int
    is_custom: bool
    line_total: Decimal


class PaymentDetail(BaseModel):
    id: str
    patient_ref: str
    patient_name: Optional[str]
    status: PaymentStatus
    items: List[LineItemOut]
    discount: Optional[Discount]
    payment_method: Optional[PaymentMethod]
    partial_payments: List[PartialPayment]
    refunds: List[Refund]
    totals: PaymentTotals
    total_refunded: Decimal
    net_total: Optional[Decimal] = None
    invoice: Optional[Invoice] = None
    notes: Optional[str]
    created_at: datetime
    paid_at: Optional[datetime]
    cancelled_at: Optional[datetime]


class RefundOut(BaseModel):
    refund: Refund
    total_refunded: Decimal
    net_total: Decimal


class RefundList(BaseModel):
    refunds: List[Refund]
    total_refunded: Decimal
    net_total: Optional[Decimal]
