from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Date, Text, JSON
from sqlalchemy.orm import relationship
from app.common.mixins import IdMixin, TimestampMixin
from app.modules.invoices.schemas import InvoiceType, InvoiceRangeStatus


class InvoiceRecord(Base, IdMixin, TimestampMixin):
    """Factura o recibo emitido. Una sola por pago y nunca se modifica."""
    __tablename__ = "invoices"

    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, unique=True, index=True)
    type = Column(Enum(InvoiceType), nullable=False)
    numero_documento = Column(String(50), nullable=False, unique=True)
    fecha_emision = Column(DateTime(timezone=True), nullable=False)

    # Emisor
    emisor_nombre = Column(String(200), nullable=False)
    emisor_rtn = Column(String(20), nullable=True)
    emisor_razon_social = Column(String(200), nullable=True)
    cai = Column(String(50), nullable=True)
    correlativo = Column(Integer, nullable=True)
    invoice_range_id = Column(String(36), ForeignKey("invoice_ranges.id"), nullable=True)

    # Cliente
    cliente_nombre = Column(String(200), nullable=False)
    cliente_identidad = Column(String(50), nullable=True)
    cliente_rtn = Column(String(20), nullable=True)

    # Montos
    detalle_generico = Column(Boolean, nullable=False, default=False)
    subtotal = Column(Numeric(15, 2), nullable=False)
    discount_amount = Column(Numeric(15, 2), nullable=False, default=0)
    discount_reason = Column(Text, nullable=True)
    isv = Column(Numeric(15, 2), nullable=False)
    total = Column(Numeric(15, 2), nullable=False)
    payments = Column(JSON, nullable=False, default=list)  # [{"method", "amount"}]
    observaciones = Column(Text, nullable=True)

    # Relationships
    items = relationship(
        "InvoiceItemRecord",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItemRecord.position"
    )
    invoice_range = relationship("InvoiceRange")


class InvoiceItemRecord(Base, IdMixin):
    __tablename__ = "invoice_items"

    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    nombre = Column(String(200), nullable=False)
    cantidad = Column(Integer, nullable=False)
    precio_unitario = Column(Numeric(15, 2), nullable=False)  # Con ISV incluido
    total = Column(Numeric(15, 2), nullable=False)

    # Relationships
    invoice = relationship("InvoiceRecord", back_populates="items")


class InvoiceRange(Base, IdMixin, TimestampMixin):
    """Rango de facturación autorizado (CAI)"""
    __tablename__ = "invoice_ranges"

    rtn = Column(String(20), nullable=False)
    razon_social = Column(String(200), nullable=False)
    nombre_comercial = Column(String(200), nullable=False)
    cai = Column(String(50), nullable=False, unique=True)
    fecha_limite_emision = Column(Date, nullable=False)
    punto_emision = Column(String(20), nullable=False)  # Ej: "000-001"
    rango_inicio = Column(Integer, nullable=False)
    rango_fin = Column(Integer, nullable=False)
    correlativo_actual = Column(Integer, nullable=False)  # Último emitido
    estado = Column(Enum(InvoiceRangeStatus), nullable=False, default=InvoiceRangeStatus.ACTIVE)


class ReceiptSequence(Base, IdMixin):
    """Secuencia de numeración de recibos simples"""
    __tablename__ = "receipt_sequences"

    prefix = Column(String(10), nullable=False, unique=True)  # Ej: "REC-"
    current_number = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=True)
