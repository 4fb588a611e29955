from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text
from sqlalchemy.orm import relationship
from app.common.mixins import IdMixin, TimestampMixin
from app.modules.payments.enums import PaymentStatus, PaymentMethod, DiscountType


class PaymentRecord(Base, IdMixin, TimestampMixin):
    __tablename__ = "payments"

    patient_ref = Column(String(100), nullable=False, index=True)
    patient_name = Column(String(200), nullable=True)
    patient_identity = Column(String(50), nullable=True)
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    payment_method = Column(Enum(PaymentMethod), nullable=True)  # Solo en pago de un método
    notes = Column(Text, nullable=True)

    # Descuento global, siempre sobre el subtotal sin ISV
    discount_type = Column(Enum(DiscountType), nullable=True)
    discount_value = Column(Numeric(15, 2), nullable=True)
    discount_reason = Column(Text, nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    items = relationship(
        "LineItemRecord",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="LineItemRecord.position"
    )
    partial_payments = relationship(
        "PartialPaymentRecord",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PartialPaymentRecord.position"
    )
    refunds = relationship(
        "RefundRecord",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="RefundRecord.created_at"
    )
    invoice = relationship("InvoiceRecord", uselist=False)


class LineItemRecord(Base, IdMixin, TimestampMixin):
    __tablename__ = "payment_line_items"

    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    # Referencia al catálogo (nula en items variables)
    item_id = Column(String(36), nullable=True)
    variant_id = Column(String(36), nullable=True)
    is_custom = Column(Boolean, nullable=False, default=False)

    # Copia del catálogo al momento de agregar
    name = Column(String(200), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)  # Con ISV incluido
    quantity = Column(Integer, nullable=False)

    # Relationships
    payment = relationship("PaymentRecord", back_populates="items")


class PartialPaymentRecord(Base, IdMixin):
    __tablename__ = "partial_payments"

    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    method = Column(Enum(PaymentMethod), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)

    # Relationships
    payment = relationship("PaymentRecord", back_populates="partial_payments")


class RefundRecord(Base, IdMixin):
    """Reembolso sobre un pago cobrado. Solo se agregan, nunca se editan."""
    __tablename__ = "refunds"

    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    reason = Column(Text, nullable=False)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    payment = relationship("PaymentRecord", back_populates="refunds")
