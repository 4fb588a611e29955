from app.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from app.common.mixins import IdMixin, TimestampMixin


class ServiceItem(Base, IdMixin, TimestampMixin):
    """Servicio o producto del catálogo de precios de la clínica"""
    __tablename__ = "service_items"

    name = Column(String(200), nullable=False)
    base_price = Column(Numeric(15, 2), nullable=False, default=0)  # Precio con ISV incluido
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    variants = relationship("ServiceItemVariant", back_populates="item", cascade="all, delete-orphan")


class ServiceItemVariant(Base, IdMixin, TimestampMixin):
    """Variante con precio propio (ej. 'Consulta - Nocturna')"""
    __tablename__ = "service_item_variants"

    item_id = Column(String(36), ForeignKey("service_items.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(15, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    item = relationship("ServiceItem", back_populates="variants")
