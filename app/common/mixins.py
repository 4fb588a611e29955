"""
Common mixins for billing models
"""
from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func
from uuid import uuid4


def new_id() -> str:
    return str(uuid4())


class IdMixin:
    """Mixin que agrega una llave primaria UUID en formato texto"""

    id = Column(String(36), primary_key=True, default=new_id, index=True)


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
