from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List


class CatalogVariant(BaseModel):
    id: str
    name: str
    price: Decimal

    class Config:
        from_attributes = True


class CatalogEntry(BaseModel):
    """Resultado de una búsqueda en el catálogo de precios"""
    id: str
    name: str
    base_price: Decimal
    variants: List[CatalogVariant] = Field(default_factory=list)

    class Config:
        from_attributes = True

    def find_variant(self, variant_id: str) -> Optional[CatalogVariant]:
        return next((v for v in self.variants if v.id == variant_id), None)


class CatalogVariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., ge=0)


class CatalogItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    base_price: Decimal = Field(..., ge=0, description="Precio con ISV incluido")
    variants: List[CatalogVariantCreate] = Field(default_factory=list)
