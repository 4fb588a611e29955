"""
Búsqueda en el catálogo de precios

El motor de cobro solo copia lo que devuelve el catálogo al agregar un item;
nunca vuelve a consultarlo después.
"""
from decimal import Decimal
from typing import Dict, Optional, Protocol
from sqlalchemy.orm import Session, selectinload
import logging

from app.modules.catalog.models import ServiceItem, ServiceItemVariant
from app.modules.catalog.schemas import CatalogEntry, CatalogVariant, CatalogItemCreate

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    def get(self, item_id: str) -> Optional[CatalogEntry]:
        ...


class InMemoryCatalog:
    """Catálogo en memoria, para caja sin conexión y pruebas"""

    def __init__(self, entries: Optional[Dict[str, CatalogEntry]] = None):
        self._entries: Dict[str, CatalogEntry] = dict(entries or {})

    def add(self, entry: CatalogEntry) -> CatalogEntry:
        self._entries[entry.id] = entry
        return entry

    def remove(self, item_id: str) -> None:
        self._entries.pop(item_id, None)

    def update_price(self, item_id: str, base_price: Decimal) -> CatalogEntry:
        entry = self._entries[item_id].model_copy(update={"base_price": Decimal(str(base_price))})
        self._entries[item_id] = entry
        return entry

    def get(self, item_id: str) -> Optional[CatalogEntry]:
        return self._entries.get(item_id)


class SqlCatalog:
    """Catálogo respaldado por las tablas service_items / service_item_variants"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, item_id: str) -> Optional[CatalogEntry]:
        item = self.db.query(ServiceItem).options(
            selectinload(ServiceItem.variants)
        ).filter(
            ServiceItem.id == item_id,
            ServiceItem.is_active.is_(True)
        ).first()

        if not item:
            logger.info(f"Catalog lookup miss for item {item_id}")
            return None

        return CatalogEntry(
            id=item.id,
            name=item.name,
            base_price=item.base_price,
            variants=[
                CatalogVariant(id=v.id, name=v.name, price=v.price)
                for v in item.variants if v.is_active
            ]
        )

    def create_item(self, data: CatalogItemCreate) -> ServiceItem:
        """Registrar un servicio con sus variantes"""
        item = ServiceItem(name=data.name, base_price=data.base_price)
        for variant in data.variants:
            item.variants.append(ServiceItemVariant(name=variant.name, price=variant.price))
        self.db.add(item)
        self.db.flush()
        return item
