"""
Carrito de items de un pago

Cada línea guarda una copia del nombre y precio del catálogo al momento de
agregarla. Cambios posteriores en el catálogo no afectan líneas existentes.
Solo se puede modificar mientras el pago está pendiente.
"""
from decimal import Decimal
from typing import Any, Optional
import logging

from app.common.exceptions import BillingValidationError, CatalogMiss, NotFoundError, PaymentStateError
from app.common.money import is_whole_cents, to_decimal
from app.core.config import settings
from app.modules.catalog.service import Catalog
from app.modules.payments.enums import PaymentStatus
from app.modules.payments.schemas import (
    CatalogRef, CatalogSource, CustomSource, LineItem, LineItemSource, Payment, VariantSource
)
from app.modules.payments.totals import sum_line_totals

logger = logging.getLogger(__name__)


class LineItemLedger:
    """Operaciones sobre los items de un pago pendiente"""

    def __init__(self, payment: Payment, catalog: Optional[Catalog] = None, max_quantity: Optional[int] = None):
        self.payment = payment
        self.catalog = catalog
        self.max_quantity = max_quantity or settings.MAX_ITEM_QUANTITY

    @property
    def items(self):
        return self.payment.items

    @property
    def subtotal_inclusive(self) -> Decimal:
        return sum_line_totals(self.payment.items)

    # ===== AGREGAR =====

    def add(self, source: LineItemSource, quantity: int = 1) -> LineItem:
        """Agregar un item según su origen (catálogo, variante o variable)"""
        if isinstance(source, CatalogSource):
            return self.add_item(source.id, quantity)
        if isinstance(source, VariantSource):
            return self.add_variant(source.base_id, source.variant_id, quantity)
        if isinstance(source, CustomSource):
            return self.add_custom_item(source.name, source.unit_price, quantity)
        raise BillingValidationError(f"Origen de item no soportado: {source!r}", "INVALID_SOURCE")

    def add_item(self, item_id: str, quantity: int = 1) -> LineItem:
        """Agregar un item del catálogo a su precio base"""
        self._ensure_editable("agregar items")
        quantity = self._validate_quantity(quantity)
        entry = self._lookup(item_id)

        return self._append_snapshot(
            CatalogRef(item_id=entry.id),
            entry.name,
            self._validate_price(entry.base_price),
            quantity
        )

    def add_variant(self, base_id: str, variant_id: str, quantity: int = 1) -> LineItem:
        """Agregar una variante: usa el precio de la variante, no el del item base"""
        self._ensure_editable("agregar items")
        quantity = self._validate_quantity(quantity)
        entry = self._lookup(base_id)

        variant = entry.find_variant(variant_id)
        if variant is None:
            raise CatalogMiss(base_id, variant_id)

        return self._append_snapshot(
            CatalogRef(item_id=entry.id, variant_id=variant.id),
            f"{entry.name} - {variant.name}",
            self._validate_price(variant.price),
            quantity
        )

    def add_custom_item(self, name: str, unit_price: Any, quantity: int = 1) -> LineItem:
        """Agregar un item variable; no consulta el catálogo"""
        self._ensure_editable("agregar items")
        quantity = self._validate_quantity(quantity)
        name = (name or "").strip()
        if not name:
            raise BillingValidationError("El nombre del item es requerido", "EMPTY_FIELD", {"field": "name"})

        item = LineItem(
            source_ref=None,
            name=name,
            unit_price=self._validate_price(unit_price),
            quantity=quantity,
            is_custom=True
        )
        self.payment.items.append(item)
        logger.debug(f"Custom item '{name}' added to payment {self.payment.id}")
        return item

    # ===== MODIFICAR =====

    def remove_item(self, line_id: str) -> LineItem:
        self._ensure_editable("quitar items")
        item = self._find(line_id)
        self.payment.items.remove(item)
        logger.debug(f"Line {line_id} removed from payment {self.payment.id}")
        return item

    def set_quantity(self, line_id: str, quantity: int) -> LineItem:
        self._ensure_editable("cambiar cantidades")
        quantity = self._validate_quantity(quantity)
        item = self._find(line_id)
        item.quantity = quantity
        return item

    # ===== HELPERS =====

    def _ensure_editable(self, action: str) -> None:
        if self.payment.status != PaymentStatus.PENDING:
            raise PaymentStateError(self.payment.id, self.payment.status, action)

    def _lookup(self, item_id: str):
        if self.catalog is None:
            raise CatalogMiss(item_id)
        entry = self.catalog.get(item_id)
        if entry is None:
            raise CatalogMiss(item_id)
        return entry

    def _find(self, line_id: str) -> LineItem:
        item = next((i for i in self.payment.items if i.id == line_id), None)
        if item is None:
            raise NotFoundError("Item", line_id)
        return item

    def _append_snapshot(self, ref: CatalogRef, name: str, unit_price: Decimal, quantity: int) -> LineItem:
        # Misma referencia y misma copia: se suma a la línea existente
        for existing in self.payment.items:
            if (
                existing.source_ref == ref
                and existing.name == name
                and existing.unit_price == unit_price
            ):
                existing.quantity = self._validate_quantity(existing.quantity + quantity)
                return existing

        item = LineItem(source_ref=ref, name=name, unit_price=unit_price, quantity=quantity)
        self.payment.items.append(item)
        logger.debug(f"Catalog item {ref.item_id} added to payment {self.payment.id} at {unit_price}")
        return item

    def _validate_quantity(self, quantity: Any) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise BillingValidationError(
                f"La cantidad debe ser un número entero: {quantity}",
                "INVALID_QUANTITY",
                {"quantity": repr(quantity)}
            )
        if quantity < 1:
            raise BillingValidationError(
                f"La cantidad debe ser mayor a 0: {quantity}",
                "INVALID_QUANTITY",
                {"quantity": quantity}
            )
        if quantity > self.max_quantity:
            raise BillingValidationError(
                f"La cantidad excede el máximo permitido: {quantity}",
                "INVALID_QUANTITY",
                {"quantity": quantity, "max": self.max_quantity}
            )
        return quantity

    def _validate_price(self, price: Any) -> Decimal:
        value = to_decimal(price, "precio unitario")
        if value < 0:
            raise BillingValidationError(
                f"El precio unitario no puede ser negativo: {value}",
                "INVALID_PRICE",
                {"unit_price": str(value)}
            )
        if not is_whole_cents(value):
            raise BillingValidationError(
                f"El precio unitario no puede tener fracciones de centavo: {value}",
                "INVALID_PRICE",
                {"unit_price": str(value)}
            )
        return value
