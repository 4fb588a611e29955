from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"        # Editable: items y descuento
    PAID = "paid"              # Facturado, solo admite reembolsos
    CANCELLED = "cancelled"    # Terminal, nunca se factura


class PaymentMethod(str, Enum):
    CASH = "efectivo"
    CARD = "tarjeta"
    TRANSFER = "transferencia"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"


class ReconciliationMode(str, Enum):
    SINGLE = "single"   # Un solo método, asignación sintética por el total
    SPLIT = "split"     # Varios métodos de pago
