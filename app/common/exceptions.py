from decimal import Decimal
from typing import NoReturn, Optional, Dict, Any
from fastapi import HTTPException, status


class BillingError(Exception):
    """Base exception for the billing engine"""
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.message} (Code: {self.error_code})" if self.error_code else self.message


class BillingValidationError(BillingError):
    """Datos inválidos: descuento, RTN, montos, campos requeridos vacíos"""
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, details)


class NotFoundError(BillingValidationError):
    """Recurso inexistente (pago, item, factura)"""
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Any):
        message = f"{resource} no encontrado: {identifier}"
        super().__init__(message, "NOT_FOUND", {"resource": resource, "identifier": str(identifier)})


class ReconciliationError(BillingError):
    """Los pagos no suman el total dentro de la tolerancia"""
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, total: Decimal, remaining: Decimal, reason: Optional[str] = None):
        self.total = total
        self.remaining = remaining
        if reason is None:
            if remaining > 0:
                reason = f"Faltan {remaining} para completar el total de {total}"
            else:
                reason = f"Los pagos exceden el total de {total} por {-remaining}"
        details = {"total": str(total), "remaining": str(remaining)}
        super().__init__(reason, "RECONCILIATION_ERROR", details)


class PaymentStateError(BillingError):
    """Operación no permitida en el estado actual del pago"""
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, payment_id: Optional[str], current_status: Any, action: str):
        current = getattr(current_status, "value", current_status)
        message = f"No se puede {action}: el pago {payment_id} está en estado '{current}'"
        details = {"payment_id": payment_id, "status": current, "action": action}
        super().__init__(message, "PAYMENT_STATE_ERROR", details)


class CatalogMiss(BillingError):
    """El item o variante del catálogo ya no existe al momento de agregarlo"""
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, item_id: str, variant_id: Optional[str] = None):
        if variant_id:
            message = f"La variante {variant_id} del item {item_id} no existe en el catálogo"
        else:
            message = f"El item {item_id} no existe en el catálogo"
        super().__init__(message, "CATALOG_MISS", {"item_id": item_id, "variant_id": variant_id})


class InvoiceNumberingError(BillingError):
    """No hay numeración disponible (rango CAI agotado, vencido o inexistente)"""
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVOICE_NUMBERING_ERROR", details)


# Helper to convert billing exceptions to HTTPException
def raise_http_error(error: BillingError) -> NoReturn:
    raise HTTPException(
        status_code=error.http_status,
        detail={"code": error.error_code, "message": error.message, **error.details}
    )
