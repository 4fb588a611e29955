from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database.database import get_db
from app.modules.payments.schemas import (
    DiscountIn, LineItemCreate, PaymentCreate, PaymentDetail, PaymentTotals, PayRequest, QuantityUpdate,
    Reconciliation, ReconcileRequest, RefundCreate, RefundList, RefundOut
)
from app.modules.payments.service import PaymentService

payments_router = APIRouter(prefix="/payments", tags=["Payments"])


@payments_router.post("/", response_model=PaymentDetail, status_code=status.HTTP_201_CREATED)
def create_payment(payment: PaymentCreate, db: Session = Depends(get_db)):
    """Crear un pago pendiente para un paciente"""
    return PaymentService(db).create_payment(payment)


@payments_router.get("/{payment_id}", response_model=PaymentDetail)
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    return PaymentService(db).get_payment(payment_id)


@payments_router.get("/{payment_id}/totals", response_model=PaymentTotals)
def get_payment_totals(payment_id: str, db: Session = Depends(get_db)):
    """
    Totales del pago: subtotal sin ISV, descuento, ISV sobre la base
    descontada y total a cobrar
    """
    return PaymentService(db).get_totals(payment_id)


# ===== ITEMS =====

@payments_router.post("/{payment_id}/items", response_model=PaymentDetail, status_code=status.HTTP_201_CREATED)
def add_item(payment_id: str, item: LineItemCreate, db: Session = Depends(get_db)):
    """
    Agregar un item al pago

    - **catalog**: item del catálogo a su precio base
    - **variant**: variante con precio propio
    - **custom**: item variable con nombre y precio libres
    """
    return PaymentService(db).add_item(payment_id, item)


@payments_router.patch("/{payment_id}/items/{line_id}", response_model=PaymentDetail)
def update_item_quantity(payment_id: str, line_id: str, update: QuantityUpdate, db: Session = Depends(get_db)):
    return PaymentService(db).set_quantity(payment_id, line_id, update.quantity)


@payments_router.delete("/{payment_id}/items/{line_id}", response_model=PaymentDetail)
def remove_item(payment_id: str, line_id: str, db: Session = Depends(get_db)):
    return PaymentService(db).remove_item(payment_id, line_id)


# ===== DESCUENTO =====

@payments_router.put("/{payment_id}/discount", response_model=PaymentDetail)
def set_discount(payment_id: str, discount: DiscountIn, db: Session = Depends(get_db)):
    """Aplicar un descuento porcentual o absoluto sobre el subtotal sin ISV"""
    return PaymentService(db).set_discount(payment_id, discount)


@payments_router.delete("/{payment_id}/discount", response_model=PaymentDetail)
def clear_discount(payment_id: str, db: Session = Depends(get_db)):
    return PaymentService(db).clear_discount(payment_id)


# ===== COBRO =====

@payments_router.post("/{payment_id}/reconcile", response_model=Reconciliation)
def preview_reconciliation(payment_id: str, request: ReconcileRequest, db: Session = Depends(get_db)):
    """Verificar un pago dividido sin cobrarlo; `remaining` indica cuánto falta o sobra"""
    return PaymentService(db).preview_reconciliation(payment_id, request.partial_payments)


@payments_router.post("/{payment_id}/pay", response_model=PaymentDetail)
def pay(payment_id: str, request: PayRequest, db: Session = Depends(get_db)):
    """
    Cobrar el pago y emitir su factura

    Con `options.use_rtn` se emite factura legal con CAI; si no, recibo simple.
    """
    return PaymentService(db).pay(payment_id, request)


@payments_router.post("/{payment_id}/cancel", response_model=PaymentDetail)
def cancel_payment(payment_id: str, db: Session = Depends(get_db)):
    return PaymentService(db).cancel(payment_id)


# ===== REEMBOLSOS =====

@payments_router.post("/{payment_id}/refunds", response_model=RefundOut, status_code=status.HTTP_201_CREATED)
def create_refund(payment_id: str, refund: RefundCreate, db: Session = Depends(get_db)):
    """Registrar un reembolso; la factura emitida no cambia"""
    return PaymentService(db).add_refund(payment_id, refund)


@payments_router.get("/{payment_id}/refunds", response_model=RefundList)
def list_refunds(payment_id: str, db: Session = Depends(get_db)):
    return PaymentService(db).list_refunds(payment_id)
