from sqlalchemy.orm import Session, selectinload
from fastapi import HTTPException, status
import logging

from app.common.exceptions import BillingError, NotFoundError, PaymentStateError, raise_http_error
from app.modules.catalog.service import SqlCatalog
from app.modules.invoices.numbering import SqlInvoiceNumbering
from app.modules.invoices.service import invoice_from_record, invoice_to_record
from app.modules.payments.enums import PaymentStatus
from app.modules.payments.ledger import LineItemLedger
from app.modules.payments.lifecycle import build_lifecycle
from app.modules.payments.models import PaymentRecord, LineItemRecord, PartialPaymentRecord, RefundRecord
from app.modules.payments.schemas import (
    CatalogRef, Discount, DiscountIn, LineItem, LineItemCreate, LineItemOut, PartialPayment, Payment,
    PaymentCreate, PaymentDetail, PaymentTotals, PayRequest, Reconciliation, Refund, RefundCreate,
    RefundList, RefundOut
)
from app.modules.payments.totals import preview_payment_totals, totals_from_invoice

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Servicio de cobros

    Carga el pago, aplica la operación sobre el modelo de dominio y guarda el
    resultado en una sola transacción. Los errores de negocio se convierten
    en HTTPException después del rollback.
    """

    def __init__(self, db: Session):
        self.db = db
        self.catalog = SqlCatalog(db)
        self.numbering = SqlInvoiceNumbering(db)
        self.lifecycle = build_lifecycle(self.numbering)

    # ===== CREAR / CONSULTAR =====

    def create_payment(self, payment_data: PaymentCreate) -> PaymentDetail:
        """
        Crear un pago pendiente, opcionalmente con items y descuento

        Raises:
            HTTPException: item inexistente, cantidad o descuento inválidos
        """
        try:
            payment = Payment(
                patient_ref=payment_data.patient_ref,
                patient_name=payment_data.patient_name,
                patient_identity=payment_data.patient_identity,
                notes=payment_data.notes
            )
            ledger = LineItemLedger(payment, self.catalog)
            for item in payment_data.items:
                ledger.add(item.source, item.quantity)

            if payment_data.discount:
                self._validate_discount(payment, payment_data.discount.to_discount())
                payment.discount = payment_data.discount.to_discount()

            record = PaymentRecord(id=payment.id)
            self._save(record, payment)
            self.db.add(record)
            self.db.commit()

            logger.info(f"Payment {payment.id} created for patient {payment.patient_ref}")
            return self.build_detail(payment)

        except BillingError as e:
            self.db.rollback()
            raise_http_error(e)
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating payment: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error interno: {str(e)}"
            )

    def get_payment(self, payment_id: str) -> PaymentDetail:
        record = self._get_record(payment_id)
        return self.build_detail(self._to_domain(record))

    def get_totals(self, payment_id: str) -> PaymentTotals:
        """
        Totales autoritativos; un descuento que ya no cabe en el subtotal es un
        error. Un pago cobrado reporta los montos de su factura.
        """
        try:
            payment = self._to_domain(self._get_record(payment_id))
            if payment.invoice is not None:
                return totals_from_invoice(payment.invoice)
            return self.lifecycle.totals(payment)
        except BillingError as e:
            raise_http_error(e)

    # ===== ITEMS =====

    def add_item(self, payment_id: str, item_data: LineItemCreate) -> PaymentDetail:
        return self._mutate(
            payment_id,
            lambda payment: LineItemLedger(payment, self.catalog).add(item_data.source, item_data.quantity)
        )

    def remove_item(self, payment_id: str, line_id: str) -> PaymentDetail:
        return self._mutate(
            payment_id,
            lambda payment: LineItemLedger(payment, self.catalog).remove_item(line_id)
        )

    def set_quantity(self, payment_id: str, line_id: str, quantity: int) -> PaymentDetail:
        return self._mutate(
            payment_id,
            lambda payment: LineItemLedger(payment, self.catalog).set_quantity(line_id, quantity)
        )

    # ===== DESCUENTO =====

    def set_discount(self, payment_id: str, discount_data: DiscountIn) -> PaymentDetail:
        def apply(payment: Payment):
            discount = discount_data.to_discount()
            self._validate_discount(payment, discount)
            payment.discount = discount

        return self._mutate(payment_id, apply)

    def clear_discount(self, payment_id: str) -> PaymentDetail:
        def apply(payment: Payment):
            self._ensure_pending(payment, "quitar el descuento")
            payment.discount = None

        return self._mutate(payment_id, apply)

    # ===== COBRO =====

    def preview_reconciliation(self, payment_id: str, allocations) -> Reconciliation:
        """Conciliar sin cobrar: indica cuánto falta o sobra"""
        try:
            payment = self._to_domain(self._get_record(payment_id))
            totals = self.lifecycle.totals(payment)
            return self.lifecycle.reconciler.reconcile(
                totals.total,
                [PartialPayment(method=a.method, amount=a.amount) for a in allocations]
            )
        except BillingError as e:
            raise_http_error(e)

    def pay(self, payment_id: str, pay_data: PayRequest) -> PaymentDetail:
        """
        Cobrar el pago y emitir su factura en la misma transacción

        Raises:
            HTTPException: 409 si no cuadra, ya está cobrado o no hay rango CAI;
                422 si faltan datos de RTN, items o el descuento es inválido
        """
        allocations = None
        if pay_data.partial_payments:
            allocations = [PartialPayment(method=a.method, amount=a.amount) for a in pay_data.partial_payments]

        return self._mutate(
            payment_id,
            lambda payment: self.lifecycle.pay(
                payment,
                method=pay_data.payment_method,
                allocations=allocations,
                options=pay_data.options,
                allow_empty=pay_data.allow_empty,
                draft_discount=pay_data.draft_discount.to_discount() if pay_data.draft_discount else None
            )
        )

    def cancel(self, payment_id: str) -> PaymentDetail:
        return self._mutate(payment_id, self.lifecycle.cancel)

    # ===== REEMBOLSOS =====

    def add_refund(self, payment_id: str, refund_data: RefundCreate) -> RefundOut:
        result = {}

        def apply(payment: Payment):
            result["refund"] = self.lifecycle.refund(
                payment,
                refund_data.amount,
                refund_data.reason,
                refund_data.created_by
            )
            result["payment"] = payment

        self._mutate(payment_id, apply)
        payment = result["payment"]
        return RefundOut(
            refund=result["refund"],
            total_refunded=self.lifecycle.refund_ledger.total_refunded(payment.refunds),
            net_total=self.lifecycle.net_total(payment)
        )

    def list_refunds(self, payment_id: str) -> RefundList:
        payment = self._to_domain(self._get_record(payment_id))
        return RefundList(
            refunds=payment.refunds,
            total_refunded=self.lifecycle.refund_ledger.total_refunded(payment.refunds),
            net_total=self.lifecycle.net_total(payment)
        )

    # ===== DETALLE =====

    def build_detail(self, payment: Payment) -> PaymentDetail:
        if payment.invoice is not None:
            totals = totals_from_invoice(payment.invoice)
        else:
            totals = preview_payment_totals(payment.items, payment.discount)

        return PaymentDetail(
            id=payment.id,
            patient_ref=payment.patient_ref,
            patient_name=payment.patient_name,
            status=payment.status,
            items=[
                LineItemOut(
                    id=item.id,
                    source_ref=item.source_ref,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    is_custom=item.is_custom,
                    line_total=item.line_total
                )
                for item in payment.items
            ],
            discount=payment.discount,
            payment_method=payment.payment_method,
            partial_payments=payment.partial_payments,
            refunds=payment.refunds,
            totals=totals,
            total_refunded=self.lifecycle.refund_ledger.total_refunded(payment.refunds),
            net_total=self.lifecycle.net_total(payment),
            invoice=payment.invoice,
            notes=payment.notes,
            created_at=payment.created_at,
            paid_at=payment.paid_at,
            cancelled_at=payment.cancelled_at
        )

    # ===== HELPERS =====

    def _mutate(self, payment_id: str, operation) -> PaymentDetail:
        """Cargar, aplicar la operación de dominio y guardar todo o nada"""
        try:
            record = self._get_record(payment_id, for_update=True)
            payment = self._to_domain(record)

            operation(payment)

            self._save(record, payment)
            self.db.commit()
            return self.build_detail(payment)

        except BillingError as e:
            self.db.rollback()
            logger.info(f"Operation rejected on payment {payment_id}: {e}")
            raise_http_error(e)
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating payment {payment_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error interno: {str(e)}"
            )

    def _get_record(self, payment_id: str, for_update: bool = False) -> PaymentRecord:
        query = self.db.query(PaymentRecord).options(
            selectinload(PaymentRecord.items),
            selectinload(PaymentRecord.partial_payments),
            selectinload(PaymentRecord.refunds),
            selectinload(PaymentRecord.invoice)
        ).filter(PaymentRecord.id == payment_id)
        if for_update:
            query = query.with_for_update()

        record = query.first()
        if not record:
            raise_http_error(NotFoundError("Pago", payment_id))
        return record

    @staticmethod
    def _ensure_pending(payment: Payment, action: str) -> None:
        if payment.status != PaymentStatus.PENDING:
            raise PaymentStateError(payment.id, payment.status, action)

    def _validate_discount(self, payment: Payment, discount: Discount) -> None:
        self._ensure_pending(payment, "cambiar el descuento")
        subtotal = self.lifecycle.generator.tax_calculator.decompose(
            LineItemLedger(payment).subtotal_inclusive
        ).subtotal
        self.lifecycle.generator.discount_engine.validate(subtotal, discount)

    @staticmethod
    def _to_domain(record: PaymentRecord) -> Payment:
        discount = None
        if record.discount_type is not None:
            discount = Discount(
                type=record.discount_type,
                value=record.discount_value,
                reason=record.discount_reason
            )

        return Payment(
            id=record.id,
            patient_ref=record.patient_ref,
            patient_name=record.patient_name,
            patient_identity=record.patient_identity,
            items=[
                LineItem(
                    id=item.id,
                    source_ref=CatalogRef(item_id=item.item_id, variant_id=item.variant_id) if item.item_id else None,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    is_custom=item.is_custom
                )
                for item in record.items
            ],
            discount=discount,
            status=record.status,
            payment_method=record.payment_method,
            partial_payments=[
                PartialPayment(method=p.method, amount=p.amount) for p in record.partial_payments
            ],
            refunds=[
                Refund(
                    id=r.id,
                    amount=r.amount,
                    reason=r.reason,
                    created_by=r.created_by,
                    created_at=r.created_at
                )
                for r in record.refunds
            ],
            invoice=invoice_from_record(record.invoice) if record.invoice else None,
            notes=record.notes,
            created_at=record.created_at,
            paid_at=record.paid_at,
            cancelled_at=record.cancelled_at
        )

    @staticmethod
    def _save(record: PaymentRecord, payment: Payment) -> None:
        """Volcar el estado del pago de dominio sobre las filas"""
        if record.created_at is None:
            record.created_at = payment.created_at
        record.patient_ref = payment.patient_ref
        record.patient_name = payment.patient_name
        record.patient_identity = payment.patient_identity
        record.notes = payment.notes
        record.status = payment.status
        record.payment_method = payment.payment_method
        record.paid_at = payment.paid_at
        record.cancelled_at = payment.cancelled_at

        record.discount_type = payment.discount.type if payment.discount else None
        record.discount_value = payment.discount.value if payment.discount else None
        record.discount_reason = payment.discount.reason if payment.discount else None

        # Items: se conserva el id de cada línea
        existing = {item.id: item for item in record.items}
        lines = []
        for position, item in enumerate(payment.items):
            line = existing.get(item.id) or LineItemRecord(
                id=item.id,
                item_id=item.source_ref.item_id if item.source_ref else None,
                variant_id=item.source_ref.variant_id if item.source_ref else None,
                is_custom=item.is_custom,
                name=item.name,
                unit_price=item.unit_price
            )
            line.position = position
            line.quantity = item.quantity
            lines.append(line)
        record.items = lines

        # Los pagos parciales se fijan una sola vez, al cobrar
        if payment.partial_payments and not record.partial_payments:
            record.partial_payments = [
                PartialPaymentRecord(position=position, method=p.method, amount=p.amount)
                for position, p in enumerate(payment.partial_payments)
            ]

        known_refunds = {r.id for r in record.refunds}
        for refund in payment.refunds:
            if refund.id not in known_refunds:
                record.refunds.append(RefundRecord(
                    id=refund.id,
                    amount=refund.amount,
                    reason=refund.reason,
                    created_by=refund.created_by,
                    created_at=refund.created_at
                ))

        if payment.invoice is not None and record.invoice is None:
            record.invoice = invoice_to_record(payment.invoice)
