"""
Tests para el módulo de Cobros

Cubren:
- Descuento global sobre el subtotal sin ISV
- Totales (desglose -> descuento -> ISV sobre la base descontada)
- Carrito de items con copia de precios del catálogo
- Conciliación de pagos divididos con tolerancia de un centavo
- Reembolsos
- Ciclo de vida pending -> paid / cancelled
- Flujo completo por API
"""

import pytest
from decimal import Decimal
from pydantic import ValidationError

from app.common.exceptions import (
    BillingValidationError, CatalogMiss, PaymentStateError, ReconciliationError
)
from app.modules.catalog.schemas import CatalogEntry, CatalogVariant
from app.modules.catalog.service import InMemoryCatalog
from app.modules.invoices.numbering import InvoiceSequence
from app.modules.payments.discounts import DiscountEngine
from app.modules.payments.enums import DiscountType, PaymentMethod, PaymentStatus, ReconciliationMode
from app.modules.payments.ledger import LineItemLedger
from app.modules.payments.lifecycle import PaymentLifecycle, build_lifecycle
from app.modules.payments.reconciliation import PartialPaymentReconciler
from app.modules.payments.refunds import RefundLedger
from app.modules.payments.schemas import (
    CatalogSource, CustomSource, Discount, PartialPayment, Payment, Refund, VariantSource
)
from app.core.config import settings
from app.modules.payments.totals import calculate_payment_totals, preview_payment_totals, totals_from_invoice


# ===== FIXTURES =====

@pytest.fixture
def catalog():
    return InMemoryCatalog({
        "consulta": CatalogEntry(
            id="consulta",
            name="Consulta General",
            base_price=Decimal("100.00"),
            variants=[CatalogVariant(id="nocturna", name="Nocturna", price=Decimal("160.00"))]
        ),
        "hemograma": CatalogEntry(id="hemograma", name="Hemograma", base_price=Decimal("50.00")),
    })


@pytest.fixture
def payment():
    return Payment(patient_ref="PAC-001", patient_name="María López", patient_identity="0801-1985-00123")


@pytest.fixture
def ledger(payment, catalog):
    return LineItemLedger(payment, catalog)


@pytest.fixture
def numbering():
    return InvoiceSequence()


@pytest.fixture
def lifecycle(numbering) -> PaymentLifecycle:
    return build_lifecycle(numbering)


def percentage(value, reason=None):
    return Discount(type=DiscountType.PERCENTAGE, value=Decimal(value), reason=reason)


def absolute(value, reason=None):
    return Discount(type=DiscountType.ABSOLUTE, value=Decimal(value), reason=reason)


# ===== DESCUENTOS =====

class TestDiscountEngine:

    def test_no_discount(self):
        assert DiscountEngine().apply(Decimal("100.00"), None) == Decimal("0.00")

    def test_percentage(self):
        assert DiscountEngine().apply(Decimal("130.43"), percentage("10")) == Decimal("13.04")

    def test_absolute(self):
        assert DiscountEngine().apply(Decimal("100.00"), absolute("7.5")) == Decimal("7.50")

    def test_full_percentage_allowed(self):
        assert DiscountEngine().apply(Decimal("100.00"), percentage("100")) == Decimal("100.00")

    @pytest.mark.parametrize("discount", [
        percentage("100.01"),
        percentage("-1"),
        absolute("-0.01"),
        absolute("100.01"),
        percentage("12.345"),
        absolute("7.505"),
    ])
    def test_invalid_discounts_rejected(self, discount):
        with pytest.raises(BillingValidationError) as exc:
            DiscountEngine().apply(Decimal("100.00"), discount)
        assert exc.value.error_code == "INVALID_DISCOUNT"

    def test_absolute_equal_to_subtotal_allowed(self):
        assert DiscountEngine().apply(Decimal("100.00"), absolute("100.00")) == Decimal("100.00")

    def test_display_amount_clamps(self):
        """La vista previa recorta en lugar de rechazar"""
        engine = DiscountEngine()
        assert engine.display_amount(Decimal("100.00"), absolute("250")) == Decimal("100.00")
        assert engine.display_amount(Decimal("100.00"), percentage("150")) == Decimal("100.00")
        assert engine.display_amount(Decimal("100.00"), absolute("-5")) == Decimal("0.00")
        assert engine.display_amount(Decimal("100.00"), None) == Decimal("0.00")


# ===== TOTALES =====

class TestPaymentTotals:

    def test_no_discount_keeps_gross_total(self, ledger):
        ledger.add_item("consulta")
        ledger.add_item("hemograma")

        totals = calculate_payment_totals(ledger.items, None)
        assert totals.subtotal_inclusive == Decimal("150.00")
        assert totals.subtotal == Decimal("130.43")
        assert totals.isv == Decimal("19.57")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.total == Decimal("150.00")

    def test_zero_percentage_does_not_recompose(self, ledger):
        ledger.add_item("consulta")
        ledger.add_item("hemograma")

        totals = calculate_payment_totals(ledger.items, percentage("0"))
        assert totals.total == Decimal("150.00")
        assert totals.isv == Decimal("19.57")

    def test_percentage_discount_applied_before_tax(self, ledger):
        ledger.add_item("consulta")
        ledger.add_item("hemograma")

        totals = calculate_payment_totals(ledger.items, percentage("10"))
        assert totals.discount_amount == Decimal("13.04")
        assert totals.discounted_subtotal == Decimal("117.39")
        assert totals.isv == Decimal("17.61")
        assert totals.total == Decimal("135.00")

    def test_ten_percent_on_hundred(self, ledger):
        """S = 100 (115 con ISV), 10% -> 90 + 13.50 = 103.50"""
        ledger.add_custom_item("Procedimiento", Decimal("115.00"))
        totals = calculate_payment_totals(ledger.items, percentage("10"))
        assert totals.subtotal == Decimal("100.00")
        assert totals.discount_amount == Decimal("10.00")
        assert totals.isv == Decimal("13.50")
        assert totals.total == Decimal("103.50")

    def test_absolute_discount_on_hundred(self, ledger):
        """(100 - 7.50) * 1.15 = 106.375 -> 106.38"""
        ledger.add_custom_item("Procedimiento", Decimal("115.00"))
        totals = calculate_payment_totals(ledger.items, absolute("7.50"))
        assert totals.discounted_subtotal == Decimal("92.50")
        assert totals.isv == Decimal("13.88")
        assert totals.total == Decimal("106.38")

    def test_discount_larger_than_subtotal_rejected(self, ledger):
        ledger.add_custom_item("Procedimiento", Decimal("115.00"))
        with pytest.raises(BillingValidationError):
            calculate_payment_totals(ledger.items, absolute("100.01"))

    def test_preview_clamps_invalid_discount(self, ledger):
        ledger.add_custom_item("Procedimiento", Decimal("115.00"))
        totals = preview_payment_totals(ledger.items, absolute("500"))
        assert totals.discount_amount == Decimal("100.00")
        assert totals.total == Decimal("0.00")

    def test_totals_from_invoice(self, ledger, lifecycle, payment):
        ledger.add_item("consulta")
        ledger.add_item("hemograma")
        payment.discount = percentage("10")
        lifecycle.pay(payment, method=PaymentMethod.CASH)

        totals = totals_from_invoice(payment.invoice)
        assert totals == calculate_payment_totals(payment.items, payment.discount)
        assert totals.discounted_subtotal == Decimal("117.39")

    def test_empty_payment(self):
        totals = calculate_payment_totals([], None)
        assert totals.total == Decimal("0.00")
        assert totals.isv == Decimal("0.00")


# ===== CARRITO =====

class TestLineItemLedger:

    def test_add_catalog_item_snapshots_price(self, ledger, catalog):
        item = ledger.add_item("consulta", 2)
        assert item.name == "Consulta General"
        assert item.unit_price == Decimal("100.00")
        assert item.source_ref.item_id == "consulta"
        assert item.source_ref.variant_id is None
        assert not item.is_custom

        catalog.update_price("consulta", Decimal("200.00"))
        assert ledger.items[0].unit_price == Decimal("100.00")
        assert ledger.subtotal_inclusive == Decimal("200.00")

    def test_add_variant_uses_variant_price(self, ledger):
        item = ledger.add_variant("consulta", "nocturna")
        assert item.name == "Consulta General - Nocturna"
        assert item.unit_price == Decimal("160.00")
        assert item.source_ref.variant_id == "nocturna"

    def test_add_custom_item_never_touches_catalog(self, payment):
        ledger = LineItemLedger(payment, catalog=None)
        item = ledger.add_custom_item("Curación especial", Decimal("350.00"), 2)
        assert item.is_custom
        assert item.source_ref is None
        assert item.line_total == Decimal("700.00")

    def test_dispatch_by_source(self, ledger):
        ledger.add(CatalogSource(id="hemograma"))
        ledger.add(VariantSource(base_id="consulta", variant_id="nocturna"))
        ledger.add(CustomSource(name="Inyección", unit_price=Decimal("25.00")), 3)
        assert [i.name for i in ledger.items] == ["Hemograma", "Consulta General - Nocturna", "Inyección"]
        assert ledger.subtotal_inclusive == Decimal("285.00")

    def test_same_snapshot_merges_quantity(self, ledger):
        first = ledger.add_item("consulta")
        second = ledger.add_item("consulta", 2)
        assert first is second
        assert len(ledger.items) == 1
        assert ledger.items[0].quantity == 3

    def test_changed_price_creates_new_line(self, ledger, catalog):
        ledger.add_item("consulta")
        catalog.update_price("consulta", Decimal("120.00"))
        ledger.add_item("consulta")
        assert [i.unit_price for i in ledger.items] == [Decimal("100.00"), Decimal("120.00")]

    def test_snapshot_fields_are_frozen(self, ledger):
        item = ledger.add_item("consulta")
        with pytest.raises(ValidationError):
            item.unit_price = Decimal("1.00")
        with pytest.raises(ValidationError):
            item.name = "Otro"

    def test_catalog_miss(self, ledger):
        with pytest.raises(CatalogMiss):
            ledger.add_item("no-existe")

    def test_variant_miss(self, ledger):
        with pytest.raises(CatalogMiss) as exc:
            ledger.add_variant("consulta", "no-existe")
        assert exc.value.details["variant_id"] == "no-existe"

    def test_removed_catalog_entry(self, ledger, catalog):
        catalog.remove("hemograma")
        with pytest.raises(CatalogMiss):
            ledger.add_item("hemograma")

    @pytest.mark.parametrize("quantity", [0, -1, 1_000_000, 1.5, True])
    def test_invalid_quantity(self, ledger, quantity):
        with pytest.raises(BillingValidationError):
            ledger.add_item("consulta", quantity)

    def test_max_quantity_allowed(self, ledger):
        assert ledger.add_item("consulta", 999_999).quantity == 999_999

    def test_custom_item_validation(self, ledger):
        with pytest.raises(BillingValidationError):
            ledger.add_custom_item("  ", Decimal("10.00"))
        with pytest.raises(BillingValidationError):
            ledger.add_custom_item("Gasas", Decimal("-1.00"))
        with pytest.raises(BillingValidationError):
            ledger.add_custom_item("Gasas", "abc")

    def test_sub_cent_price_rejected(self, ledger):
        """El precio copiado debe poder guardarse sin redondeo"""
        with pytest.raises(BillingValidationError) as exc:
            ledger.add_custom_item("Gasas", "10.005")
        assert exc.value.error_code == "INVALID_PRICE"
        assert ledger.items == []

        item = ledger.add_custom_item("Gasas", "10.50")
        assert item.unit_price == Decimal("10.50")

    def test_set_quantity_and_remove(self, ledger):
        item = ledger.add_item("consulta")
        ledger.set_quantity(item.id, 4)
        assert ledger.subtotal_inclusive == Decimal("400.00")

        ledger.remove_item(item.id)
        assert ledger.items == []

    def test_unknown_line_id(self, ledger):
        with pytest.raises(BillingValidationError):
            ledger.set_quantity("no-existe", 2)
        with pytest.raises(BillingValidationError):
            ledger.remove_item("no-existe")

    @pytest.mark.parametrize("status", [PaymentStatus.PAID, PaymentStatus.CANCELLED])
    def test_only_pending_is_editable(self, payment, catalog, status):
        ledger = LineItemLedger(payment, catalog)
        item = ledger.add_item("consulta")
        payment.status = status

        with pytest.raises(PaymentStateError):
            ledger.add_item("hemograma")
        with pytest.raises(PaymentStateError):
            ledger.add_custom_item("Gasas", Decimal("5.00"))
        with pytest.raises(PaymentStateError):
            ledger.set_quantity(item.id, 2)
        with pytest.raises(PaymentStateError):
            ledger.remove_item(item.id)


# ===== CONCILIACIÓN =====

class TestPartialPaymentReconciler:

    def test_exact_split(self):
        result = PartialPaymentReconciler().reconcile(Decimal("135.00"), [
            PartialPayment(method=PaymentMethod.CASH, amount=Decimal("100.00")),
            PartialPayment(method=PaymentMethod.CARD, amount=Decimal("35.00")),
        ])
        assert result.balanced
        assert result.remaining == Decimal("0.00")
        assert result.allocated == Decimal("135.00")
        assert result.mode == ReconciliationMode.SPLIT

    def test_sub_cent_allocation_absorbed(self):
        """60 + 40.005 contra 100.00: la tolerancia absorbe el medio centavo"""
        result = PartialPaymentReconciler().reconcile(Decimal("100.00"), [
            {"method": "efectivo", "amount": "60"},
            {"method": "tarjeta", "amount": "40.005"},
        ])
        assert result.balanced
        assert abs(result.remaining) <= Decimal("0.01")

    @pytest.mark.parametrize("amounts,remaining", [
        (["33.335", "33.335", "33.335"], "-0.005"),
        (["50.005", "50.005"], "-0.010"),
        (["25.0025", "25.0025", "25.0025", "25.0025"], "-0.0100"),
    ])
    def test_sub_cent_amounts_summed_before_rounding(self, amounts, remaining):
        """El saldo se calcula con la suma exacta; redondear cada monto acumularía el error"""
        result = PartialPaymentReconciler().reconcile(
            Decimal("100.00"),
            [{"method": "efectivo", "amount": a} for a in amounts]
        )
        assert result.balanced
        assert result.remaining == Decimal(remaining)
        assert result.allocated == sum(Decimal(a) for a in amounts)

    def test_sub_cent_amounts_stored_in_cents(self):
        result = PartialPaymentReconciler().reconcile(
            Decimal("100.00"),
            [{"method": "efectivo", "amount": "33.335"}] * 3
        )
        assert [a.amount for a in result.allocations] == [Decimal("33.34")] * 3

    def test_sub_cent_excess_beyond_tolerance(self):
        result = PartialPaymentReconciler().reconcile(
            Decimal("100.00"),
            [{"method": "tarjeta", "amount": "25.004"}] * 4
        )
        assert not result.balanced
        assert result.remaining == Decimal("-0.016")

    def test_underfunded_split(self):
        result = PartialPaymentReconciler().reconcile(Decimal("100.00"), [
            {"method": "efectivo", "amount": "50"},
            {"method": "tarjeta", "amount": "40"},
        ])
        assert not result.balanced
        assert result.remaining == Decimal("10.00")

    @pytest.mark.parametrize("amount,balanced", [
        ("134.99", True),
        ("135.01", True),
        ("134.98", False),
        ("135.02", False),
    ])
    def test_one_cent_tolerance(self, amount, balanced):
        result = PartialPaymentReconciler().reconcile(
            Decimal("135.00"),
            [PartialPayment(method=PaymentMethod.CASH, amount=Decimal(amount))]
        )
        assert result.balanced is balanced
        assert result.remaining == Decimal("135.00") - Decimal(amount)

    def test_ensure_balanced_reports_remaining(self):
        reconciler = PartialPaymentReconciler()
        result = reconciler.reconcile(Decimal("135.00"), [{"method": "efectivo", "amount": "100.00"}])
        with pytest.raises(ReconciliationError) as exc:
            reconciler.ensure_balanced(result)
        assert exc.value.remaining == Decimal("35.00")

    def test_overpayment_has_negative_remaining(self):
        reconciler = PartialPaymentReconciler()
        result = reconciler.reconcile(Decimal("100.00"), [{"method": "tarjeta", "amount": "120.00"}])
        assert result.remaining == Decimal("-20.00")
        with pytest.raises(ReconciliationError):
            reconciler.ensure_balanced(result)

    def test_all_invalid_allocations_reported_together(self):
        with pytest.raises(BillingValidationError) as exc:
            PartialPaymentReconciler().reconcile(Decimal("100.00"), [
                {"method": "bitcoin", "amount": "10.00"},
                {"method": "efectivo", "amount": "-5"},
                {"method": "tarjeta", "amount": "abc"},
                {"method": "transferencia", "amount": "0"},
                {"method": "efectivo", "amount": "50.00"},
            ])
        errors = exc.value.details["errors"]
        assert [e["index"] for e in errors] == [0, 1, 2, 3]

    def test_empty_split_rejected(self):
        with pytest.raises(BillingValidationError):
            PartialPaymentReconciler().reconcile(Decimal("100.00"), [])

    def test_single_method(self):
        result = PartialPaymentReconciler().single(Decimal("150.00"), "transferencia")
        assert result.balanced
        assert result.mode == ReconciliationMode.SINGLE
        assert result.allocations[0].method == PaymentMethod.TRANSFER
        assert result.allocations[0].amount == Decimal("150.00")

    def test_single_invalid_method(self):
        with pytest.raises(BillingValidationError):
            PartialPaymentReconciler().single(Decimal("150.00"), "cheque")

    def test_summarize_by_method(self):
        summary = PartialPaymentReconciler().summarize_by_method([
            PartialPayment(method=PaymentMethod.CASH, amount=Decimal("50.00")),
            PartialPayment(method=PaymentMethod.CARD, amount=Decimal("30.00")),
            PartialPayment(method=PaymentMethod.CASH, amount=Decimal("20.00")),
        ])
        assert summary == {PaymentMethod.CASH: Decimal("70.00"), PaymentMethod.CARD: Decimal("30.00")}


# ===== REEMBOLSOS =====

class TestRefundLedger:

    def test_refunds_reduce_net_total(self):
        ledger = RefundLedger()
        assert ledger.add_refund(Decimal("135.00"), [], Decimal("35.00")) == Decimal("100.00")

        prior = [Refund(amount=Decimal("35.00"), reason="Examen no realizado")]
        assert ledger.add_refund(Decimal("135.00"), prior, Decimal("100.00")) == Decimal("0.00")
        assert ledger.net_total(Decimal("135.00"), prior) == Decimal("100.00")
        assert ledger.total_refunded(prior) == Decimal("35.00")

    def test_refund_netting(self):
        ledger = RefundLedger()
        prior = [Refund(amount=Decimal("50"), reason="a"), Refund(amount=Decimal("30"), reason="b")]
        assert ledger.net_total(Decimal("200.00"), prior) == Decimal("120.00")
        with pytest.raises(BillingValidationError):
            ledger.add_refund(Decimal("200.00"), prior, Decimal("150"))

    def test_refund_below_zero_rejected(self):
        prior = [Refund(amount=Decimal("135.00"), reason="Anulación")]
        with pytest.raises(BillingValidationError) as exc:
            RefundLedger().add_refund(Decimal("135.00"), prior, Decimal("0.01"))
        assert exc.value.error_code == "REFUND_EXCEEDS_TOTAL"

    @pytest.mark.parametrize("amount", ["0", "-10", "abc"])
    def test_invalid_amount(self, amount):
        with pytest.raises(BillingValidationError):
            RefundLedger().add_refund(Decimal("135.00"), [], amount)


# ===== CICLO DE VIDA =====

class TestPaymentLifecycle:

    def test_transition_table(self):
        assert PaymentLifecycle.can_transition(PaymentStatus.PENDING, PaymentStatus.PAID)
        assert PaymentLifecycle.can_transition(PaymentStatus.PENDING, PaymentStatus.CANCELLED)
        assert PaymentLifecycle.can_transition(PaymentStatus.PAID, PaymentStatus.PAID)
        assert not PaymentLifecycle.can_transition(PaymentStatus.PAID, PaymentStatus.CANCELLED)
        assert not PaymentLifecycle.can_transition(PaymentStatus.CANCELLED, PaymentStatus.PAID)
        assert not PaymentLifecycle.can_transition(PaymentStatus.PAID, PaymentStatus.PENDING)

    def test_end_to_end(self, payment, ledger, lifecycle):
        """150 con ISV, 10% de descuento, pago de 134.99 en efectivo"""
        ledger.add_item("consulta")
        ledger.add_item("hemograma")
        payment.discount = percentage("10", reason="Adulto mayor")

        invoice = lifecycle.pay(
            payment,
            allocations=[PartialPayment(method=PaymentMethod.CASH, amount=Decimal("134.99"))]
        )

        assert payment.status == PaymentStatus.PAID
        assert payment.paid_at is not None
        assert payment.invoice is invoice
        assert invoice.subtotal == Decimal("130.43")
        assert invoice.discount_amount == Decimal("13.04")
        assert invoice.discount_reason == "Adulto mayor"
        assert invoice.isv == Decimal("17.61")
        assert invoice.total == Decimal("135.00")
        assert invoice.numero_documento == "REC-000001"
        assert payment.partial_payments[0].amount == Decimal("134.99")

    def test_single_method_pay(self, payment, ledger, lifecycle):
        ledger.add_item("consulta")
        invoice = lifecycle.pay(payment, method=PaymentMethod.CARD)

        assert payment.payment_method == PaymentMethod.CARD
        assert payment.partial_payments == []
        assert invoice.payments[0].amount == Decimal("100.00")

    def test_receipts_are_sequential(self, ledger, lifecycle, catalog):
        ledger.add_item("consulta")
        first = lifecycle.pay(ledger.payment, method=PaymentMethod.CASH)

        other = Payment(patient_ref="PAC-002")
        LineItemLedger(other, catalog).add_item("hemograma")
        second = lifecycle.pay(other, method=PaymentMethod.CASH)

        assert first.numero_documento == "REC-000001"
        assert second.numero_documento == "REC-000002"

    def test_unbalanced_pay_leaves_payment_pending(self, payment, ledger, lifecycle, numbering):
        ledger.add_item("consulta")
        with pytest.raises(ReconciliationError) as exc:
            lifecycle.pay(payment, allocations=[
                PartialPayment(method=PaymentMethod.CASH, amount=Decimal("60.00")),
                PartialPayment(method=PaymentMethod.CARD, amount=Decimal("30.00")),
            ])

        assert exc.value.remaining == Decimal("10.00")
        assert payment.status == PaymentStatus.PENDING
        assert payment.invoice is None
        assert payment.paid_at is None
        assert numbering.last_receipt == 0

    def test_cannot_pay_twice(self, payment, ledger, lifecycle):
        ledger.add_item("consulta")
        lifecycle.pay(payment, method=PaymentMethod.CASH)
        with pytest.raises(PaymentStateError):
            lifecycle.pay(payment, method=PaymentMethod.CASH)

    def test_requires_exactly_one_mode(self, payment, ledger, lifecycle):
        ledger.add_item("consulta")
        with pytest.raises(BillingValidationError):
            lifecycle.pay(payment)
        with pytest.raises(BillingValidationError):
            lifecycle.pay(
                payment,
                method=PaymentMethod.CASH,
                allocations=[PartialPayment(method=PaymentMethod.CASH, amount=Decimal("100.00"))]
            )

    def test_empty_payment_requires_override(self, payment, lifecycle):
        with pytest.raises(BillingValidationError) as exc:
            lifecycle.pay(payment, method=PaymentMethod.CASH)
        assert exc.value.error_code == "EMPTY_PAYMENT"

        invoice = lifecycle.pay(payment, method=PaymentMethod.CASH, allow_empty=True)
        assert invoice.total == Decimal("0.00")
        assert payment.status == PaymentStatus.PAID

    def test_cancel(self, payment, lifecycle):
        lifecycle.cancel(payment)
        assert payment.status == PaymentStatus.CANCELLED
        cancelled_at = payment.cancelled_at

        lifecycle.cancel(payment)
        assert payment.cancelled_at == cancelled_at

        with pytest.raises(PaymentStateError):
            lifecycle.pay(payment, method=PaymentMethod.CASH, allow_empty=True)

    def test_cannot_cancel_paid(self, payment, ledger, lifecycle):
        ledger.add_item("consulta")
        lifecycle.pay(payment, method=PaymentMethod.CASH)
        with pytest.raises(PaymentStateError):
            lifecycle.cancel(payment)

    def test_refund_does_not_touch_invoice(self, payment, ledger, lifecycle):
        ledger.add_item("consulta")
        ledger.add_item("hemograma")
        invoice = lifecycle.pay(payment, method=PaymentMethod.CASH)

        refund = lifecycle.refund(payment, Decimal("50.00"), "Examen no realizado", created_by="caja1")

        assert refund.amount == Decimal("50.00")
        assert payment.invoice is invoice
        assert payment.invoice.total == Decimal("150.00")
        assert lifecycle.net_total(payment) == Decimal("100.00")
        assert payment.status == PaymentStatus.PAID

    def test_refund_rules(self, payment, ledger, lifecycle):
        ledger.add_item("consulta")
        with pytest.raises(PaymentStateError):
            lifecycle.refund(payment, Decimal("10.00"), "Motivo")

        lifecycle.pay(payment, method=PaymentMethod.CASH)
        with pytest.raises(BillingValidationError):
            lifecycle.refund(payment, Decimal("10.00"), "   ")
        with pytest.raises(BillingValidationError):
            lifecycle.refund(payment, Decimal("100.01"), "Devolución")
        assert payment.refunds == []

    def test_net_total_before_invoice(self, payment, lifecycle):
        assert lifecycle.net_total(payment) is None


# ===== API =====

@pytest.fixture
def catalog_item(client):
    response = client.post("/catalog/items", json={
        "name": "Consulta General",
        "base_price": "100.00",
        "variants": [{"name": "Nocturna", "price": "160.00"}]
    })
    assert response.status_code == 201
    return response.json()


class TestPaymentsApi:

    def create_payment(self, client, **extra):
        body = {"patient_ref": "PAC-001", "patient_name": "María López", **extra}
        response = client.post("/payments/", json=body)
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_with_items(self, client, catalog_item):
        variant_id = catalog_item["variants"][0]["id"]
        payment = self.create_payment(client, items=[
            {"source": {"kind": "catalog", "id": catalog_item["id"]}, "quantity": 1},
            {"source": {"kind": "variant", "base_id": catalog_item["id"], "variant_id": variant_id}},
            {"source": {"kind": "custom", "name": "Inyección", "unit_price": "25.00"}, "quantity": 2},
        ])

        assert payment["status"] == "pending"
        assert [i["name"] for i in payment["items"]] == [
            "Consulta General", "Consulta General - Nocturna", "Inyección"
        ]
        assert Decimal(payment["totals"]["total"]) == Decimal("310.00")

    def test_unknown_catalog_item(self, client):
        response = client.post("/payments/", json={
            "patient_ref": "PAC-001",
            "items": [{"source": {"kind": "catalog", "id": "no-existe"}}]
        })
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "CATALOG_MISS"

    def test_full_flow(self, client, catalog_item, db_session):
        payment = self.create_payment(client)
        payment_id = payment["id"]

        response = client.post(f"/payments/{payment_id}/items", json={
            "source": {"kind": "catalog", "id": catalog_item["id"]}
        })
        assert response.status_code == 201
        response = client.post(f"/payments/{payment_id}/items", json={
            "source": {"kind": "custom", "name": "Hemograma", "unit_price": "50.00"}
        })
        line_id = response.json()["items"][1]["id"]

        response = client.put(f"/payments/{payment_id}/discount", json={"type": "percentage", "value": "10"})
        assert response.status_code == 200

        totals = client.get(f"/payments/{payment_id}/totals").json()
        assert Decimal(totals["total"]) == Decimal("135.00")

        preview = client.post(f"/payments/{payment_id}/reconcile", json={
            "partial_payments": [{"method": "efectivo", "amount": "100.00"}]
        }).json()
        assert preview["balanced"] is False
        assert Decimal(preview["remaining"]) == Decimal("35.00")

        response = client.post(f"/payments/{payment_id}/pay", json={
            "partial_payments": [
                {"method": "efectivo", "amount": "100.00"},
                {"method": "tarjeta", "amount": "35.00"}
            ]
        })
        assert response.status_code == 200, response.text
        paid = response.json()
        assert paid["status"] == "paid"
        assert paid["invoice"]["numero_documento"] == "REC-000001"
        assert Decimal(paid["invoice"]["total"]) == Decimal("135.00")
        assert len(paid["partial_payments"]) == 2

        # Pagado: ya no se puede editar
        response = client.delete(f"/payments/{payment_id}/items/{line_id}")
        assert response.status_code == 409

        response = client.post(f"/payments/{payment_id}/refunds", json={
            "amount": "35.00", "reason": "Examen no realizado", "created_by": "caja1"
        })
        assert response.status_code == 201
        assert Decimal(response.json()["net_total"]) == Decimal("100.00")

        refunds = client.get(f"/payments/{payment_id}/refunds").json()
        assert Decimal(refunds["total_refunded"]) == Decimal("35.00")
        assert len(refunds["refunds"]) == 1

        detail = client.get(f"/payments/{payment_id}").json()
        assert Decimal(detail["invoice"]["total"]) == Decimal("135.00")
        assert Decimal(detail["net_total"]) == Decimal("100.00")

    def test_unbalanced_pay_is_rejected(self, client):
        payment = self.create_payment(client, items=[
            {"source": {"kind": "custom", "name": "Consulta", "unit_price": "100.00"}}
        ])
        response = client.post(f"/payments/{payment['id']}/pay", json={
            "partial_payments": [{"method": "efectivo", "amount": "90.00"}]
        })
        assert response.status_code == 409
        assert response.json()["detail"]["remaining"] == "10.00"

        detail = client.get(f"/payments/{payment['id']}").json()
        assert detail["status"] == "pending"
        assert detail["invoice"] is None

    def test_pay_requires_one_mode(self, client):
        payment = self.create_payment(client)
        response = client.post(f"/payments/{payment['id']}/pay", json={})
        assert response.status_code == 422

    def test_quantity_update_and_remove(self, client):
        payment = self.create_payment(client, items=[
            {"source": {"kind": "custom", "name": "Gasas", "unit_price": "10.00"}}
        ])
        line_id = payment["items"][0]["id"]

        response = client.patch(f"/payments/{payment['id']}/items/{line_id}", json={"quantity": 3})
        assert Decimal(response.json()["totals"]["subtotal_inclusive"]) == Decimal("30.00")

        response = client.delete(f"/payments/{payment['id']}/items/{line_id}")
        assert response.json()["items"] == []

        response = client.delete(f"/payments/{payment['id']}/items/{line_id}")
        assert response.status_code == 404

    def test_invalid_discount_rejected(self, client):
        payment = self.create_payment(client, items=[
            {"source": {"kind": "custom", "name": "Consulta", "unit_price": "115.00"}}
        ])
        response = client.put(f"/payments/{payment['id']}/discount", json={"type": "absolute", "value": "150"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_DISCOUNT"

        response = client.put(f"/payments/{payment['id']}/discount", json={"type": "absolute", "value": "7.50"})
        assert Decimal(response.json()["totals"]["total"]) == Decimal("106.38")

        response = client.delete(f"/payments/{payment['id']}/discount")
        assert response.json()["discount"] is None
        assert Decimal(response.json()["totals"]["total"]) == Decimal("115.00")

    def test_cancel(self, client):
        payment = self.create_payment(client)
        response = client.post(f"/payments/{payment['id']}/cancel")
        assert response.json()["status"] == "cancelled"

        response = client.post(f"/payments/{payment['id']}/cancel")
        assert response.status_code == 200

        response = client.post(f"/payments/{payment['id']}/pay", json={
            "payment_method": "efectivo", "allow_empty": True
        })
        assert response.status_code == 409

    def test_payment_not_found(self, client):
        response = client.get("/payments/no-existe")
        assert response.status_code == 404

    def test_snapshot_survives_reload(self, client):
        payment = self.create_payment(client, items=[
            {"source": {"kind": "custom", "name": "Curación", "unit_price": "10.25"}, "quantity": 3}
        ])
        reloaded = client.get(f"/payments/{payment['id']}").json()

        assert Decimal(reloaded["items"][0]["unit_price"]) == Decimal(payment["items"][0]["unit_price"])
        assert Decimal(reloaded["totals"]["total"]) == Decimal(payment["totals"]["total"]) == Decimal("30.75")

    def test_sub_cent_values_rejected_before_saving(self, client):
        response = client.post("/payments/", json={
            "patient_ref": "PAC-001",
            "items": [{"source": {"kind": "custom", "name": "Curación", "unit_price": "10.005"}}]
        })
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_PRICE"

        payment = self.create_payment(client, items=[
            {"source": {"kind": "custom", "name": "Curación", "unit_price": "10.00"}}
        ])
        response = client.put(f"/payments/{payment['id']}/discount", json={"type": "percentage", "value": "12.345"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_DISCOUNT"

        reloaded = client.get(f"/payments/{payment['id']}").json()
        assert reloaded["discount"] is None
        assert Decimal(reloaded["items"][0]["unit_price"]) == Decimal("10.00")

    def test_paid_totals_come_from_invoice(self, client, monkeypatch):
        payment = self.create_payment(client, items=[
            {"source": {"kind": "custom", "name": "Consulta", "unit_price": "115.00"}}
        ])
        response = client.post(f"/payments/{payment['id']}/pay", json={"payment_method": "efectivo"})
        assert response.status_code == 200, response.text
        invoice = response.json()["invoice"]

        monkeypatch.setattr(settings, "ISV_RATE", Decimal("0.18"))

        for totals in (
            client.get(f"/payments/{payment['id']}").json()["totals"],
            client.get(f"/payments/{payment['id']}/totals").json(),
        ):
            assert Decimal(totals["subtotal"]) == Decimal(invoice["subtotal"]) == Decimal("100.00")
            assert Decimal(totals["isv"]) == Decimal(invoice["isv"]) == Decimal("15.00")
            assert Decimal(totals["total"]) == Decimal(invoice["total"]) == Decimal("115.00")
