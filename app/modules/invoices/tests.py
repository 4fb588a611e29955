"""
Tests para el módulo de Facturación

Cubren:
- Emisión de recibo simple y factura legal (RTN + CAI)
- Descripción genérica solo en el documento emitido
- Descuento en edición aplicado únicamente si la emisión tiene éxito
- Ninguna factura parcial ni cambio de estado ante un error
- Numeración de rangos CAI: formato, agotamiento, vencimiento y advertencias
- Endpoints de rangos y generación
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from app.common.exceptions import (
    BillingValidationError, InvoiceNumberingError, PaymentStateError, ReconciliationError
)
from app.modules.invoices.generator import InvoiceGenerator
from app.modules.invoices.numbering import (
    InvoiceSequence, SqlInvoiceNumbering, build_range_status, format_legal_number, format_receipt_number
)
from app.modules.invoices.schemas import (
    GenerateOptions, InvoiceRangeCreate, InvoiceRangeOut, InvoiceRangeStatus, InvoiceType
)
from app.modules.payments.enums import DiscountType, PaymentMethod, PaymentStatus
from app.modules.payments.ledger import LineItemLedger
from app.modules.payments.reconciliation import PartialPaymentReconciler
from app.modules.payments.schemas import Discount, PartialPayment, Payment
from app.modules.payments.totals import calculate_payment_totals

ISSUED_AT = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


# ===== FIXTURES =====

def range_data(**overrides):
    data = {
        "rtn": "08019001234567",
        "razon_social": "Clínica Médica, S. DE R. L.",
        "nombre_comercial": "Clínica Médica",
        "cai": "35BD6A-0195F4-B34BAA-8B7D13-37791A-2D",
        "fecha_limite_emision": date(2026, 12, 31),
        "punto_emision": "000-001",
        "rango_inicio": 1,
        "rango_fin": 100,
    }
    data.update(overrides)
    return InvoiceRangeCreate(**data)


@pytest.fixture
def numbering():
    return InvoiceSequence()


@pytest.fixture
def generator(numbering):
    return InvoiceGenerator(numbering, clock=lambda: ISSUED_AT)


@pytest.fixture
def payment():
    payment = Payment(patient_ref="PAC-001", patient_name="Carlos Mejía", patient_identity="0801-1980-00456")
    ledger = LineItemLedger(payment)
    ledger.add_custom_item("Consulta General", Decimal("100.00"))
    ledger.add_custom_item("Hemograma", Decimal("50.00"))
    return payment


@pytest.fixture
def make_payment():
    def build():
        payment = Payment(patient_ref="PAC-002", patient_name="Luis Torres")
        LineItemLedger(payment).add_custom_item("Consulta", Decimal("200.00"))
        return payment
    return build


def reconcile_single(payment, discount=None, method=PaymentMethod.CASH):
    total = calculate_payment_totals(payment.items, discount or payment.discount).total
    return PartialPaymentReconciler().single(total, method)


def legal_options(**overrides):
    options = {"use_rtn": True, "cliente_rtn": "0801-1995-123456", "company_name": "Inversiones del Valle S.A."}
    options.update(overrides)
    return GenerateOptions(**options)


# ===== RECIBO SIMPLE =====

class TestSimpleReceipt:

    def test_generate_simple(self, generator, payment):
        invoice = generator.generate(payment, reconcile_single(payment))

        assert invoice.type == InvoiceType.SIMPLE
        assert invoice.numero_documento == "REC-000001"
        assert invoice.fecha_emision == ISSUED_AT
        assert invoice.cliente_nombre == "Carlos Mejía"
        assert invoice.cliente_identidad == "0801-1980-00456"
        assert invoice.cliente_rtn is None
        assert invoice.cai is None
        assert invoice.subtotal == Decimal("130.43")
        assert invoice.isv == Decimal("19.57")
        assert invoice.total == Decimal("150.00")
        assert [i.nombre for i in invoice.items] == ["Consulta General", "Hemograma"]

        assert payment.status == PaymentStatus.PAID
        assert payment.paid_at == ISSUED_AT
        assert payment.payment_method == PaymentMethod.CASH

    def test_explicit_client_name(self, generator, payment):
        invoice = generator.generate(
            payment, reconcile_single(payment), GenerateOptions(cliente_nombre="Ana Mejía")
        )
        assert invoice.cliente_nombre == "Ana Mejía"

    def test_generic_description_only_on_invoice(self, generator, payment):
        invoice = generator.generate(
            payment, reconcile_single(payment), GenerateOptions(use_generic_description=True)
        )

        assert invoice.detalle_generico
        assert all(item.nombre == "Servicios Médicos" for item in invoice.items)
        assert [i.name for i in payment.items] == ["Consulta General", "Hemograma"]
        assert invoice.total == Decimal("150.00")

    def test_invoice_is_immutable(self, generator, payment):
        invoice = generator.generate(payment, reconcile_single(payment))
        with pytest.raises(Exception):
            invoice.total = Decimal("1.00")

    def test_split_payment_lines(self, generator, payment):
        reconciliation = PartialPaymentReconciler().reconcile(Decimal("150.00"), [
            PartialPayment(method=PaymentMethod.CASH, amount=Decimal("100.00")),
            PartialPayment(method=PaymentMethod.TRANSFER, amount=Decimal("50.00")),
        ])
        invoice = generator.generate(payment, reconciliation)

        assert [(p.method, p.amount) for p in invoice.payments] == [
            (PaymentMethod.CASH, Decimal("100.00")),
            (PaymentMethod.TRANSFER, Decimal("50.00")),
        ]
        assert payment.payment_method is None
        assert len(payment.partial_payments) == 2


# ===== FACTURA LEGAL =====

class TestLegalInvoice:

    def test_generate_legal(self, generator, numbering, payment):
        numbering.add_range(range_data())
        invoice = generator.generate(payment, reconcile_single(payment), legal_options(cliente_rtn="08011995123456"))

        assert invoice.type == InvoiceType.LEGAL
        assert invoice.numero_documento == "000-001-01-00000001"
        assert invoice.correlativo == 1
        assert invoice.cai == "35BD6A-0195F4-B34BAA-8B7D13-37791A-2D"
        assert invoice.emisor_nombre == "Clínica Médica"
        assert invoice.emisor_rtn == "0801-9001-234567"
        assert invoice.cliente_nombre == "Inversiones del Valle S.A."
        assert invoice.cliente_rtn == "0801-1995-123456"

    def test_correlativos_advance(self, generator, numbering, make_payment):
        invoice_range = numbering.add_range(range_data(rango_inicio=41, rango_fin=60))
        first_payment = make_payment()
        first = generator.generate(first_payment, reconcile_single(first_payment), legal_options())
        second_payment = make_payment()
        second = generator.generate(second_payment, reconcile_single(second_payment), legal_options())

        assert first.numero_documento == "000-001-01-00000041"
        assert second.numero_documento == "000-001-01-00000042"
        assert invoice_range.correlativo_actual == 42

    @pytest.mark.parametrize("options,code", [
        (legal_options(cliente_rtn=None), "EMPTY_FIELD"),
        (legal_options(cliente_rtn="0801-1995"), "INVALID_RTN"),
        (legal_options(company_name="  "), "EMPTY_FIELD"),
    ])
    def test_rtn_fields_required(self, generator, numbering, payment, options, code):
        invoice_range = numbering.add_range(range_data())
        with pytest.raises(BillingValidationError) as exc:
            generator.generate(payment, reconcile_single(payment), options)

        assert exc.value.error_code == code
        assert payment.status == PaymentStatus.PENDING
        assert payment.invoice is None
        assert invoice_range.correlativo_actual == 0

    def test_no_range(self, generator, payment):
        with pytest.raises(InvoiceNumberingError):
            generator.generate(payment, reconcile_single(payment), legal_options())
        assert payment.status == PaymentStatus.PENDING

    def test_expired_range_skipped(self, generator, numbering, payment):
        expired = numbering.add_range(range_data(fecha_limite_emision=date(2026, 3, 1)))
        with pytest.raises(InvoiceNumberingError):
            generator.generate(payment, reconcile_single(payment), legal_options())
        assert expired.estado == InvoiceRangeStatus.EXPIRED

    def test_range_exhausted_after_last_correlativo(self, generator, numbering, make_payment):
        invoice_range = numbering.add_range(range_data(rango_inicio=10, rango_fin=10))

        first_payment = make_payment()
        invoice = generator.generate(first_payment, reconcile_single(first_payment), legal_options())
        assert invoice.numero_documento == "000-001-01-00000010"
        assert invoice_range.estado == InvoiceRangeStatus.EXHAUSTED

        second_payment = make_payment()
        with pytest.raises(InvoiceNumberingError):
            generator.generate(second_payment, reconcile_single(second_payment), legal_options())
        assert second_payment.status == PaymentStatus.PENDING

    def test_newest_usable_range_wins(self, generator, numbering, payment):
        numbering.add_range(range_data(cai="CAI-ANTIGUO", punto_emision="000-001"))
        numbering.add_range(range_data(cai="CAI-NUEVO", punto_emision="000-002", rango_inicio=500, rango_fin=900))

        invoice = generator.generate(payment, reconcile_single(payment), legal_options())
        assert invoice.cai == "CAI-NUEVO"
        assert invoice.numero_documento == "000-002-01-00000500"


# ===== ATOMICIDAD =====

class TestAtomicGeneration:

    def test_draft_discount_merged_on_success(self, generator, payment):
        draft = Discount(type=DiscountType.PERCENTAGE, value=Decimal("10"), reason="Convenio")
        invoice = generator.generate(payment, reconcile_single(payment, draft), draft_discount=draft)

        assert invoice.total == Decimal("135.00")
        assert invoice.discount_amount == Decimal("13.04")
        assert invoice.discount_reason == "Convenio"
        assert payment.discount == draft

    def test_draft_discount_not_merged_on_failure(self, generator, payment):
        draft = Discount(type=DiscountType.PERCENTAGE, value=Decimal("10"))
        with pytest.raises(InvoiceNumberingError):
            generator.generate(
                payment,
                reconcile_single(payment, draft),
                legal_options(),
                draft_discount=draft
            )
        assert payment.discount is None
        assert payment.status == PaymentStatus.PENDING

    def test_invalid_draft_discount(self, generator, numbering, payment):
        draft = Discount(type=DiscountType.ABSOLUTE, value=Decimal("500"))
        with pytest.raises(BillingValidationError):
            generator.generate(payment, reconcile_single(payment), draft_discount=draft)
        assert numbering.last_receipt == 0
        assert payment.invoice is None

    def test_reconciliation_against_other_total(self, generator, payment):
        """Conciliación calculada sin descuento, pero el pago tiene 10%"""
        stale = reconcile_single(payment)
        payment.discount = Discount(type=DiscountType.PERCENTAGE, value=Decimal("10"))

        with pytest.raises(ReconciliationError):
            generator.generate(payment, stale)
        assert payment.status == PaymentStatus.PENDING

    def test_unbalanced_reconciliation(self, generator, numbering, payment):
        reconciliation = PartialPaymentReconciler().reconcile(
            Decimal("150.00"),
            [PartialPayment(method=PaymentMethod.CASH, amount=Decimal("149.00"))]
        )
        with pytest.raises(ReconciliationError) as exc:
            generator.generate(payment, reconciliation)
        assert exc.value.remaining == Decimal("1.00")
        assert numbering.last_receipt == 0

    def test_only_pending_payments(self, generator, payment):
        payment.status = PaymentStatus.CANCELLED
        with pytest.raises(PaymentStateError):
            generator.generate(payment, reconcile_single(payment))


# ===== NUMERACIÓN Y ESTADO DE RANGOS =====

class TestNumbering:

    def test_formats(self):
        assert format_receipt_number("REC-", 7) == "REC-000007"
        assert format_legal_number("000-001", 12701) == "000-001-01-00012701"

    def test_receipt_sequence_continues(self):
        sequence = InvoiceSequence(last_receipt=41)
        assert sequence.next_receipt_number().numero_documento == "REC-000042"

    def test_new_range_starts_before_first_correlativo(self):
        invoice_range = InvoiceSequence().add_range(range_data(rango_inicio=101, rango_fin=200))
        assert invoice_range.correlativo_actual == 100
        assert invoice_range.rtn == "0801-9001-234567"

    def test_range_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            range_data(rango_inicio=10, rango_fin=5)

    def test_status_without_range(self):
        report = build_range_status(None, date(2026, 3, 10))
        assert not report.has_active_range
        assert report.warnings

    def test_status_healthy_range(self):
        invoice_range = InvoiceSequence().add_range(range_data(rango_fin=1000))
        report = build_range_status(invoice_range, date(2026, 3, 10))
        assert report.has_active_range
        assert report.warnings == []
        assert report.correlativos_disponibles == 1000

    def test_status_warnings(self):
        invoice_range = InvoiceSequence().add_range(range_data(fecha_limite_emision=date(2026, 3, 20), rango_fin=30))
        report = build_range_status(invoice_range, date(2026, 3, 10))
        assert report.days_remaining == 10
        assert len(report.warnings) == 2
        assert "vence en 10 días" in report.warnings[0]
        assert "Solo quedan 30 facturas" in report.warnings[1]

    def test_status_expired(self):
        invoice_range = InvoiceSequence().add_range(range_data(fecha_limite_emision=date(2026, 3, 1)))
        report = build_range_status(invoice_range, date(2026, 3, 10))
        assert "ha vencido" in report.warnings[0]


# ===== API =====

def range_payload(**overrides):
    payload = {
        "rtn": "08019001234567",
        "razon_social": "Clínica Médica, S. DE R. L.",
        "nombre_comercial": "Clínica Médica",
        "cai": "35BD6A-0195F4-B34BAA-8B7D13-37791A-2D",
        "fecha_limite_emision": (date.today() + timedelta(days=180)).isoformat(),
        "punto_emision": "000-001",
        "rango_inicio": 1,
        "rango_fin": 500,
    }
    payload.update(overrides)
    return payload


class TestInvoicesApi:

    def create_payment(self, client, unit_price="150.00"):
        response = client.post("/payments/", json={
            "patient_ref": "PAC-010",
            "patient_name": "Rosa Díaz",
            "items": [{"source": {"kind": "custom", "name": "Consulta", "unit_price": unit_price}}]
        })
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_and_list_ranges(self, client):
        response = client.post("/invoice-ranges/", json=range_payload())
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["rtn"] == "0801-9001-234567"
        assert data["correlativo_actual"] == 0
        assert data["estado"] == "activo"

        ranges = client.get("/invoice-ranges/").json()
        assert len(ranges) == 1

    def test_range_out_reads_orm_rows(self, db_session):
        invoice_range = SqlInvoiceNumbering(db_session).create_range(range_data(rango_inicio=5, rango_fin=9))
        db_session.commit()

        out = InvoiceRangeOut.model_validate(invoice_range)
        assert out.id == invoice_range.id
        assert out.correlativo_actual == 4
        assert out.estado == InvoiceRangeStatus.ACTIVE

    def test_duplicate_cai_rejected(self, client):
        client.post("/invoice-ranges/", json=range_payload())
        response = client.post("/invoice-ranges/", json=range_payload())
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "DUPLICATE_CAI"

    def test_invalid_range_payload(self, client):
        response = client.post("/invoice-ranges/", json=range_payload(rtn="1234"))
        assert response.status_code == 422

    def test_range_status(self, client):
        report = client.get("/invoice-ranges/status").json()
        assert report["has_active_range"] is False

        client.post("/invoice-ranges/", json=range_payload(rango_fin=20))
        report = client.get("/invoice-ranges/status").json()
        assert report["has_active_range"] is True
        assert report["correlativos_disponibles"] == 20
        assert any("Solo quedan 20" in w for w in report["warnings"])

    def test_generate_simple_receipts(self, client):
        first = self.create_payment(client)
        second = self.create_payment(client)

        response = client.post("/invoices/generate", json={
            "payment_id": first["id"],
            "payment_method": "efectivo",
            "options": {"use_generic_description": True}
        })
        assert response.status_code == 201, response.text
        invoice = response.json()["invoice"]
        assert invoice["numero_documento"] == "REC-000001"
        assert invoice["items"][0]["nombre"] == "Servicios Médicos"
        assert response.json()["items"][0]["name"] == "Consulta"

        response = client.post("/invoices/generate", json={
            "payment_id": second["id"], "payment_method": "tarjeta"
        })
        assert response.json()["invoice"]["numero_documento"] == "REC-000002"

        listing = client.get("/invoices/").json()
        assert listing["total"] == 2

        fetched = client.get(f"/invoices/{invoice['id']}").json()
        assert fetched["numero_documento"] == "REC-000001"
        assert fetched["detalle_generico"] is True

    def test_generate_legal_invoice(self, client):
        client.post("/invoice-ranges/", json=range_payload(rango_inicio=12701, rango_fin=13000))
        payment = self.create_payment(client)

        response = client.post("/invoices/generate", json={
            "payment_id": payment["id"],
            "payment_method": "transferencia",
            "options": {
                "use_rtn": True,
                "cliente_rtn": "0801-1995-123456",
                "company_name": "Inversiones del Valle S.A."
            }
        })
        assert response.status_code == 201, response.text
        invoice = response.json()["invoice"]
        assert invoice["type"] == "legal"
        assert invoice["numero_documento"] == "000-001-01-00012701"
        assert invoice["cliente_nombre"] == "Inversiones del Valle S.A."

        ranges = client.get("/invoice-ranges/").json()
        assert ranges[0]["correlativo_actual"] == 12701

        listing = client.get("/invoices/", params={"type": "legal"}).json()
        assert listing["total"] == 1

    def test_failed_generation_changes_nothing(self, client):
        payment = self.create_payment(client)

        response = client.post("/invoices/generate", json={
            "payment_id": payment["id"],
            "payment_method": "efectivo",
            "draft_discount": {"type": "percentage", "value": "10"},
            "options": {"use_rtn": True, "cliente_rtn": "0801-1995-123456", "company_name": "Empresa"}
        })
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVOICE_NUMBERING_ERROR"

        detail = client.get(f"/payments/{payment['id']}").json()
        assert detail["status"] == "pending"
        assert detail["discount"] is None
        assert detail["invoice"] is None
        assert client.get("/invoices/").json()["total"] == 0

    def test_generate_twice_rejected(self, client):
        payment = self.create_payment(client)
        body = {"payment_id": payment["id"], "payment_method": "efectivo"}
        assert client.post("/invoices/generate", json=body).status_code == 201
        assert client.post("/invoices/generate", json=body).status_code == 409

    def test_invoice_not_found(self, client):
        assert client.get("/invoices/no-existe").status_code == 404
