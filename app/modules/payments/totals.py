from decimal import Decimal
from typing import Iterable, Optional

from app.common.money import ZERO, round_money
from app.modules.invoices.schemas import Invoice
from app.modules.payments.discounts import DiscountEngine
from app.modules.payments.schemas import Discount, LineItem, PaymentTotals
from app.modules.taxes.calculator import TaxCalculator
from app.modules.taxes.schemas import TaxBreakdown


def sum_line_totals(items: Iterable[LineItem]) -> Decimal:
    """Suma de líneas con ISV incluido: Σ precio_unitario * cantidad"""
    return round_money(sum((item.line_total for item in items), ZERO))


def calculate_payment_totals(
    items: Iterable[LineItem],
    discount: Optional[Discount],
    tax_calculator: Optional[TaxCalculator] = None,
    discount_engine: Optional[DiscountEngine] = None
) -> PaymentTotals:
    """
    Calcular los totales de un pago

    Orden fijo: subtotal sin ISV -> menos descuento -> más ISV sobre la base
    descontada. Sin descuento se reporta el desglose del total con ISV tal
    cual, sin recomponerlo.

    Raises:
        BillingValidationError: si el descuento es inválido
    """
    tax_calculator = tax_calculator or TaxCalculator()
    discount_engine = discount_engine or DiscountEngine()

    gross = sum_line_totals(items)
    breakdown = tax_calculator.decompose(gross)
    discount_amount = discount_engine.apply(breakdown.subtotal, discount)
    return _build_totals(gross, breakdown, discount_amount, tax_calculator)


def preview_payment_totals(
    items: Iterable[LineItem],
    discount: Optional[Discount],
    tax_calculator: Optional[TaxCalculator] = None,
    discount_engine: Optional[DiscountEngine] = None
) -> PaymentTotals:
    """
    Totales para mostrar en caja mientras el pago se edita. Un descuento
    fuera de rango se recorta en lugar de rechazarse.
    """
    tax_calculator = tax_calculator or TaxCalculator()
    discount_engine = discount_engine or DiscountEngine()

    gross = sum_line_totals(items)
    breakdown = tax_calculator.decompose(gross)
    discount_amount = discount_engine.display_amount(breakdown.subtotal, discount)
    return _build_totals(gross, breakdown, discount_amount, tax_calculator)


def totals_from_invoice(invoice: Invoice) -> PaymentTotals:
    """Totales tal como quedaron en la factura emitida; no se recalculan"""
    return PaymentTotals(
        subtotal_inclusive=round_money(sum((item.total for item in invoice.items), ZERO)),
        subtotal=invoice.subtotal,
        discount_amount=invoice.discount_amount,
        discounted_subtotal=round_money(invoice.subtotal - invoice.discount_amount),
        isv=invoice.isv,
        total=invoice.total
    )


def _build_totals(
    gross: Decimal,
    breakdown: TaxBreakdown,
    discount_amount: Decimal,
    tax_calculator: TaxCalculator
) -> PaymentTotals:
    if discount_amount == ZERO:
        return PaymentTotals(
            subtotal_inclusive=gross,
            subtotal=breakdown.subtotal,
            discount_amount=ZERO,
            discounted_subtotal=breakdown.subtotal,
            isv=breakdown.isv,
            total=gross
        )

    discounted = round_money(breakdown.subtotal - discount_amount)
    recomposed = tax_calculator.compose(discounted)
    return PaymentTotals(
        subtotal_inclusive=gross,
        subtotal=breakdown.subtotal,
        discount_amount=discount_amount,
        discounted_subtotal=discounted,
        isv=recomposed.isv,
        total=recomposed.total
    )
