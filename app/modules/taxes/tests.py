"""
Tests para el cálculo de ISV

Cubren el desglose de montos con ISV incluido, la composición desde un
subtotal y los endpoints de consulta de la tasa.
"""

import pytest
from decimal import Decimal

from app.modules.taxes.calculator import TaxCalculator, get_isv_rate_info


@pytest.fixture
def calculator():
    return TaxCalculator()


class TestDecompose:
    """Extraer el ISV de un total que ya lo incluye"""

    def test_exact_amount(self, calculator):
        breakdown = calculator.decompose(Decimal("115.00"))
        assert breakdown.subtotal == Decimal("100.00")
        assert breakdown.isv == Decimal("15.00")
        assert breakdown.total == Decimal("115.00")

    def test_rounding_half_up(self, calculator):
        """150 / 1.15 = 130.4347... -> 130.43, el ISV es el resto"""
        breakdown = calculator.decompose(Decimal("150.00"))
        assert breakdown.subtotal == Decimal("130.43")
        assert breakdown.isv == Decimal("19.57")

    @pytest.mark.parametrize("total", ["0.00", "0.01", "99.99", "150.00", "1234.56", "999999.99"])
    def test_subtotal_plus_isv_equals_total(self, calculator, total):
        breakdown = calculator.decompose(Decimal(total))
        assert breakdown.subtotal + breakdown.isv == Decimal(total)

    @pytest.mark.parametrize("total", ["0.00", "0.01", "1.00", "99.99", "134.99", "1234.56"])
    def test_round_trip(self, calculator, total):
        subtotal = calculator.decompose(Decimal(total)).subtotal
        assert abs(calculator.compose(subtotal).total - Decimal(total)) <= Decimal("0.01")

    def test_zero(self, calculator):
        breakdown = calculator.decompose(Decimal("0"))
        assert breakdown.subtotal == Decimal("0.00")
        assert breakdown.isv == Decimal("0.00")

    def test_custom_rate(self):
        breakdown = TaxCalculator(rate=Decimal("0.18")).decompose(Decimal("118.00"))
        assert breakdown.subtotal == Decimal("100.00")
        assert breakdown.isv == Decimal("18.00")


class TestCompose:
    """Agregar el ISV a un subtotal sin impuesto"""

    def test_compose(self, calculator):
        breakdown = calculator.compose(Decimal("100.00"))
        assert breakdown.isv == Decimal("15.00")
        assert breakdown.total == Decimal("115.00")

    def test_compose_rounds_tax(self, calculator):
        """117.39 * 0.15 = 17.6085 -> 17.61"""
        breakdown = calculator.compose(Decimal("117.39"))
        assert breakdown.isv == Decimal("17.61")
        assert breakdown.total == Decimal("135.00")

    def test_half_cent_rounds_up(self, calculator):
        """92.50 * 0.15 = 13.875 -> 13.88"""
        assert calculator.calculate_tax(Decimal("92.50")) == Decimal("13.88")


class TestIsvEndpoints:

    def test_rate_info(self):
        info = get_isv_rate_info()
        assert info["name"] == "ISV 15%"
        assert info["rate"] == Decimal("0.15")

    def test_get_rate(self, client):
        response = client.get("/taxes/isv")
        assert response.status_code == 200
        assert response.json()["name"] == "ISV 15%"

    def test_breakdown(self, client):
        response = client.get("/taxes/isv/breakdown", params={"total": "150.00"})
        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["subtotal"]) == Decimal("130.43")
        assert Decimal(data["isv"]) == Decimal("19.57")

    def test_breakdown_rejects_negative(self, client):
        response = client.get("/taxes/isv/breakdown", params={"total": "-1"})
        assert response.status_code == 422
