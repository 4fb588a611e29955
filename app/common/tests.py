"""
Tests de utilidades comunes: RTN hondureño y manejo de montos
"""

import pytest
from decimal import Decimal

from app.common.exceptions import BillingValidationError, ReconciliationError, raise_http_error
from app.common.money import is_whole_cents, round_money, to_decimal
from app.common.validators import format_honduras_rtn, validate_honduras_rtn
from fastapi import HTTPException


class TestRtnValidation:

    @pytest.mark.parametrize("rtn", ["0801-1995-123456", "08011995123456", " 0801-1995-123456 "])
    def test_valid(self, rtn):
        assert validate_honduras_rtn(rtn)

    @pytest.mark.parametrize("rtn", [
        "", None, "0801-1995-12345", "0801199512345", "ABCD-1995-123456", "0801-1995-1234567"
    ])
    def test_invalid(self, rtn):
        assert not validate_honduras_rtn(rtn)

    def test_format(self):
        assert format_honduras_rtn("08011995123456") == "0801-1995-123456"
        assert format_honduras_rtn("0801-1995-123456") == "0801-1995-123456"

    def test_format_invalid_unchanged(self):
        assert format_honduras_rtn("12-34") == "12-34"


class TestMoney:

    @pytest.mark.parametrize("value,expected", [
        ("13.875", "13.88"),
        ("13.874", "13.87"),
        ("0.005", "0.01"),
        ("100", "100.00"),
    ])
    def test_round_half_up(self, value, expected):
        assert round_money(Decimal(value)) == Decimal(expected)

    def test_to_decimal_accepts_numbers_and_strings(self):
        assert to_decimal("92.50") == Decimal("92.50")
        assert to_decimal(7) == Decimal("7")
        assert to_decimal(Decimal("1.1")) == Decimal("1.1")

    @pytest.mark.parametrize("value,expected", [
        ("92.50", True),
        ("100", True),
        ("12.345", False),
        ("0.001", False),
    ])
    def test_is_whole_cents(self, value, expected):
        assert is_whole_cents(Decimal(value)) is expected

    @pytest.mark.parametrize("value", ["abc", None, True, "NaN", "Infinity", []])
    def test_to_decimal_rejects(self, value):
        with pytest.raises(BillingValidationError) as exc:
            to_decimal(value, "precio")
        assert exc.value.error_code == "VALIDATION_ERROR"
        assert exc.value.details["field"] == "precio"


class TestHttpErrors:

    def test_raise_http_error_keeps_details(self):
        with pytest.raises(HTTPException) as exc:
            raise_http_error(ReconciliationError(Decimal("100.00"), Decimal("10.00")))

        assert exc.value.status_code == 409
        assert exc.value.detail["code"] == "RECONCILIATION_ERROR"
        assert exc.value.detail["remaining"] == "10.00"
        assert "Faltan 10.00" in exc.value.detail["message"]

    def test_overpayment_message(self):
        error = ReconciliationError(Decimal("100.00"), Decimal("-5.00"))
        assert "exceden" in error.message
