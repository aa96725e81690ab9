"""
Discount calculator tests.

Verifies:
- NONE / PERCENT / AMOUNT arithmetic with half-up rounding
- Boundary values (100%, amount equal to subtotal)
- Every violated rule reported in a single ValidationError
"""

from decimal import Decimal

import pytest

from bodega.errors import ValidationError
from bodega.models import DiscountType
from bodega.services.discount_service import calculate_discount


class TestDiscountArithmetic:

    def test_no_discount(self):
        result = calculate_discount("1150.00")
        assert result.discount_type is DiscountType.NONE
        assert result.discount_amount == Decimal("0.00")
        assert result.total == Decimal("1150.00")

    def test_percent_discount(self):
        result = calculate_discount(Decimal("1150.00"), "PERCENT", 10)
        assert result.subtotal == Decimal("1150.00")
        assert result.discount_amount == Decimal("115.00")
        assert result.total == Decimal("1035.00")

    def test_percent_rounds_half_up(self):
        # 12.5% of 0.20 = 0.025
        result = calculate_discount("0.20", "percent", "12.5")
        assert result.discount_amount == Decimal("0.03")
        assert result.total == Decimal("0.17")

    def test_amount_discount(self):
        result = calculate_discount("200.00", "AMOUNT", "45.50")
        assert result.discount_amount == Decimal("45.50")
        assert result.total == Decimal("154.50")

    def test_full_percent_gives_zero_total(self):
        result = calculate_discount("80.00", "PERCENT", 100)
        assert result.discount_amount == Decimal("80.00")
        assert result.total == Decimal("0.00")

    def test_amount_equal_to_subtotal_is_allowed(self):
        result = calculate_discount("80.00", "AMOUNT", "80.00")
        assert result.total == Decimal("0.00")

    def test_zero_value_is_no_op(self):
        result = calculate_discount("80.00", "PERCENT", 0)
        assert result.discount_amount == Decimal("0.00")
        assert result.total == Decimal("80.00")

    def test_to_dict_serializes_money_as_strings(self):
        data = calculate_discount(Decimal("1150"), "PERCENT", 10).to_dict()
        assert data == {
            "subtotal": "1150.00",
            "discount_type": "PERCENT",
            "discount_value": "10.00",
            "discount_amount": "115.00",
            "total": "1035.00",
        }


class TestDiscountValidation:

    def test_percent_over_100_rejected(self):
        with pytest.raises(ValidationError) as exc:
            calculate_discount("100.00", "PERCENT", 101)
        assert "percentage discount cannot exceed 100" in exc.value.details

    def test_amount_over_subtotal_rejected(self):
        with pytest.raises(ValidationError) as exc:
            calculate_discount("50.00", "AMOUNT", "50.01")
        detail = exc.value.details[0]
        assert detail["subtotal"] == "50.00"
        assert detail["discount_value"] == "50.01"

    def test_negative_value_rejected(self):
        with pytest.raises(ValidationError):
            calculate_discount("50.00", "AMOUNT", -1)

    def test_unknown_type_and_missing_value_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            calculate_discount("50.00", "BOGO", None)
        assert exc.value.message == "Invalid discount"
        assert len(exc.value.details) == 2

    def test_value_required_for_percent(self):
        with pytest.raises(ValidationError) as exc:
            calculate_discount("50.00", "PERCENT")
        assert exc.value.details == ["discount value is required"]

    def test_non_numeric_value(self):
        with pytest.raises(ValidationError) as exc:
            calculate_discount("50.00", "AMOUNT", "ten")
        assert exc.value.details == ["discount value must be a number"]

    def test_negative_subtotal(self):
        with pytest.raises(ValidationError) as exc:
            calculate_discount("-1.00")
        assert exc.value.message == "Invalid subtotal"
