# Overview: Discount calculator; pure money math, no database access.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..errors import ValidationError
from ..models import DiscountType
from ..money import ZERO, round_money, to_money, money_str

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DiscountBreakdown:
    subtotal: Decimal
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": money_str(self.subtotal),
            "discount_type": self.discount_type.value,
            "discount_value": money_str(self.discount_value),
            "discount_amount": money_str(self.discount_amount),
            "total": money_str(self.total),
        }


def _parse_discount_type(value) -> DiscountType | None:
    if value is None or value == "":
        return DiscountType.NONE
    if isinstance(value, DiscountType):
        return value
    if isinstance(value, str):
        try:
            return DiscountType(value.strip().upper())
        except ValueError:
            return None
    return None


def calculate_discount(subtotal, discount_type=None, discount_value=None) -> DiscountBreakdown:
    """
    Compute the discount for a subtotal.

    - NONE (or a value of 0) gives no discount.
    - PERCENT takes value% of the subtotal; value may not exceed 100.
    - AMOUNT takes value as-is; value may not exceed the subtotal.

    Every violated rule is collected and raised in a single ValidationError.
    """
    errors: list = []

    try:
        subtotal_dec = to_money(subtotal)
    except ValueError:
        raise ValidationError("Invalid subtotal", ["subtotal must be a number"])
    if subtotal_dec < ZERO:
        raise ValidationError("Invalid subtotal", ["subtotal cannot be negative"])

    dtype = _parse_discount_type(discount_type)
    if dtype is None:
        errors.append(f"invalid discount type: {discount_type!r} (expected NONE, PERCENT or AMOUNT)")

    value = ZERO
    if dtype is not DiscountType.NONE:
        if discount_value is None or discount_value == "":
            errors.append("discount value is required")
        else:
            try:
                value = to_money(discount_value)
            except ValueError:
                errors.append("discount value must be a number")
            else:
                if value < ZERO:
                    errors.append("discount value cannot be negative")
                elif dtype is DiscountType.PERCENT and value > HUNDRED:
                    errors.append("percentage discount cannot exceed 100")
                elif dtype is DiscountType.AMOUNT and value > subtotal_dec:
                    errors.append(
                        {
                            "rule": "discount amount cannot exceed subtotal",
                            "discount_value": money_str(value),
                            "subtotal": money_str(subtotal_dec),
                        }
                    )

    if errors:
        raise ValidationError("Invalid discount", errors)

    if dtype is DiscountType.PERCENT:
        amount = round_money(subtotal_dec * value / HUNDRED)
    elif dtype is DiscountType.AMOUNT:
        amount = value
    else:
        amount = ZERO

    return DiscountBreakdown(
        subtotal=subtotal_dec,
        discount_type=dtype,
        discount_value=value,
        discount_amount=amount,
        total=round_money(subtotal_dec - amount),
    )
