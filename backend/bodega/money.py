# Overview: Decimal money helpers shared by models and services.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up. The only rounding used for money."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value) -> Decimal:
    """
    Coerce an int / str / float / Decimal amount to a rounded Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.10"), not its binary
    expansion. Booleans and non-numeric input raise ValueError.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, (int, float)):
        dec = Decimal(str(value))
    elif isinstance(value, str):
        try:
            dec = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError("amount must be a number")
    else:
        raise ValueError("amount must be a number")

    if not dec.is_finite():
        raise ValueError("amount must be a finite number")
    return round_money(dec)


def money_str(value: Decimal | None) -> str | None:
    """Serialize a money value for JSON ("1035.00")."""
    if value is None:
        return None
    return str(round_money(Decimal(value)))
