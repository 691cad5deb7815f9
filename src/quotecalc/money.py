"""Fixed-point helpers shared by the pricing modules."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from .errors import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: object, *, field: Optional[str] = None, error=ValidationError) -> Decimal:
    """Coerce a JSON/YAML scalar to ``Decimal`` without passing through binary floats.

    Floats are converted via their shortest ``repr`` so ``2.5`` becomes
    ``Decimal("2.5")`` rather than its binary expansion.
    """

    if isinstance(value, bool) or value is None:
        raise error(f"Expected a number, got {value!r}", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        text = str(value).replace("$", "").replace(",", "").strip()
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise error(f"Expected a number, got {value!r}", field=field) from None
    if not result.is_finite():
        raise error(f"Expected a finite number, got {value!r}", field=field)
    return result


def optional_decimal(value: object, *, field: Optional[str] = None, error=ValidationError) -> Optional[Decimal]:
    if value is None:
        return None
    return to_decimal(value, field=field, error=error)


def quantize_money(value: Decimal) -> Decimal:
    """Round to cents, half away from zero."""

    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    """Render a monetary amount with exactly two fraction digits."""

    quantized = quantize_money(value)
    if quantized.is_zero():
        quantized = abs(quantized)
    return format(quantized, "f")


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * percent / HUNDRED


def format_quantity(value: Decimal) -> str:
    """Render a non-monetary quantity without exponent or trailing zeros."""

    if value == value.to_integral_value():
        return format(value.quantize(Decimal(1)), "f")
    return format(value.normalize(), "f")


__all__ = [
    "ZERO",
    "HUNDRED",
    "CENT",
    "to_decimal",
    "optional_decimal",
    "quantize_money",
    "format_money",
    "percent_of",
    "format_quantity",
]
