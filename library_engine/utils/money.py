from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from library_engine.errors import ValidationError

CENT = Decimal('0.01')


def to_money(value: Any) -> Decimal:
    """Convert ``value`` to a Decimal rounded to cents.

    Raises:
        ValidationError: If the value is not a finite number.
    """
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    return str(value.quantize(CENT))
