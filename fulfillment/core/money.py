"""Fixed-point money helpers. All amounts carry exactly two fractional digits."""
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Amount = Union[Decimal, int, str]


def to_money(value: Amount) -> Decimal:
    """Coerce to a Decimal rounded half-up to the cent. Floats are rejected."""
    if isinstance(value, float):
        raise TypeError("Monetary values must not be floats")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def truncate_to_cent(value: Decimal) -> Decimal:
    """Drop anything below the cent."""
    return value.quantize(CENT, rounding=ROUND_DOWN)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """amount * percent / 100, truncated to the cent."""
    return truncate_to_cent(Decimal(amount) * Decimal(percent) / Decimal("100"))


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return to_money(Decimal(unit_price) * quantity)
