# eventbook/domain/money.py

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_amount(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """round(amount * 100) with half-up rounding, as an integer."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(minor: int) -> Decimal:
    return to_amount(Decimal(minor) / 100)
