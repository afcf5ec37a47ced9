"""Minor-unit money helpers"""

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNITS = 100


def to_minor(amount: Decimal) -> int:
    """Convert a major-unit amount to minor units (2 dp, half-up)"""
    return int((Decimal(amount) * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major(amount_minor: int) -> Decimal:
    """Convert minor units back to a 2 dp major-unit Decimal"""
    return (Decimal(amount_minor) / MINOR_UNITS).quantize(Decimal("0.01"))


def format_amount(amount_minor: int, currency: str = "NGN") -> str:
    """Presentation format, e.g. NGN2,820.00"""
    return f"{currency}{to_major(amount_minor):,.2f}"
