"""Money rounding and formatting.

Amounts travel through the domain as floats and are rounded exactly once, at
the point they are persisted on a record or shown to a person.
"""

from decimal import ROUND_HALF_UP, Decimal

from delivery import settings

_CENTAVO = Decimal("0.01")


def round_money(amount: float) -> float:
    """Round half-up to the currency's minor unit."""
    return float(Decimal(str(amount)).quantize(_CENTAVO, rounding=ROUND_HALF_UP))


def format_money(amount: float, currency: str | None = None) -> str:
    value = Decimal(str(amount)).quantize(_CENTAVO, rounding=ROUND_HALF_UP)
    return f"{currency or settings.CURRENCY} {value:,.2f}"


def money_equal(a: float, b: float) -> bool:
    """True when two amounts agree to the centavo."""
    return abs(Decimal(str(a)) - Decimal(str(b))) < _CENTAVO
