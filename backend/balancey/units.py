from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP

from balancey.time_utils import utcnow


# Conversion constants (to grams)
CONVERSION_TO_GRAMS = {
    "g": 1.0,
    "kg": 1000.0,
    "oz": 28.349523125,
    "lb": 453.59237,
}

VALID_WEIGHT_UNITS = set(CONVERSION_TO_GRAMS)


def from_grams(grams: float, unit: str) -> float:
    return grams / CONVERSION_TO_GRAMS[unit]


def format_weight(grams: float, unit: str, decimal_places: int = 1) -> str:
    value = from_grams(grams, unit)
    decimals = decimal_places if unit == "g" else max(2, decimal_places)
    return f"{value:.{decimals}f}{unit}"


def format_money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def parse_money(value: str) -> int:
    """'$1,234.56' -> 123456. Unparseable input is treated as zero."""
    cleaned = value.replace("$", "").replace(",", "").strip()
    try:
        return round_half_up(Decimal(cleaned) * 100)
    except ArithmeticError:
        return 0


def _dec(value) -> Decimal:
    # str() keeps 0.4 as 0.4 instead of its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_up(value) -> int:
    """Nearest whole cent, halves away from zero."""
    return int(_dec(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def ceil_cents(value) -> int:
    return int(_dec(value).to_integral_value(rounding=ROUND_CEILING))


def floor_cents(value) -> int:
    return int(_dec(value).to_integral_value(rounding=ROUND_FLOOR))


def pct_of(cents: int, pct: float) -> Decimal:
    return _dec(cents) * _dec(pct)


def default_due_date(days_from_now: int, *, now: datetime | None = None) -> datetime:
    """End of the day ``days_from_now`` days ahead (UTC)."""
    base = (now or utcnow()) + timedelta(days=days_from_now)
    return base.replace(hour=23, minute=59, second=59, microsecond=999000)
