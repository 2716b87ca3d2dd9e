from datetime import datetime
from decimal import Decimal

import pytest

from balancey.units import (
    ceil_cents,
    default_due_date,
    floor_cents,
    format_money,
    format_weight,
    from_grams,
    parse_money,
    round_half_up,
)


def test_from_grams():
    assert from_grams(1000, "kg") == 1
    assert from_grams(453.59237, "lb") == pytest.approx(1)


def test_format_weight():
    assert format_weight(3.5, "g") == "3.5g"
    assert format_weight(28.349523125, "oz") == "1.00oz"


@pytest.mark.parametrize(
    "cents, text",
    [(0, "$0.00"), (123456, "$1,234.56"), (-250, "-$2.50")],
)
def test_format_money(cents, text):
    assert format_money(cents) == text


def test_parse_money():
    assert parse_money("$1,234.56") == 123456
    assert parse_money("0.005") == 1
    assert parse_money("not money") == 0


def test_rounding_helpers():
    assert round_half_up(2.5) == 3
    assert round_half_up(Decimal("-2.5")) == -3
    assert ceil_cents(400.01) == 401
    assert floor_cents(4499.99) == 4499
    # 0.1 * 3 is 0.30000000000000004 as a float
    assert round_half_up(0.1 * 3 * 10) == 3


def test_default_due_date_is_end_of_day():
    due = default_due_date(7, now=datetime(2024, 3, 1, 9, 30))
    assert due == datetime(2024, 3, 8, 23, 59, 59, 999000)
