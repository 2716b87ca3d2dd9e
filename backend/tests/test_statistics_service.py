"""
Typical-order statistics: median, MAD, spread floor and the over-typical flag.
"""

import pytest

from balancey.services import order_service, settings_service
from balancey.services.statistics_service import (
    compute_typical_order_stats,
    is_over_typical,
    median,
    median_absolute_deviation,
    stats_from_samples,
)


def test_median_basics():
    assert median([]) == 0
    assert median([7, 7, 7]) == 7
    assert median([3, 1, 2]) == 2
    assert median([7, 14]) == 10.5


def test_uniform_history_uses_spread_floor():
    assert median_absolute_deviation([7, 7, 7], 7) == 0

    stats = stats_from_samples([7, 7, 7])
    assert stats.median_grams == 7
    assert stats.mad == 0
    assert stats.spread == 1.0
    assert stats.upper_normal == 9
    assert stats.is_low_confidence is False


def test_two_samples_are_low_confidence():
    stats = stats_from_samples([7, 14])
    assert stats.median_grams == 10.5
    assert stats.mad == 3.5
    assert stats.upper_normal == 17.5
    assert stats.is_low_confidence is True

    # Never flagged from fewer than three samples, however large the request
    assert is_over_typical(20, stats) is False
    assert is_over_typical(10_000, stats) is False


def test_over_typical_flag_with_enough_history():
    stats = stats_from_samples([7, 10.5, 14])
    assert stats.median_grams == 10.5
    assert stats.mad == 3.5
    assert stats.upper_normal == 17.5

    assert is_over_typical(20, stats) is True
    assert is_over_typical(15, stats) is False
    assert is_over_typical(17.5, stats) is False


def test_no_history_returns_none(make_customer):
    customer = make_customer()
    assert compute_typical_order_stats(customer.id) is None
    assert is_over_typical(100, None) is False


def test_stats_from_closed_order_history(make_customer, make_product, history):
    customer = make_customer()
    product = make_product()
    history(customer, product, [7, 14])

    stats = compute_typical_order_stats(customer.id)
    assert stats.order_count == 2
    assert stats.median_grams == 10.5
    assert stats.mad == 3.5


def test_open_and_cancelled_orders_are_excluded(make_customer, make_product, make_order, history):
    customer = make_customer()
    product = make_product()
    history(customer, product, [5, 5, 5])

    make_order(customer, product, 100)  # OPEN, unpaid
    cancelled = make_order(customer, product, 200)
    order_service.cancel_order(cancelled.id)

    stats = compute_typical_order_stats(customer.id)
    assert stats.order_count == 3
    assert stats.median_grams == 5


def test_partial_orders_respect_setting(make_customer, make_product, make_order, history):
    customer = make_customer()
    product = make_product()
    history(customer, product, [5, 5, 5])
    partial = make_order(customer, product, 50)
    order_service.add_payment(partial.id, 100)
    assert order_service.get_order_details(partial.id)["status"] == "PARTIAL"

    assert compute_typical_order_stats(customer.id).order_count == 4

    settings_service.update_settings({"typical_order_include_partial": False})
    assert compute_typical_order_stats(customer.id).order_count == 3


def test_history_window_keeps_most_recent(make_customer, make_product, history):
    customer = make_customer()
    product = make_product()
    history(customer, product, [100, 100, 2, 2, 2])

    settings_service.update_settings({"typical_order_history_count": 3})
    stats = compute_typical_order_stats(customer.id)
    assert stats.order_count == 3
    assert stats.median_grams == 2


def test_quality_filter(make_customer, make_product, history):
    customer = make_customer()
    regular = make_product("Regular", quality="REGULAR")
    premium = make_product("Premium", quality="PREMIUM", price_per_gram_cents=1500)
    history(customer, regular, [3, 3, 3])
    history(customer, premium, [20, 20, 20])

    assert compute_typical_order_stats(customer.id, quality="REGULAR").median_grams == 3
    assert compute_typical_order_stats(customer.id, quality="PREMIUM").median_grams == 20
    assert compute_typical_order_stats(customer.id).order_count == 6


@pytest.mark.parametrize("samples", [[0, 0], []])
def test_zero_samples_dropped(samples):
    assert stats_from_samples(samples) is None
