# Overview: Typical order size per customer from trailing order history.

"""
Order Statistics

A customer's "typical" order is the median of the grams they requested per
order over their most recent CLOSED (and optionally PARTIAL) orders. The
dispersion is the median absolute deviation (MAD), which a single outlier
order cannot drag around.

    spread       = max(MAD, MIN_SPREAD_GRAMS)
    upper_normal = median + 2 * spread

With fewer than LOW_CONFIDENCE_SAMPLES samples the stats are reported but
flagged low-confidence, and nothing is ever marked over-typical from them.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass, asdict

from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderItem, Product, Settings
from .settings_service import get_settings


MIN_SPREAD_GRAMS = 1.0
LOW_CONFIDENCE_SAMPLES = 3
UPPER_NORMAL_SPREADS = 2


@dataclass(frozen=True)
class TypicalOrderStats:
    median_grams: float
    mad: float
    spread: float
    upper_normal: float
    order_count: int
    is_low_confidence: bool

    def to_dict(self) -> dict:
        return asdict(self)


def median(values: list[float]) -> float:
    """Standard median; 0 for an empty list."""
    if not values:
        return 0
    return statistics.median(values)


def median_absolute_deviation(values: list[float], center: float) -> float:
    if not values:
        return 0
    return median([abs(v - center) for v in values])


def stats_from_samples(samples: list[float]) -> TypicalOrderStats | None:
    samples = [s for s in samples if s > 0]
    if not samples:
        return None

    med = median(samples)
    mad = median_absolute_deviation(samples, med)
    spread = max(mad, MIN_SPREAD_GRAMS)
    return TypicalOrderStats(
        median_grams=med,
        mad=mad,
        spread=spread,
        upper_normal=med + UPPER_NORMAL_SPREADS * spread,
        order_count=len(samples),
        is_low_confidence=len(samples) < LOW_CONFIDENCE_SAMPLES,
    )


def _history_statuses(settings: Settings) -> list[str]:
    if settings.typical_order_include_partial:
        return ["PARTIAL", "CLOSED"]
    return ["CLOSED"]


def order_gram_samples(
    customer_id: str,
    *,
    quality: str | None = None,
    settings: Settings | None = None,
) -> list[float]:
    """
    Requested grams per order, most recent order first.

    Only the last ``typical_order_history_count`` qualifying orders are
    considered; orders that contribute no grams are dropped.
    """
    settings = settings or get_settings()

    recent_ids = [
        row.id
        for row in (
            db.session.query(Order.id)
            .filter(
                Order.customer_id == customer_id,
                Order.status.in_(_history_statuses(settings)),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(settings.typical_order_history_count)
            .all()
        )
    ]
    if not recent_ids:
        return []

    q = (
        db.session.query(
            OrderItem.order_id,
            func.coalesce(func.sum(OrderItem.quantity_grams), 0).label("grams"),
        )
        .filter(OrderItem.order_id.in_(recent_ids))
    )
    if quality is not None:
        q = q.join(Product, Product.id == OrderItem.product_id).filter(Product.quality == quality)

    totals = {row.order_id: float(row.grams or 0) for row in q.group_by(OrderItem.order_id).all()}
    return [totals[oid] for oid in recent_ids if totals.get(oid, 0) > 0]


def compute_typical_order_stats(
    customer_id: str,
    quality: str | None = None,
    settings: Settings | None = None,
) -> TypicalOrderStats | None:
    """Typical order stats for a customer, or None without any history."""
    return stats_from_samples(order_gram_samples(customer_id, quality=quality, settings=settings))


def is_over_typical(requested_grams: float, stats: TypicalOrderStats | None) -> bool:
    # Low-confidence customers are never penalized for lack of data
    if stats is None or stats.is_low_confidence:
        return False
    return requested_grams > stats.upper_normal
