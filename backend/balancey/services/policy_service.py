# Overview: Risk-tier resolution and deliver-now computation (pure functions).

"""
Deposit / Holdback Policy

Tier resolution, first match wins:

    1. DO_NOT_ADVANCE tag   -> holdback 100%, deposit 100%, no advance
    2. LATE tag             -> settings LATE percentages
    3. over typical         -> settings OVER_TYPICAL percentages
    4. otherwise            -> settings NORMAL percentages

Only live tags count. Expiry is checked against the clock at resolution
time, so a tag can go stale between two calls.

Deliver-now:

    deposit_min_cents = ceil(subtotal * deposit_min_pct)
    effective_cents   = floor(paid_now * (1 - holdback_pct))
    deliver_now       = min(effective_cents / price, requested)
    withheld          = max(0, paid_now / price - deliver_now)

Money is rounded to whole cents; quantities are left fractional.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from ..models import CustomerTag, Settings
from ..units import ceil_cents, floor_cents, pct_of
from balancey.time_utils import utcnow


TIER_NORMAL = "NORMAL"
TIER_OVER_TYPICAL = "OVER_TYPICAL"
TIER_LATE = "LATE"
TIER_DO_NOT_ADVANCE = "DO_NOT_ADVANCE"

TAG_LATE = "LATE"
TAG_DO_NOT_ADVANCE = "DO_NOT_ADVANCE"

TIER_LABELS = {
    TIER_DO_NOT_ADVANCE: "No Advance",
    TIER_LATE: "Late",
    TIER_OVER_TYPICAL: "Over Typical",
    TIER_NORMAL: "Normal",
}


@dataclass(frozen=True)
class PolicyResult:
    tier: str
    holdback_pct: float
    deposit_min_pct: float
    can_advance: bool
    tier_reason: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DeliverNowResult:
    deliver_now_grams: float
    deliver_now_units: float
    withheld_grams: float
    withheld_units: float
    deposit_min_cents: int
    meets_deposit_min: bool

    def to_dict(self) -> dict:
        return asdict(self)


def live_tag_names(tags: Iterable[CustomerTag], now: datetime | None = None) -> set[str]:
    now = now or utcnow()
    return {t.tag for t in tags if t.expires_at is None or t.expires_at > now}


def determine_policy(
    tags: Iterable[CustomerTag],
    is_over_typical: bool,
    settings: Settings,
    now: datetime | None = None,
) -> PolicyResult:
    active = live_tag_names(tags, now)

    if TAG_DO_NOT_ADVANCE in active:
        return PolicyResult(
            tier=TIER_DO_NOT_ADVANCE,
            holdback_pct=1.0,
            deposit_min_pct=1.0,
            can_advance=False,
            tier_reason="Customer marked as Do Not Advance",
        )

    if TAG_LATE in active:
        return PolicyResult(
            tier=TIER_LATE,
            holdback_pct=settings.holdback_pct_late,
            deposit_min_pct=settings.deposit_min_pct_late,
            can_advance=True,
            tier_reason="Customer has overdue balance",
        )

    if is_over_typical:
        return PolicyResult(
            tier=TIER_OVER_TYPICAL,
            holdback_pct=settings.holdback_pct_over_typical,
            deposit_min_pct=settings.deposit_min_pct_over_typical,
            can_advance=True,
            tier_reason="Order exceeds typical amount",
        )

    return PolicyResult(
        tier=TIER_NORMAL,
        holdback_pct=settings.holdback_pct_normal,
        deposit_min_pct=settings.deposit_min_pct_normal,
        can_advance=True,
        tier_reason="Standard terms",
    )


def compute_deliver_now(
    paid_now_cents: int,
    subtotal_cents: int,
    requested_grams: float,
    requested_units: float,
    price_per_gram_cents: float | None,
    price_per_unit_cents: float | None,
    policy: PolicyResult,
) -> DeliverNowResult:
    deposit_min_cents = ceil_cents(pct_of(subtotal_cents, policy.deposit_min_pct))
    meets_deposit_min = paid_now_cents >= deposit_min_cents

    if not policy.can_advance:
        return DeliverNowResult(
            deliver_now_grams=0,
            deliver_now_units=0,
            withheld_grams=requested_grams,
            withheld_units=requested_units,
            deposit_min_cents=deposit_min_cents,
            meets_deposit_min=meets_deposit_min,
        )

    # The holdback comes off the customer's own payment before it buys goods
    effective_cents = floor_cents(
        Decimal(paid_now_cents) * (Decimal(1) - Decimal(str(policy.holdback_pct)))
    )

    deliver_now_grams = 0
    deliver_now_units = 0
    if price_per_gram_cents and price_per_gram_cents > 0 and requested_grams > 0:
        deliver_now_grams = min(effective_cents / price_per_gram_cents, requested_grams)
    if price_per_unit_cents and price_per_unit_cents > 0 and requested_units > 0:
        deliver_now_units = min(effective_cents / price_per_unit_cents, requested_units)

    withheld_grams = 0
    withheld_units = 0
    if price_per_gram_cents and price_per_gram_cents > 0:
        withheld_grams = max(0, paid_now_cents / price_per_gram_cents - deliver_now_grams)
    if price_per_unit_cents and price_per_unit_cents > 0:
        withheld_units = max(0, paid_now_cents / price_per_unit_cents - deliver_now_units)

    return DeliverNowResult(
        deliver_now_grams=deliver_now_grams,
        deliver_now_units=deliver_now_units,
        withheld_grams=withheld_grams,
        withheld_units=withheld_units,
        deposit_min_cents=deposit_min_cents,
        meets_deposit_min=meets_deposit_min,
    )


def tier_display(tier: str) -> str:
    return TIER_LABELS.get(tier, tier)
