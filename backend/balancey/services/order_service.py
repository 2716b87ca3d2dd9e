# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Lifecycle Service

STATE MACHINE:
    OPEN -> PARTIAL -> CLOSED
    OPEN/PARTIAL -> CANCELLED

    Status is derived from the payment and fulfillment ledgers after every
    event. CLOSED and CANCELLED are terminal: nothing moves an order out of
    them. Only cancel_order and close_order set a status directly.

DESIGN PRINCIPLES:
- Items, payments and fulfillments are immutable ledger rows.
- Unit prices are snapshotted on the items at creation.
- The OrderPolicy snapshot is computed once at creation and never touched
  again, so it always shows the terms that applied when the order was placed.
- Each operation locks the order row and commits once; inventory effects
  happen in the same transaction, so a failure leaves nothing half-written.

INVENTORY:
- Creation reserves every item.
- The first PICKED_UP/DELIVERED event fulfills each item's full requested
  quantity (per-item partial delivery is not tracked); later completion
  events do not touch inventory again.
- Cancel and close release whatever is still reserved.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..errors import LifecycleError, NotFoundError, OrderBlockedError, ValidationError
from ..models import Fulfillment, Order, OrderItem, OrderPolicy, Payment, Settings
from ..units import default_due_date, round_half_up
from balancey.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .customer_service import VALID_FULFILLMENT_METHODS, get_customer, get_customer_tags
from .inventory_service import _ensure_product, _fulfill_locked, _release_locked, _reserve_locked
from .policy_service import (
    TIER_DO_NOT_ADVANCE,
    compute_deliver_now,
    determine_policy,
    tier_display,
)
from .settings_service import get_settings
from .statistics_service import compute_typical_order_stats, is_over_typical


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_OPEN = "OPEN"
ORDER_PARTIAL = "PARTIAL"
ORDER_CLOSED = "CLOSED"
ORDER_CANCELLED = "CANCELLED"

TERMINAL_STATUSES = {ORDER_CLOSED, ORDER_CANCELLED}


# =============================================================================
# PAYMENT METHODS / FULFILLMENT EVENTS (CONSTANTS)
# =============================================================================

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_OTHER = "OTHER"
VALID_PAYMENT_METHODS = {PAYMENT_CASH, PAYMENT_CARD, PAYMENT_OTHER}

EVENT_READY = "READY"
EVENT_OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
EVENT_PICKED_UP = "PICKED_UP"
EVENT_DELIVERED = "DELIVERED"
VALID_FULFILLMENT_EVENTS = {EVENT_READY, EVENT_OUT_FOR_DELIVERY, EVENT_PICKED_UP, EVENT_DELIVERED}

# Events that mean the goods physically left
COMPLETION_EVENTS = {EVENT_PICKED_UP, EVENT_DELIVERED}


# =============================================================================
# HELPERS
# =============================================================================

def _positive_or_none(value, field: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    return value


def _require_cents(value, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer")


def _line_total_cents(grams, units, price_per_gram, price_per_unit) -> int:
    total = Decimal(0)
    if grams and price_per_gram:
        total += Decimal(str(grams)) * Decimal(str(price_per_gram))
    if units and price_per_unit:
        total += Decimal(str(units)) * Decimal(str(price_per_unit))
    return round_half_up(total)


def _prepare_items(items: list[dict]) -> list[dict]:
    """
    Validate requested items and snapshot their prices.

    A missing unit price falls back to the product's current price.
    """
    if not items:
        raise ValidationError("order must have at least one item")

    prepared = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("each item must be an object")
        product_id = raw.get("product_id")
        if not product_id:
            raise ValidationError("product_id is required for each item")

        grams = _positive_or_none(raw.get("quantity_grams"), "quantity_grams")
        units = _positive_or_none(raw.get("quantity_units"), "quantity_units")
        if not grams and not units:
            raise ValidationError("each item needs a positive quantity_grams or quantity_units")

        product = _ensure_product(product_id, require_active=True)

        price_per_gram = raw.get("price_per_gram_cents")
        if price_per_gram is None and grams:
            price_per_gram = product.price_per_gram_cents
        price_per_unit = raw.get("price_per_unit_cents")
        if price_per_unit is None and units:
            price_per_unit = product.price_per_unit_cents

        if grams and price_per_gram is None:
            raise ValidationError(f"product {product_id} has no price per gram")
        if units and price_per_unit is None:
            raise ValidationError(f"product {product_id} has no price per unit")
        _positive_or_none(price_per_gram, "price_per_gram_cents")
        _positive_or_none(price_per_unit, "price_per_unit_cents")

        prepared.append({
            "product": product,
            "product_id": product_id,
            "quantity_grams": grams,
            "quantity_units": units,
            "price_per_gram_cents_snapshot": price_per_gram if grams else None,
            "price_per_unit_cents_snapshot": price_per_unit if units else None,
            "line_total_cents": _line_total_cents(grams, units, price_per_gram, price_per_unit),
        })
    return prepared


def _quantities_by_product(items) -> list[tuple[str, float, float]]:
    """Sum item quantities per product, sorted by product id for stable lock order."""
    totals: dict[str, list[float]] = defaultdict(lambda: [0.0, 0.0])
    for item in items:
        product_id = item["product_id"] if isinstance(item, dict) else item.product_id
        if product_id is None:
            continue
        grams = (item["quantity_grams"] if isinstance(item, dict) else item.quantity_grams) or 0
        units = (item["quantity_units"] if isinstance(item, dict) else item.quantity_units) or 0
        totals[product_id][0] += grams
        totals[product_id][1] += units
    return [(pid, g, u) for pid, (g, u) in sorted(totals.items())]


def _common_quality(prepared: list[dict]) -> str | None:
    qualities = {item["product"].quality for item in prepared}
    return qualities.pop() if len(qualities) == 1 else None


def _evaluate_policy(
    customer_id: str,
    prepared: list[dict],
    paid_now_cents: int,
    settings: Settings,
    *,
    quality: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Statistics, tier and deliver-now figures for a prospective order.

    Must run before the order itself is inserted so the order is not part
    of its own history.
    """
    total_grams = sum(i["quantity_grams"] or 0 for i in prepared)
    total_units = sum(i["quantity_units"] or 0 for i in prepared)
    subtotal = sum(i["line_total_cents"] for i in prepared)

    tags = get_customer_tags(customer_id, now=now)
    stats = compute_typical_order_stats(customer_id, quality=quality, settings=settings)
    over = is_over_typical(total_grams, stats)
    policy = determine_policy(tags, over, settings, now=now)

    avg_price_per_gram = round_half_up(Decimal(subtotal) / Decimal(str(total_grams))) if total_grams > 0 else None
    avg_price_per_unit = round_half_up(Decimal(subtotal) / Decimal(str(total_units))) if total_units > 0 else None

    deliver = compute_deliver_now(
        paid_now_cents,
        subtotal,
        total_grams,
        total_units,
        avg_price_per_gram,
        avg_price_per_unit,
        policy,
    )
    return {
        "stats": stats,
        "is_over_typical": over,
        "policy": policy,
        "deliver": deliver,
        "subtotal_cents": subtotal,
        "requested_grams": total_grams,
        "requested_units": total_units,
    }


def _lock_order(order_id: str) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _get_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _order_totals(order: Order) -> dict:
    subtotal, requested_grams, requested_units = (
        db.session.query(
            func.coalesce(func.sum(OrderItem.line_total_cents), 0),
            func.coalesce(func.sum(OrderItem.quantity_grams), 0),
            func.coalesce(func.sum(OrderItem.quantity_units), 0),
        )
        .filter(OrderItem.order_id == order.id)
        .one()
    )
    paid = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.order_id == order.id)
        .scalar()
    )
    delivered_grams, delivered_units = (
        db.session.query(
            func.coalesce(func.sum(Fulfillment.delivered_grams), 0),
            func.coalesce(func.sum(Fulfillment.delivered_units), 0),
        )
        .filter(Fulfillment.order_id == order.id)
        .one()
    )
    subtotal = int(subtotal)
    total = subtotal + order.delivery_fee_cents
    paid = int(paid)
    return {
        "subtotal_cents": subtotal,
        "order_total_cents": total,
        "paid_total_cents": paid,
        "balance_due_cents": total - paid,
        "requested_grams": float(requested_grams),
        "requested_units": float(requested_units),
        "delivered_grams": float(delivered_grams),
        "delivered_units": float(delivered_units),
    }


def derive_status(totals: dict) -> str:
    """
    Status from ledger totals.

    CLOSED when fully paid and fully delivered, PARTIAL once anything has
    been paid or delivered, otherwise OPEN.
    """
    fully_paid = totals["balance_due_cents"] <= 0
    fully_delivered = (
        totals["delivered_grams"] >= totals["requested_grams"]
        and totals["delivered_units"] >= totals["requested_units"]
    )
    if fully_paid and fully_delivered:
        return ORDER_CLOSED
    if totals["paid_total_cents"] > 0 or totals["delivered_grams"] > 0 or totals["delivered_units"] > 0:
        return ORDER_PARTIAL
    return ORDER_OPEN


def _recompute_status_locked(order: Order) -> str:
    if order.status in TERMINAL_STATUSES:
        return order.status
    db.session.flush()
    order.status = derive_status(_order_totals(order))
    return order.status


def _release_reservations_locked(order: Order) -> None:
    if order.inventory_fulfilled_at is not None:
        return
    for product_id, grams, units in _quantities_by_product(order.items):
        _release_locked(product_id, grams, units)


# =============================================================================
# ORDER CREATION
# =============================================================================

def quote_order(
    customer_id: str,
    items: list[dict],
    *,
    paid_now_cents: int = 0,
    delivery_fee_cents: int = 0,
) -> dict:
    """
    Preview of the terms an order would get, without writing anything.

    Uses the items' shared product quality (if any) as the history filter,
    exactly as create_order does, so the quoted tier is the one the order
    would freeze. The deposit minimum is taken on the item subtotal; the
    delivery fee only changes order_total_cents.
    """
    _require_cents(paid_now_cents, "paid_now_cents")
    _require_cents(delivery_fee_cents, "delivery_fee_cents")
    get_customer(customer_id)
    settings = get_settings()
    prepared = _prepare_items(items)
    result = _evaluate_policy(
        customer_id,
        prepared,
        paid_now_cents,
        settings,
        quality=_common_quality(prepared),
    )
    stats = result["stats"]
    policy = result["policy"]
    return {
        "tier": policy.tier,
        "tier_label": tier_display(policy.tier),
        "policy": policy.to_dict(),
        "stats": stats.to_dict() if stats else None,
        "is_over_typical": result["is_over_typical"],
        "deliver_now": result["deliver"].to_dict(),
        "subtotal_cents": result["subtotal_cents"],
        "order_total_cents": result["subtotal_cents"] + delivery_fee_cents,
        "requested_grams": result["requested_grams"],
        "requested_units": result["requested_units"],
    }


def create_order(
    *,
    customer_id: str,
    items: list[dict],
    fulfillment_method: str = "PICKUP",
    delivery_fee_cents: int = 0,
    initial_payment_cents: int | None = None,
    payment_method: str = PAYMENT_CASH,
    delivery_address: str | None = None,
    due_at: datetime | None = None,
    notes: str | None = None,
    allow_backorder: bool = False,
) -> Order:
    """
    Create an order: items, reservations, initial payment and policy snapshot.

    Args:
        customer_id: Ordering customer
        items: [{"product_id", "quantity_grams"?, "quantity_units"?,
                 "price_per_gram_cents"?, "price_per_unit_cents"?}]
        fulfillment_method: PICKUP or DELIVERY
        delivery_fee_cents: Added to the item subtotal
        initial_payment_cents: Amount paid up front (optional)
        payment_method: Method for the initial payment
        due_at: Due date; defaults to settings.default_due_days ahead when a
                balance remains
        allow_backorder: Reserve even when stock is short

    Raises:
        NotFoundError: Unknown customer or product
        ValidationError: Bad items, fee, payment or method
        InvariantViolation: Stock short and allow_backorder is False
        OrderBlockedError: DO_NOT_ADVANCE customer not paying in full while
                           settings.do_not_advance_blocks_order is on
    """
    if fulfillment_method not in VALID_FULFILLMENT_METHODS:
        raise ValidationError(f"Invalid fulfillment method: {fulfillment_method}")
    _require_cents(delivery_fee_cents, "delivery_fee_cents")
    paid_now = initial_payment_cents or 0
    _require_cents(paid_now, "initial_payment_cents")
    if paid_now > 0 and payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")

    def _op():
        get_customer(customer_id)
        settings = get_settings()
        now = utcnow()
        prepared = _prepare_items(items)

        evaluation = _evaluate_policy(
            customer_id,
            prepared,
            paid_now,
            settings,
            quality=_common_quality(prepared),
            now=now,
        )
        policy = evaluation["policy"]
        order_total = evaluation["subtotal_cents"] + delivery_fee_cents
        balance_due = order_total - paid_now

        if (
            policy.tier == TIER_DO_NOT_ADVANCE
            and settings.do_not_advance_blocks_order
            and balance_due > 0
        ):
            raise OrderBlockedError(
                "Customer is marked Do Not Advance; the order must be paid in full"
            )

        order = Order(
            customer_id=customer_id,
            created_at=now,
            status=ORDER_CLOSED if balance_due <= 0 else ORDER_OPEN,
            fulfillment_method=fulfillment_method,
            delivery_address=delivery_address,
            delivery_fee_cents=delivery_fee_cents,
            due_at=due_at or (default_due_date(settings.default_due_days, now=now) if balance_due > 0 else None),
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        for item in prepared:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=item["product_id"],
                quantity_grams=item["quantity_grams"],
                quantity_units=item["quantity_units"],
                price_per_gram_cents_snapshot=item["price_per_gram_cents_snapshot"],
                price_per_unit_cents_snapshot=item["price_per_unit_cents_snapshot"],
                line_total_cents=item["line_total_cents"],
            ))

        for product_id, grams, units in _quantities_by_product(prepared):
            _reserve_locked(product_id, grams, units, allow_backorder=allow_backorder)

        if paid_now > 0:
            db.session.add(Payment(
                order_id=order.id,
                created_at=now,
                amount_cents=paid_now,
                method=payment_method,
            ))

        stats = evaluation["stats"]
        deliver = evaluation["deliver"]
        db.session.add(OrderPolicy(
            order_id=order.id,
            computed_typical_grams=stats.median_grams if stats else None,
            computed_typical_units=None,
            computed_upper_normal_grams=stats.upper_normal if stats else None,
            computed_upper_normal_units=None,
            is_over_typical=evaluation["is_over_typical"],
            applied_tier=policy.tier,
            applied_holdback_pct=policy.holdback_pct,
            applied_deposit_min_pct=policy.deposit_min_pct,
            computed_deliver_now_grams=deliver.deliver_now_grams,
            computed_deliver_now_units=deliver.deliver_now_units,
            computed_withheld_grams=deliver.withheld_grams,
            computed_withheld_units=deliver.withheld_units,
        ))

        db.session.commit()
        return order

    return run_with_retry(_op)


def create_balance_carryover(customer_id: str, amount_cents: int, note: str | None = None) -> Order:
    """
    Open an order that only carries a balance brought over from elsewhere.

    The single item has no product, so no inventory is touched and the
    order contributes nothing to typical-order statistics.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")

    def _op():
        get_customer(customer_id)
        settings = get_settings()
        now = utcnow()
        order = Order(
            customer_id=customer_id,
            created_at=now,
            status=ORDER_OPEN,
            fulfillment_method="PICKUP",
            delivery_fee_cents=0,
            due_at=default_due_date(settings.default_due_days, now=now),
            notes=note or "Balance carryover from previous system",
        )
        db.session.add(order)
        db.session.flush()
        db.session.add(OrderItem(
            order_id=order.id,
            product_id=None,
            quantity_grams=0,
            quantity_units=0,
            line_total_cents=amount_cents,
        ))
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# LEDGER EVENTS
# =============================================================================

def add_payment(order_id: str, amount_cents: int, method: str = PAYMENT_CASH, note: str | None = None) -> Payment:
    """
    Record a payment and recompute the order status.

    Raises:
        ValidationError: amount not a positive integer, unknown method
        NotFoundError: order missing
        LifecycleError: order is CANCELLED
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Payment amount must be a positive integer")
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {sorted(VALID_PAYMENT_METHODS)}")

    def _op():
        order = _lock_order(order_id)
        if order.status == ORDER_CANCELLED:
            raise LifecycleError("Cannot add payment to a CANCELLED order")

        payment = Payment(
            order_id=order_id,
            created_at=utcnow(),
            amount_cents=amount_cents,
            method=method,
            note=note,
        )
        db.session.add(payment)
        _recompute_status_locked(order)

        db.session.commit()
        return payment

    return run_with_retry(_op)


def add_fulfillment(
    order_id: str,
    event: str,
    delivered_grams: float | None = None,
    delivered_units: float | None = None,
    note: str | None = None,
) -> Fulfillment:
    """
    Record a fulfillment event and recompute the order status.

    PICKED_UP / DELIVERED consume the order's reservations the first time
    one of them is recorded. Without explicit quantities they deliver the
    grams and units still owed.
    """
    if event not in VALID_FULFILLMENT_EVENTS:
        raise ValidationError(f"Invalid fulfillment event: {event}. Must be one of {sorted(VALID_FULFILLMENT_EVENTS)}")
    delivered_grams = _positive_or_none(delivered_grams, "delivered_grams")
    delivered_units = _positive_or_none(delivered_units, "delivered_units")

    def _op():
        order = _lock_order(order_id)
        if order.status == ORDER_CANCELLED:
            raise LifecycleError("Cannot add fulfillment to a CANCELLED order")

        now = utcnow()
        event_grams, event_units = delivered_grams, delivered_units
        if event in COMPLETION_EVENTS and event_grams is None and event_units is None:
            # No quantities given: the event hands over whatever is still owed
            totals = _order_totals(order)
            owed_grams = float(totals["requested_grams"]) - float(totals["delivered_grams"])
            owed_units = float(totals["requested_units"]) - float(totals["delivered_units"])
            event_grams = owed_grams if owed_grams > 0 else None
            event_units = owed_units if owed_units > 0 else None

        fulfillment = Fulfillment(
            order_id=order_id,
            created_at=now,
            delivered_grams=event_grams,
            delivered_units=event_units,
            event=event,
            note=note,
        )
        db.session.add(fulfillment)

        if event in COMPLETION_EVENTS and order.inventory_fulfilled_at is None:
            for product_id, grams, units in _quantities_by_product(order.items):
                _fulfill_locked(product_id, grams, units)
            order.inventory_fulfilled_at = now

        _recompute_status_locked(order)

        db.session.commit()
        return fulfillment

    return run_with_retry(_op)


def recompute_order_status(order_id: str) -> str:
    def _op():
        order = _lock_order(order_id)
        status = _recompute_status_locked(order)
        db.session.commit()
        return status

    return run_with_retry(_op)


def update_order_due_date(order_id: str, due_at: datetime | None) -> Order:
    """
    Move (or clear) an open order's due date.

    late_at is cleared when the new date is not yet past, so the late sweep
    can mark the order again if the new date is missed.
    """
    if due_at is not None and not isinstance(due_at, datetime):
        raise ValidationError("due_at must be a datetime")

    def _op():
        order = _lock_order(order_id)
        if order.status in TERMINAL_STATUSES:
            raise LifecycleError(f"Cannot change due date of order {order_id}: status is {order.status}")

        order.due_at = due_at
        if due_at is None or due_at > utcnow():
            order.late_at = None

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# TERMINATION
# =============================================================================

def cancel_order(order_id: str) -> Order:
    """Release the order's reservations and mark it CANCELLED."""
    def _op():
        order = _lock_order(order_id)
        if order.status in TERMINAL_STATUSES:
            raise LifecycleError(f"Cannot cancel order {order_id}: status is {order.status}")

        _release_reservations_locked(order)
        order.status = ORDER_CANCELLED

        db.session.commit()
        return order

    return run_with_retry(_op)


def close_order(order_id: str) -> Order:
    """
    Force an order CLOSED, writing off any balance still owed.

    Reservations for goods that never left are released.
    """
    def _op():
        order = _lock_order(order_id)
        if order.status in TERMINAL_STATUSES:
            raise LifecycleError(f"Cannot close order {order_id}: status is {order.status}")

        _release_reservations_locked(order)
        order.status = ORDER_CLOSED

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_order_details(order_id: str) -> dict:
    order = _get_order(order_id)
    totals = _order_totals(order)

    items = db.session.query(OrderItem).filter_by(order_id=order_id).all()
    payments = (
        db.session.query(Payment).filter_by(order_id=order_id)
        .order_by(Payment.created_at.asc()).all()
    )
    fulfillments = (
        db.session.query(Fulfillment).filter_by(order_id=order_id)
        .order_by(Fulfillment.created_at.asc()).all()
    )
    policy = db.session.get(OrderPolicy, order_id)

    data = order.to_dict()
    data.update({
        "items": [i.to_dict() for i in items],
        "payments": [p.to_dict() for p in payments],
        "fulfillments": [f.to_dict() for f in fulfillments],
        "policy": policy.to_dict() if policy else None,
        "subtotal_cents": totals["subtotal_cents"],
        "order_total_cents": totals["order_total_cents"],
        "paid_total_cents": totals["paid_total_cents"],
        "balance_due_cents": max(0, totals["balance_due_cents"]),
        "requested_total_grams": totals["requested_grams"],
        "requested_total_units": totals["requested_units"],
        "delivered_total_grams": totals["delivered_grams"],
        "delivered_total_units": totals["delivered_units"],
        "owed_remaining_grams": max(0, totals["requested_grams"] - totals["delivered_grams"]),
        "owed_remaining_units": max(0, totals["requested_units"] - totals["delivered_units"]),
    })
    return data


def get_customer_orders(customer_id: str) -> list[dict]:
    get_customer(customer_id)
    orders = (
        db.session.query(Order.id)
        .filter(Order.customer_id == customer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return [get_order_details(row.id) for row in orders]


def get_open_orders() -> list[dict]:
    orders = (
        db.session.query(Order.id)
        .filter(Order.status.in_([ORDER_OPEN, ORDER_PARTIAL]))
        .order_by(Order.created_at.asc())
        .all()
    )
    return [get_order_details(row.id) for row in orders]
