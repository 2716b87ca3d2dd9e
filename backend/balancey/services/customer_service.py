# Overview: Service-layer operations for customers, risk tags, balances and the late sweep.

"""
Customer Balance & Tag Aggregator

DESIGN PRINCIPLES:
- Balance is derived: sum over OPEN/PARTIAL orders of max(0, total - paid).
  It is never stored on the customer.
- One tag row per (customer, tag), guarded by a unique constraint.
  Assigning a tag again updates that row in place (upsert).
- The late sweep is idempotent: late_at is set with a conditional UPDATE
  (only where still NULL) and LATE tags are ensured/removed, so running it
  twice, or twice at once, converges to the same state.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Customer, CustomerTag, Order, OrderItem, Payment
from balancey.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry
from .statistics_service import compute_typical_order_stats


TAG_LATE = "LATE"
TAG_DO_NOT_ADVANCE = "DO_NOT_ADVANCE"
TAG_VIP = "VIP"
TAG_RELIABLE = "RELIABLE"
TAG_NEW = "NEW"
VALID_TAGS = {TAG_LATE, TAG_DO_NOT_ADVANCE, TAG_VIP, TAG_RELIABLE, TAG_NEW}

FULFILLMENT_PICKUP = "PICKUP"
FULFILLMENT_DELIVERY = "DELIVERY"
VALID_FULFILLMENT_METHODS = {FULFILLMENT_PICKUP, FULFILLMENT_DELIVERY}

# Orders that still carry a balance
OUTSTANDING_STATUSES = ("OPEN", "PARTIAL")

CUSTOMER_FIELDS = {"name", "default_fulfillment_method", "default_address", "notes", "is_active"}


# =============================================================================
# CUSTOMERS
# =============================================================================

def _validate_customer_fields(fields: dict) -> None:
    unknown = set(fields) - CUSTOMER_FIELDS
    if unknown:
        raise ValidationError(f"Unknown customer fields: {', '.join(sorted(unknown))}")
    if "name" in fields and not str(fields["name"] or "").strip():
        raise ValidationError("name cannot be blank")
    method = fields.get("default_fulfillment_method")
    if method is not None and method not in VALID_FULFILLMENT_METHODS:
        raise ValidationError(f"Invalid fulfillment method: {method}")


def get_customer(customer_id: str) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def create_customer(
    *,
    name: str,
    default_fulfillment_method: str | None = None,
    default_address: str | None = None,
    notes: str | None = None,
) -> Customer:
    """Create a customer and tag them NEW."""
    _validate_customer_fields({
        "name": name,
        "default_fulfillment_method": default_fulfillment_method,
    })

    def _op():
        customer = Customer(
            name=name.strip(),
            created_at=utcnow(),
            is_active=True,
            default_fulfillment_method=default_fulfillment_method,
            default_address=default_address,
            notes=notes,
        )
        db.session.add(customer)
        db.session.flush()
        _upsert_tag(customer.id, TAG_NEW, reason="New customer")
        db.session.commit()
        return customer

    return run_with_retry(_op)


def update_customer(customer_id: str, updates: dict) -> Customer:
    _validate_customer_fields(updates)

    def _op():
        customer = get_customer(customer_id)
        for key, value in updates.items():
            setattr(customer, key, value.strip() if key == "name" else value)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def deactivate_customer(customer_id: str) -> Customer:
    """Soft delete; history and balances are kept."""
    return update_customer(customer_id, {"is_active": False})


def list_customers(*, include_inactive: bool = False) -> list[Customer]:
    q = db.session.query(Customer)
    if not include_inactive:
        q = q.filter(Customer.is_active.is_(True))
    return q.order_by(Customer.name.asc()).all()


# =============================================================================
# TAGS
# =============================================================================

def _validate_tag(tag: str) -> None:
    if tag not in VALID_TAGS:
        raise ValidationError(f"Invalid tag: {tag}. Must be one of {sorted(VALID_TAGS)}")


def _upsert_tag(
    customer_id: str,
    tag: str,
    *,
    reason: str | None = None,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> CustomerTag:
    now = now or utcnow()
    record = lock_for_update(
        db.session.query(CustomerTag).filter_by(customer_id=customer_id, tag=tag)
    ).first()
    if record is None:
        record = CustomerTag(customer_id=customer_id, tag=tag)
        db.session.add(record)
    record.created_at = now
    record.reason = reason
    record.expires_at = expires_at
    db.session.flush()
    return record


def _ensure_live_tag(customer_id: str, tag: str, *, reason: str, now: datetime) -> bool:
    """Insert or revive a tag, leaving an already-live one untouched."""
    record = lock_for_update(
        db.session.query(CustomerTag).filter_by(customer_id=customer_id, tag=tag)
    ).first()
    if record is not None and record.is_live(now):
        return False
    _upsert_tag(customer_id, tag, reason=reason, now=now)
    return True


def add_customer_tag(
    customer_id: str,
    tag: str,
    reason: str | None = None,
    expires_at: datetime | None = None,
) -> CustomerTag:
    """
    Assign a tag, replacing any previous record of the same tag.

    Upsert keyed by (customer_id, tag); a concurrent insert of the same pair
    trips the unique constraint and the operation is replayed as an update.
    """
    _validate_tag(tag)
    if expires_at is not None and expires_at <= utcnow():
        raise ValidationError("expires_at must be in the future")

    def _op():
        get_customer(customer_id)
        record = _upsert_tag(customer_id, tag, reason=reason, expires_at=expires_at)
        db.session.commit()
        return record

    return run_with_retry(_op, retry_on=(IntegrityError,))


def remove_customer_tag(customer_id: str, tag: str) -> bool:
    _validate_tag(tag)

    def _op():
        get_customer(customer_id)
        deleted = (
            db.session.query(CustomerTag)
            .filter_by(customer_id=customer_id, tag=tag)
            .delete(synchronize_session=False)
        )
        db.session.commit()
        return deleted > 0

    return run_with_retry(_op)


def get_customer_tags(
    customer_id: str,
    *,
    include_expired: bool = False,
    now: datetime | None = None,
) -> list[CustomerTag]:
    now = now or utcnow()
    tags = (
        db.session.query(CustomerTag)
        .filter_by(customer_id=customer_id)
        .order_by(CustomerTag.created_at.asc())
        .all()
    )
    if include_expired:
        return tags
    return [t for t in tags if t.is_live(now)]


# =============================================================================
# BALANCES
# =============================================================================

def order_balances_query():
    """
    Query yielding (Order, total_cents, paid_cents) rows.

    total = sum(line totals) + delivery fee; paid = sum(payments).
    """
    items_sq = (
        db.session.query(
            OrderItem.order_id.label("order_id"),
            func.sum(OrderItem.line_total_cents).label("subtotal"),
        )
        .group_by(OrderItem.order_id)
        .subquery()
    )
    paid_sq = (
        db.session.query(
            Payment.order_id.label("order_id"),
            func.sum(Payment.amount_cents).label("paid"),
        )
        .group_by(Payment.order_id)
        .subquery()
    )
    return (
        db.session.query(
            Order,
            (func.coalesce(items_sq.c.subtotal, 0) + Order.delivery_fee_cents).label("total"),
            func.coalesce(paid_sq.c.paid, 0).label("paid"),
        )
        .outerjoin(items_sq, items_sq.c.order_id == Order.id)
        .outerjoin(paid_sq, paid_sq.c.order_id == Order.id)
    )


def balance_due_cents(customer_id: str) -> int:
    rows = order_balances_query().filter(
        Order.customer_id == customer_id,
        Order.status.in_(OUTSTANDING_STATUSES),
    ).all()
    return sum(max(0, int(total) - int(paid)) for _order, total, paid in rows)


def get_customer_with_balance(customer_id: str) -> dict:
    customer = get_customer(customer_id)
    tags = get_customer_tags(customer_id)
    stats = compute_typical_order_stats(customer_id)

    last_order_at, order_count = (
        db.session.query(func.max(Order.created_at), func.count(Order.id))
        .filter(Order.customer_id == customer_id)
        .one()
    )

    data = customer.to_dict()
    data.update({
        "balance_due_cents": balance_due_cents(customer_id),
        "tags": [t.to_dict() for t in tags],
        "typical_grams": stats.median_grams if stats else None,
        "upper_normal_grams": stats.upper_normal if stats else None,
        "last_activity_at": to_utc_z(last_order_at),
        "is_late": any(t.tag == TAG_LATE for t in tags),
        "order_count": int(order_count or 0),
    })
    return data


def list_customers_with_balances(*, include_inactive: bool = False) -> list[dict]:
    """Customer list for the UI. Runs the late sweep first."""
    update_late_statuses()
    return [
        get_customer_with_balance(c.id)
        for c in list_customers(include_inactive=include_inactive)
    ]


# =============================================================================
# LATE SWEEP
# =============================================================================

def update_late_statuses(now: datetime | None = None) -> dict:
    """
    Mark overdue orders late and keep LATE tags in step with them.

    An order is overdue when it is OPEN/PARTIAL, its due_at is in the past
    and it still has a positive balance. Its late_at is stamped once and its
    customer gets a live LATE tag. Customers with no overdue order lose any
    LATE tag.

    Returns counts: {"orders_marked_late", "customers_tagged", "tags_cleared"}.
    """
    now = now or utcnow()

    def _op():
        rows = order_balances_query().filter(
            Order.status.in_(OUTSTANDING_STATUSES),
            Order.due_at.isnot(None),
            Order.due_at < now,
        ).order_by(Order.created_at.asc()).all()

        overdue_since: dict[str, datetime] = {}
        orders_marked_late = 0
        for order, total, paid in rows:
            if int(total) - int(paid) <= 0:
                continue
            overdue_since.setdefault(order.customer_id, order.created_at)
            if order.late_at is None:
                orders_marked_late += (
                    db.session.query(Order)
                    .filter(Order.id == order.id, Order.late_at.is_(None))
                    .update({Order.late_at: now}, synchronize_session=False)
                )

        customers_tagged = 0
        for customer_id, since in overdue_since.items():
            reason = f"Overdue order from {since.date().isoformat()}"
            if _ensure_live_tag(customer_id, TAG_LATE, reason=reason, now=now):
                customers_tagged += 1

        stale = db.session.query(CustomerTag).filter(CustomerTag.tag == TAG_LATE)
        if overdue_since:
            stale = stale.filter(CustomerTag.customer_id.notin_(list(overdue_since)))
        tags_cleared = stale.delete(synchronize_session=False)

        db.session.commit()
        return {
            "orders_marked_late": orders_marked_late,
            "customers_tagged": customers_tagged,
            "tags_cleared": tags_cleared,
        }

    result = run_with_retry(_op, retry_on=(IntegrityError,))
    if any(result.values()):
        current_app.logger.info(
            "late sweep: %(orders_marked_late)d orders marked late, "
            "%(customers_tagged)d customers tagged, %(tags_cleared)d tags cleared",
            result,
        )
    return result
