"""
Customer balances, tag upserts and the late sweep.
"""

from datetime import timedelta

import pytest

from balancey.errors import NotFoundError, ValidationError
from balancey.models import CustomerTag, Order
from balancey.services import customer_service, order_service
from balancey.time_utils import utcnow


def _overdue_order(customer, product, grams=5, **kwargs):
    return order_service.create_order(
        customer_id=customer.id,
        items=[{"product_id": product.id, "quantity_grams": grams}],
        due_at=utcnow() - timedelta(days=1),
        **kwargs,
    )


def _tag_names(customer):
    return sorted(t.tag for t in customer_service.get_customer_tags(customer.id))


# =============================================================================
# CUSTOMERS
# =============================================================================

def test_new_customer_gets_new_tag(make_customer):
    customer = make_customer("  Dana  ")
    assert customer.name == "Dana"
    assert _tag_names(customer) == ["NEW"]


def test_create_customer_validation(db_session):
    with pytest.raises(ValidationError):
        customer_service.create_customer(name="   ")
    with pytest.raises(ValidationError):
        customer_service.create_customer(name="Sam", default_fulfillment_method="DRONE")


def test_deactivate_hides_customer(make_customer):
    customer = make_customer()
    customer_service.deactivate_customer(customer.id)

    assert customer_service.list_customers() == []
    assert [c.id for c in customer_service.list_customers(include_inactive=True)] == [customer.id]


def test_unknown_customer(db_session):
    with pytest.raises(NotFoundError):
        customer_service.get_customer("missing")


# =============================================================================
# TAGS
# =============================================================================

def test_tag_upsert_keeps_one_row(make_customer, db_session):
    customer = make_customer()

    customer_service.add_customer_tag(customer.id, "VIP", reason="first")
    customer_service.add_customer_tag(customer.id, "VIP", reason="second")

    rows = db_session.query(CustomerTag).filter_by(customer_id=customer.id, tag="VIP").all()
    assert len(rows) == 1
    assert rows[0].reason == "second"


def test_tag_expiry(make_customer):
    customer = make_customer()
    expires = utcnow() + timedelta(hours=1)
    customer_service.add_customer_tag(customer.id, "RELIABLE", expires_at=expires)

    assert "RELIABLE" in _tag_names(customer)
    later = expires + timedelta(seconds=1)
    live = customer_service.get_customer_tags(customer.id, now=later)
    assert "RELIABLE" not in [t.tag for t in live]
    everything = customer_service.get_customer_tags(customer.id, include_expired=True, now=later)
    assert "RELIABLE" in [t.tag for t in everything]


def test_tag_validation(make_customer):
    customer = make_customer()
    with pytest.raises(ValidationError):
        customer_service.add_customer_tag(customer.id, "GOLD")
    with pytest.raises(ValidationError):
        customer_service.add_customer_tag(customer.id, "VIP", expires_at=utcnow() - timedelta(minutes=1))


def test_remove_tag(make_customer):
    customer = make_customer()
    assert customer_service.remove_customer_tag(customer.id, "NEW") is True
    assert customer_service.remove_customer_tag(customer.id, "NEW") is False
    assert _tag_names(customer) == []


# =============================================================================
# BALANCES
# =============================================================================

def test_balance_counts_only_open_and_partial(make_customer, make_product, make_order):
    customer = make_customer()
    product = make_product(price_per_gram_cents=1000)

    make_order(customer, product, 2)                        # OPEN, owes 2000
    partial = make_order(customer, product, 3)              # owes 3000
    order_service.add_payment(partial.id, 1000)             # PARTIAL, owes 2000
    make_order(customer, product, 4, paid=True)             # CLOSED
    cancelled = make_order(customer, product, 5)
    order_service.cancel_order(cancelled.id)                # CANCELLED

    assert customer_service.balance_due_cents(customer.id) == 4000


def test_overpayment_does_not_go_negative(make_customer, make_product, make_order):
    customer = make_customer()
    product = make_product(price_per_gram_cents=1000)
    owing = make_order(customer, product, 1)
    overpaid = make_order(customer, product, 1)
    order_service.add_payment(overpaid.id, 5000)

    assert order_service.get_order_details(overpaid.id)["status"] == "PARTIAL"
    assert customer_service.balance_due_cents(customer.id) == 1000
    assert order_service.get_order_details(owing.id)["balance_due_cents"] == 1000


def test_customer_with_balance_summary(make_customer, make_product, make_order, history):
    customer = make_customer()
    product = make_product()
    history(customer, product, [7, 7, 7])
    make_order(customer, product, 2)

    data = customer_service.get_customer_with_balance(customer.id)

    assert data["balance_due_cents"] == 2000
    assert data["order_count"] == 4
    assert data["typical_grams"] == 7
    assert data["upper_normal_grams"] == 9
    assert data["is_late"] is False
    assert data["last_activity_at"].endswith("Z")
    assert [t["tag"] for t in data["tags"]] == ["NEW"]


# =============================================================================
# LATE SWEEP
# =============================================================================

def test_sweep_marks_overdue_orders_and_tags_customer(make_customer, make_product, db_session):
    customer = make_customer()
    product = make_product()
    order = _overdue_order(customer, product)

    result = customer_service.update_late_statuses()

    assert result["orders_marked_late"] == 1
    assert result["customers_tagged"] == 1
    assert "LATE" in _tag_names(customer)
    assert db_session.get(Order, order.id).late_at is not None


def test_sweep_is_idempotent(make_customer, make_product, db_session):
    customer = make_customer()
    product = make_product()
    order = _overdue_order(customer, product)

    customer_service.update_late_statuses()
    first_late_at = db_session.get(Order, order.id).late_at

    result = customer_service.update_late_statuses()

    assert result == {"orders_marked_late": 0, "customers_tagged": 0, "tags_cleared": 0}
    db_session.expire_all()
    assert db_session.get(Order, order.id).late_at == first_late_at
    assert db_session.query(CustomerTag).filter_by(customer_id=customer.id, tag="LATE").count() == 1


def test_sweep_ignores_paid_and_not_yet_due_orders(make_customer, make_product, make_order):
    customer = make_customer()
    product = make_product(price_per_gram_cents=1000)
    overdue_but_paid = _overdue_order(customer, product, grams=1)
    order_service.add_payment(overdue_but_paid.id, 1000)   # PARTIAL with zero balance
    make_order(customer, product, 1)                       # due in 7 days

    result = customer_service.update_late_statuses()

    assert result["orders_marked_late"] == 0
    assert "LATE" not in _tag_names(customer)


def test_sweep_clears_late_tag_once_paid(make_customer, make_product):
    customer = make_customer()
    product = make_product(price_per_gram_cents=1000)
    order = _overdue_order(customer, product, grams=1)
    customer_service.update_late_statuses()
    assert "LATE" in _tag_names(customer)

    order_service.add_payment(order.id, 1000)
    result = customer_service.update_late_statuses()

    assert result["tags_cleared"] == 1
    assert "LATE" not in _tag_names(customer)


def test_sweep_removes_manual_late_tag_without_overdue_orders(make_customer):
    customer = make_customer()
    customer_service.add_customer_tag(customer.id, "LATE", reason="manual")

    customer_service.update_late_statuses()

    assert "LATE" not in _tag_names(customer)


def test_customer_list_runs_sweep(make_customer, make_product):
    customer = make_customer()
    product = make_product()
    _overdue_order(customer, product)

    listed = customer_service.list_customers_with_balances()

    assert listed[0]["is_late"] is True
