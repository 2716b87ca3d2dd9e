from __future__ import annotations

import uuid

from ..extensions import db
from balancey.time_utils import to_utc_z, utcnow


class Order(db.Model):
    """
    Credit order document.

    Status (OPEN, PARTIAL, CLOSED, CANCELLED) is derived from the payment
    and fulfillment ledgers by services/order_service.py; only cancel and
    close set it directly.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        db.Index("ix_orders_status_due", "status", "due_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)

    fulfillment_method = db.Column(db.String(16), nullable=False, default="PICKUP")
    delivery_address = db.Column(db.String(255), nullable=True)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    due_at = db.Column(db.DateTime, nullable=True)
    # Set once by the late sweep; never cleared
    late_at = db.Column(db.DateTime, nullable=True)
    # Set when a PICKED_UP/DELIVERED event consumed the reservations
    inventory_fulfilled_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
            "status": self.status,
            "fulfillment_method": self.fulfillment_method,
            "delivery_address": self.delivery_address,
            "delivery_fee_cents": self.delivery_fee_cents,
            "due_at": to_utc_z(self.due_at) if self.due_at else None,
            "late_at": to_utc_z(self.late_at) if self.late_at else None,
            "inventory_fulfilled_at": to_utc_z(self.inventory_fulfilled_at) if self.inventory_fulfilled_at else None,
            "notes": self.notes,
        }


class OrderItem(db.Model):
    """
    Line item. Immutable once created.

    Unit prices are snapshotted at order time so later price changes never
    touch historical orders. product_id is NULL for balance carryover lines.
    """
    __tablename__ = "order_items"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=True, index=True)

    quantity_grams = db.Column(db.Float, nullable=True)
    quantity_units = db.Column(db.Float, nullable=True)
    price_per_gram_cents_snapshot = db.Column(db.Float, nullable=True)
    price_per_unit_cents_snapshot = db.Column(db.Integer, nullable=True)
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", backref=db.backref("items", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity_grams": self.quantity_grams,
            "quantity_units": self.quantity_units,
            "price_per_gram_cents_snapshot": self.price_per_gram_cents_snapshot,
            "price_per_unit_cents_snapshot": self.price_per_unit_cents_snapshot,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Manually recorded payment. Immutable ledger row.

    METHODS: CASH, CARD, OTHER
    """
    __tablename__ = "payments"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
            "amount_cents": self.amount_cents,
            "method": self.method,
            "note": self.note,
        }


class Fulfillment(db.Model):
    """
    Fulfillment ledger row. Immutable.

    EVENTS: READY, OUT_FOR_DELIVERY, PICKED_UP, DELIVERED
    """
    __tablename__ = "fulfillments"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    delivered_grams = db.Column(db.Float, nullable=True)
    delivered_units = db.Column(db.Float, nullable=True)
    event = db.Column(db.String(32), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    order = db.relationship("Order", backref=db.backref("fulfillments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
            "delivered_grams": self.delivered_grams,
            "delivered_units": self.delivered_units,
            "event": self.event,
            "note": self.note,
        }


class OrderPolicy(db.Model):
    """
    Point-in-time policy snapshot, written once when the order is created.

    Never recomputed: it records which terms applied when the order was
    placed, even after the customer's tags, history or the settings change.
    """
    __tablename__ = "order_policies"

    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), primary_key=True)

    computed_typical_grams = db.Column(db.Float, nullable=True)
    computed_typical_units = db.Column(db.Float, nullable=True)
    computed_upper_normal_grams = db.Column(db.Float, nullable=True)
    computed_upper_normal_units = db.Column(db.Float, nullable=True)

    is_over_typical = db.Column(db.Boolean, nullable=False, default=False)
    applied_tier = db.Column(db.String(32), nullable=True)
    applied_holdback_pct = db.Column(db.Float, nullable=False)
    applied_deposit_min_pct = db.Column(db.Float, nullable=False)

    computed_deliver_now_grams = db.Column(db.Float, nullable=True)
    computed_deliver_now_units = db.Column(db.Float, nullable=True)
    computed_withheld_grams = db.Column(db.Float, nullable=True)
    computed_withheld_units = db.Column(db.Float, nullable=True)

    order = db.relationship("Order", backref=db.backref("policy", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "computed_typical_grams": self.computed_typical_grams,
            "computed_typical_units": self.computed_typical_units,
            "computed_upper_normal_grams": self.computed_upper_normal_grams,
            "computed_upper_normal_units": self.computed_upper_normal_units,
            "is_over_typical": self.is_over_typical,
            "applied_tier": self.applied_tier,
            "applied_holdback_pct": self.applied_holdback_pct,
            "applied_deposit_min_pct": self.applied_deposit_min_pct,
            "computed_deliver_now_grams": self.computed_deliver_now_grams,
            "computed_deliver_now_units": self.computed_deliver_now_units,
            "computed_withheld_grams": self.computed_withheld_grams,
            "computed_withheld_units": self.computed_withheld_units,
        }
