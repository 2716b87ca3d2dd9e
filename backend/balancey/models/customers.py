from __future__ import annotations

import uuid

from ..extensions import db
from balancey.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data.

    Customers are soft-deactivated (is_active=False) and never hard-deleted,
    except by the bulk data-clear.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active_name", "is_active", "name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    default_fulfillment_method = db.Column(db.String(16), nullable=True)  # PICKUP, DELIVERY
    default_address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
            "is_active": self.is_active,
            "default_fulfillment_method": self.default_fulfillment_method,
            "default_address": self.default_address,
            "notes": self.notes,
        }


class CustomerTag(db.Model):
    """
    Risk/relationship tag on a customer (LATE, DO_NOT_ADVANCE, VIP, ...).

    One row per (customer, tag): assigning a tag again updates the row in
    place. A row with expires_at in the past is stale and ignored by readers.
    """
    __tablename__ = "customer_tags"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "tag", name="uq_customer_tags_customer_tag"),
        db.Index("ix_customer_tags_tag", "tag"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False, index=True)

    tag = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("tags", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def is_live(self, now) -> bool:
        return self.expires_at is None or self.expires_at > now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "tag": self.tag,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "reason": self.reason,
        }
