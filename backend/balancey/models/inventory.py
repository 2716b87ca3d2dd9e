from __future__ import annotations

import uuid

from ..extensions import db
from balancey.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Product master data.

    Sold by weight (price_per_gram_cents), by unit (price_per_unit_cents),
    or both. Prices here are current prices only; orders snapshot them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_quality_active", "quality", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = db.Column(db.String(255), nullable=False)
    quality = db.Column(db.String(16), nullable=False, default="REGULAR")  # REGULAR, PREMIUM
    sell_mode = db.Column(db.String(16), nullable=False, default="WEIGHT")  # WEIGHT, UNIT, BOTH

    # Fractional cents per gram are allowed (e.g. 1250.5 cents per 100g -> 12.505)
    price_per_gram_cents = db.Column(db.Float, nullable=True)
    unit_name = db.Column(db.String(64), nullable=True)
    price_per_unit_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    inventory = db.relationship("Inventory", uselist=False, back_populates="product")

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} quality={self.quality}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "quality": self.quality,
            "sell_mode": self.sell_mode,
            "price_per_gram_cents": self.price_per_gram_cents,
            "unit_name": self.unit_name,
            "price_per_unit_cents": self.price_per_unit_cents,
            "is_active": self.is_active,
        }


class Inventory(db.Model):
    """
    Per-product stock counters.

    Invariants (enforced by services/inventory_service.py):
    - 0 <= reserved <= on_hand for grams and units
    - available = on_hand - reserved, computed on read, never stored

    Only the inventory service mutates these rows.
    """
    __tablename__ = "inventory"

    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), primary_key=True)

    on_hand_grams = db.Column(db.Float, nullable=False, default=0)
    reserved_grams = db.Column(db.Float, nullable=False, default=0)
    on_hand_units = db.Column(db.Float, nullable=False, default=0)
    reserved_units = db.Column(db.Float, nullable=False, default=0)

    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", back_populates="inventory")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_grams(self) -> float:
        return self.on_hand_grams - self.reserved_grams

    @property
    def available_units(self) -> float:
        return self.on_hand_units - self.reserved_units

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "on_hand_grams": self.on_hand_grams,
            "reserved_grams": self.reserved_grams,
            "available_grams": self.available_grams,
            "on_hand_units": self.on_hand_units,
            "reserved_units": self.reserved_units,
            "available_units": self.available_units,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryAdjustment(db.Model):
    """
    Append-only audit row for direct on-hand changes.

    TYPES:
    - RESTOCK: goods received (deltas >= 0)
    - WASTE: spoilage/loss (deltas <= 0)
    - CORRECTION: count correction (either sign)

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.Index("ix_inv_adjustments_product_created", "product_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    grams_adjustment = db.Column(db.Float, nullable=False, default=0)
    units_adjustment = db.Column(db.Float, nullable=False, default=0)
    note = db.Column(db.String(255), nullable=False, default="")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "grams_adjustment": self.grams_adjustment,
            "units_adjustment": self.units_adjustment,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
