# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/balancey/services/inventory_service.py

from __future__ import annotations

from ..extensions import db
from ..errors import InvariantViolation, NotFoundError, ValidationError
from ..models import Inventory, InventoryAdjustment, Product
from balancey.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Ledger Invariants (authoritative)

Inventory model:
- One Inventory row per product holding on-hand and reserved counters for
  grams and units.
- available = on_hand - reserved; computed on read, never stored.

Operations:
- reserve:  reserved += qty            (orders promise stock)
- release:  reserved -= qty, >= 0      (cancelled/closed orders)
- fulfill:  on_hand -= qty, reserved -= qty, each >= 0  (goods leave)
- adjust:   on_hand += delta           (RESTOCK / WASTE / CORRECTION)

Business invariants:
- 0 <= reserved <= on_hand. A reservation past on-hand raises
  InvariantViolation unless the caller explicitly allows a backorder.
- An adjustment may not make on-hand or available negative.
- release/fulfill clamp at zero (a double release is harmless).

Audit:
- Every adjustment appends an InventoryAdjustment row before the counters
  change, inside the same DB transaction. Adjustments are append-only.

Atomicity:
- Each mutation locks the product's inventory row and runs under
  run_with_retry; the *_locked helpers do the work without committing so
  the order service can compose them into one transaction.
"""


ADJUST_RESTOCK = "RESTOCK"
ADJUST_WASTE = "WASTE"
ADJUST_CORRECTION = "CORRECTION"
VALID_ADJUSTMENT_TYPES = {ADJUST_RESTOCK, ADJUST_WASTE, ADJUST_CORRECTION}

# Float slack for gram/unit comparisons (0.1 + 0.2 != 0.3)
QUANTITY_EPSILON = 1e-9


def _exceeds(value: float, limit: float) -> bool:
    return value - limit > QUANTITY_EPSILON

QUALITY_REGULAR = "REGULAR"
QUALITY_PREMIUM = "PREMIUM"
VALID_QUALITIES = {QUALITY_REGULAR, QUALITY_PREMIUM}

SELL_BY_WEIGHT = "WEIGHT"
SELL_BY_UNIT = "UNIT"
SELL_BOTH = "BOTH"
VALID_SELL_MODES = {SELL_BY_WEIGHT, SELL_BY_UNIT, SELL_BOTH}

PRODUCT_FIELDS = {
    "name",
    "quality",
    "sell_mode",
    "price_per_gram_cents",
    "unit_name",
    "price_per_unit_cents",
    "is_active",
}


# =============================================================================
# PRODUCTS
# =============================================================================

def _ensure_product(product_id: str, *, require_active: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise ValidationError(f"Product {product_id} is inactive")
    return product


def _validate_product_fields(fields: dict) -> None:
    unknown = set(fields) - PRODUCT_FIELDS
    if unknown:
        raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")
    if "name" in fields and not str(fields["name"] or "").strip():
        raise ValidationError("name cannot be blank")
    if "quality" in fields and fields["quality"] not in VALID_QUALITIES:
        raise ValidationError(f"Invalid quality: {fields['quality']}")
    if "sell_mode" in fields and fields["sell_mode"] not in VALID_SELL_MODES:
        raise ValidationError(f"Invalid sell_mode: {fields['sell_mode']}")
    for key in ("price_per_gram_cents", "price_per_unit_cents"):
        if fields.get(key) is not None and fields[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def create_product(
    *,
    name: str,
    quality: str = QUALITY_REGULAR,
    sell_mode: str = SELL_BY_WEIGHT,
    price_per_gram_cents: float | None = None,
    unit_name: str | None = None,
    price_per_unit_cents: int | None = None,
) -> Product:
    """Create a product together with its zeroed inventory row."""
    fields = {
        "name": name,
        "quality": quality,
        "sell_mode": sell_mode,
        "price_per_gram_cents": price_per_gram_cents,
        "unit_name": unit_name,
        "price_per_unit_cents": price_per_unit_cents,
    }
    _validate_product_fields(fields)

    def _op():
        product = Product(**{**fields, "name": name.strip()}, is_active=True)
        db.session.add(product)
        db.session.flush()
        db.session.add(Inventory(
            product_id=product.id,
            on_hand_grams=0,
            reserved_grams=0,
            on_hand_units=0,
            reserved_units=0,
            updated_at=utcnow(),
        ))
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: str, updates: dict) -> Product:
    _validate_product_fields(updates)

    def _op():
        product = _ensure_product(product_id)
        for key, value in updates.items():
            setattr(product, key, value.strip() if key == "name" else value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def get_product(product_id: str) -> Product:
    return _ensure_product(product_id)


def list_products(*, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc()).all()


def get_inventory(product_id: str) -> Inventory:
    inventory = db.session.get(Inventory, product_id)
    if inventory is None:
        raise NotFoundError(f"Inventory for product {product_id} not found")
    return inventory


def get_available(product_id: str) -> dict:
    """Available stock (on_hand - reserved) for grams and units."""
    inventory = get_inventory(product_id)
    return {
        "product_id": product_id,
        "available_grams": inventory.available_grams,
        "available_units": inventory.available_units,
    }


def get_product_with_inventory(product_id: str) -> dict:
    product = _ensure_product(product_id)
    inventory = get_inventory(product_id)
    data = product.to_dict()
    data["inventory"] = inventory.to_dict()
    data["available_grams"] = inventory.available_grams
    data["available_units"] = inventory.available_units
    return data


def list_products_with_inventory(*, include_inactive: bool = False) -> list[dict]:
    return [
        get_product_with_inventory(p.id)
        for p in list_products(include_inactive=include_inactive)
    ]


# =============================================================================
# LEDGER OPERATIONS (composable, no commit)
# =============================================================================

def _lock_inventory(product_id: str) -> Inventory:
    inventory = lock_for_update(
        db.session.query(Inventory).filter_by(product_id=product_id)
    ).first()
    if inventory is None:
        raise NotFoundError(f"Inventory for product {product_id} not found")
    return inventory


def _check_quantities(grams: float, units: float) -> None:
    if grams < 0 or units < 0:
        raise ValidationError("quantities must be >= 0")


def _reserve_locked(product_id: str, grams: float, units: float, *, allow_backorder: bool = False) -> Inventory:
    _check_quantities(grams, units)
    inventory = _lock_inventory(product_id)

    new_reserved_grams = inventory.reserved_grams + grams
    new_reserved_units = inventory.reserved_units + units
    # Only the dimensions being reserved are checked; an existing backorder
    # in one dimension does not block the other.
    if not allow_backorder and (
        (grams > 0 and _exceeds(new_reserved_grams, inventory.on_hand_grams))
        or (units > 0 and _exceeds(new_reserved_units, inventory.on_hand_units))
    ):
        raise InvariantViolation(
            f"reservation exceeds on-hand stock for product {product_id}: "
            f"available {inventory.available_grams}g/{inventory.available_units}u, "
            f"requested {grams}g/{units}u"
        )

    inventory.reserved_grams = new_reserved_grams
    inventory.reserved_units = new_reserved_units
    inventory.updated_at = utcnow()
    db.session.flush()
    return inventory


def _release_locked(product_id: str, grams: float, units: float) -> Inventory:
    _check_quantities(grams, units)
    inventory = _lock_inventory(product_id)
    inventory.reserved_grams = max(0, inventory.reserved_grams - grams)
    inventory.reserved_units = max(0, inventory.reserved_units - units)
    inventory.updated_at = utcnow()
    db.session.flush()
    return inventory


def _fulfill_locked(product_id: str, grams: float, units: float) -> Inventory:
    _check_quantities(grams, units)
    inventory = _lock_inventory(product_id)
    inventory.on_hand_grams = max(0, inventory.on_hand_grams - grams)
    inventory.reserved_grams = max(0, inventory.reserved_grams - grams)
    inventory.on_hand_units = max(0, inventory.on_hand_units - units)
    inventory.reserved_units = max(0, inventory.reserved_units - units)
    inventory.updated_at = utcnow()
    db.session.flush()
    return inventory


def _validate_adjustment(adjustment_type: str, grams_delta: float, units_delta: float) -> None:
    if adjustment_type not in VALID_ADJUSTMENT_TYPES:
        raise ValidationError(
            f"Invalid adjustment type: {adjustment_type}. "
            f"Must be one of {sorted(VALID_ADJUSTMENT_TYPES)}"
        )
    if grams_delta == 0 and units_delta == 0:
        raise ValidationError("adjustment must change grams or units")
    if adjustment_type == ADJUST_RESTOCK and (grams_delta < 0 or units_delta < 0):
        raise ValidationError("RESTOCK adjustments must be positive")
    if adjustment_type == ADJUST_WASTE and (grams_delta > 0 or units_delta > 0):
        raise ValidationError("WASTE adjustments must be negative")


# =============================================================================
# LEDGER OPERATIONS (public, one transaction each)
# =============================================================================

def reserve_inventory(product_id: str, grams: float = 0, units: float = 0, *, allow_backorder: bool = False) -> Inventory:
    """
    Promise stock to an order.

    Raises InvariantViolation when reserved would exceed on-hand. Callers
    that accept backorders pass allow_backorder=True.
    """
    def _op():
        inventory = _reserve_locked(product_id, grams, units, allow_backorder=allow_backorder)
        db.session.commit()
        return inventory

    return run_with_retry(_op)


def release_inventory(product_id: str, grams: float = 0, units: float = 0) -> Inventory:
    """Give back reserved stock; clamps at zero."""
    def _op():
        inventory = _release_locked(product_id, grams, units)
        db.session.commit()
        return inventory

    return run_with_retry(_op)


def fulfill_inventory(product_id: str, grams: float = 0, units: float = 0) -> Inventory:
    """Goods leave the building: consume on-hand and the reservation together."""
    def _op():
        inventory = _fulfill_locked(product_id, grams, units)
        db.session.commit()
        return inventory

    return run_with_retry(_op)


def adjust_inventory(
    product_id: str,
    adjustment_type: str,
    grams_delta: float = 0,
    units_delta: float = 0,
    note: str = "",
) -> InventoryAdjustment:
    """
    Directly change on-hand stock (RESTOCK, WASTE, CORRECTION).

    The InventoryAdjustment audit row is written before the counters move.
    """
    _validate_adjustment(adjustment_type, grams_delta, units_delta)

    def _op():
        _ensure_product(product_id)
        inventory = _lock_inventory(product_id)

        new_on_hand_grams = inventory.on_hand_grams + grams_delta
        new_on_hand_units = inventory.on_hand_units + units_delta
        # Only reductions are checked; a restock may land below an existing backorder
        checks = []
        if grams_delta < 0:
            checks.append((new_on_hand_grams, inventory.reserved_grams))
        if units_delta < 0:
            checks.append((new_on_hand_units, inventory.reserved_units))
        for new_on_hand, reserved in checks:
            if _exceeds(0, new_on_hand):
                raise InvariantViolation("adjustment would make on-hand negative")
            if _exceeds(reserved, new_on_hand):
                raise InvariantViolation("adjustment would make available stock negative")
        new_on_hand_grams = max(0, new_on_hand_grams)
        new_on_hand_units = max(0, new_on_hand_units)

        adjustment = InventoryAdjustment(
            product_id=product_id,
            type=adjustment_type,
            grams_adjustment=grams_delta,
            units_adjustment=units_delta,
            note=(note or "").strip(),
            created_at=utcnow(),
        )
        db.session.add(adjustment)
        db.session.flush()

        inventory.on_hand_grams = new_on_hand_grams
        inventory.on_hand_units = new_on_hand_units
        inventory.updated_at = utcnow()

        db.session.commit()
        return adjustment

    return run_with_retry(_op)


def list_inventory_adjustments(product_id: str, *, limit: int = 200) -> list[InventoryAdjustment]:
    _ensure_product(product_id)
    return (
        db.session.query(InventoryAdjustment)
        .filter_by(product_id=product_id)
        .order_by(InventoryAdjustment.created_at.desc(), InventoryAdjustment.id.desc())
        .limit(limit)
        .all()
    )
