# Overview: Flask API routes for products and their inventory ledger.

# backend/balancey/routes/products.py
"""
Product and inventory routes.

Direct stock changes go through adjustments (RESTOCK / WASTE / CORRECTION);
reservations and fulfillments only happen through orders.
"""
from flask import Blueprint, request

from ..errors import ValidationError
from ..models import Product
from ..services import inventory_service
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_product,
    parse_bool_arg,
    require_json_object,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "quality",
        "sell_mode",
        "price_per_gram_cents",
        "unit_name",
        "price_per_unit_cents",
        "is_active",
    },
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products with inventory and available stock.

    Query params:
    - include_inactive: bool (optional)
    """
    include_inactive = parse_bool_arg(request.args.get("include_inactive"))
    return {"items": inventory_service.list_products_with_inventory(include_inactive=include_inactive)}


@products_bp.post("")
def create_product():
    patch = validate_payload(
        model=Product,
        payload=request.get_json(silent=True),
        policy=PRODUCT_POLICY,
        partial=False,
    )
    enforce_rules_product(patch)
    patch.pop("is_active", None)
    product = inventory_service.create_product(**patch)
    return inventory_service.get_product_with_inventory(product.id), 201


@products_bp.get("/<product_id>")
def get_product(product_id: str):
    return inventory_service.get_product_with_inventory(product_id)


@products_bp.patch("/<product_id>")
def update_product(product_id: str):
    patch = validate_payload(
        model=Product,
        payload=request.get_json(silent=True),
        policy=PRODUCT_POLICY,
        partial=True,
    )
    enforce_rules_product(patch)
    inventory_service.update_product(product_id, patch)
    return inventory_service.get_product_with_inventory(product_id)


@products_bp.get("/<product_id>/available")
def get_available(product_id: str):
    return inventory_service.get_available(product_id)


@products_bp.post("/<product_id>/adjustments")
def adjust_inventory(product_id: str):
    """
    Record a stock adjustment.

    Body: {"type": "RESTOCK"|"WASTE"|"CORRECTION", "grams_delta"?: number,
           "units_delta"?: number, "note"?: str}
    """
    payload = require_json_object(request.get_json(silent=True))
    adjustment = inventory_service.adjust_inventory(
        product_id,
        payload.get("type"),
        grams_delta=_number(payload, "grams_delta"),
        units_delta=_number(payload, "units_delta"),
        note=payload.get("note") or "",
    )
    return {
        "adjustment": adjustment.to_dict(),
        "product": inventory_service.get_product_with_inventory(product_id),
    }, 201


@products_bp.get("/<product_id>/adjustments")
def list_adjustments(product_id: str):
    limit = request.args.get("limit", default=200, type=int)
    rows = inventory_service.list_inventory_adjustments(product_id, limit=max(1, min(limit, 1000)))
    return {"items": [r.to_dict() for r in rows]}


def _number(payload: dict, key: str) -> float:
    value = payload.get(key, 0)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key} must be a number")
    return value
