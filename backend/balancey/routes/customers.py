# Overview: Flask API routes for customers, tags, balances and the late sweep.

# backend/balancey/routes/customers.py
"""
Customer routes.

Balances and tag sets are derived on read; the customer list runs the late
sweep before it computes them.
"""
from flask import Blueprint, request

from ..models import Customer
from ..services import customer_service, order_service
from ..validation import (
    ModelValidationPolicy,
    coerce_datetime,
    parse_bool_arg,
    require_json_object,
    validate_payload,
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "default_fulfillment_method", "default_address", "notes"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers():
    """
    List customers with balances, tags and typical order size.

    Query params:
    - include_inactive: bool (optional)
    """
    include_inactive = parse_bool_arg(request.args.get("include_inactive"))
    return {"items": customer_service.list_customers_with_balances(include_inactive=include_inactive)}


@customers_bp.post("")
def create_customer():
    patch = validate_payload(
        model=Customer,
        payload=request.get_json(silent=True),
        policy=CUSTOMER_POLICY,
        partial=False,
    )
    customer = customer_service.create_customer(**patch)
    return customer_service.get_customer_with_balance(customer.id), 201


@customers_bp.get("/<customer_id>")
def get_customer(customer_id: str):
    return customer_service.get_customer_with_balance(customer_id)


@customers_bp.patch("/<customer_id>")
def update_customer(customer_id: str):
    patch = validate_payload(
        model=Customer,
        payload=request.get_json(silent=True),
        policy=CUSTOMER_POLICY,
        partial=True,
    )
    customer_service.update_customer(customer_id, patch)
    return customer_service.get_customer_with_balance(customer_id)


@customers_bp.post("/<customer_id>/deactivate")
def deactivate_customer(customer_id: str):
    customer = customer_service.deactivate_customer(customer_id)
    return customer.to_dict()


@customers_bp.get("/<customer_id>/balance")
def get_balance(customer_id: str):
    customer_service.get_customer(customer_id)
    return {
        "customer_id": customer_id,
        "balance_due_cents": customer_service.balance_due_cents(customer_id),
    }


# =============================================================================
# TAGS
# =============================================================================

@customers_bp.get("/<customer_id>/tags")
def list_tags(customer_id: str):
    customer_service.get_customer(customer_id)
    include_expired = parse_bool_arg(request.args.get("include_expired"))
    tags = customer_service.get_customer_tags(customer_id, include_expired=include_expired)
    return {"items": [t.to_dict() for t in tags]}


@customers_bp.post("/<customer_id>/tags")
def add_tag(customer_id: str):
    """
    Assign a tag (upsert).

    Body: {"tag": "LATE", "reason"?: str, "expires_at"?: ISO-8601}
    """
    payload = require_json_object(request.get_json(silent=True))
    tag = customer_service.add_customer_tag(
        customer_id,
        payload.get("tag"),
        reason=payload.get("reason"),
        expires_at=coerce_datetime("expires_at", payload.get("expires_at")),
    )
    return tag.to_dict(), 201


@customers_bp.delete("/<customer_id>/tags/<tag>")
def remove_tag(customer_id: str, tag: str):
    removed = customer_service.remove_customer_tag(customer_id, tag)
    return {"removed": removed}


# =============================================================================
# ORDERS / CARRYOVER
# =============================================================================

@customers_bp.get("/<customer_id>/orders")
def list_customer_orders(customer_id: str):
    return {"items": order_service.get_customer_orders(customer_id)}


@customers_bp.post("/<customer_id>/carryover")
def create_carryover(customer_id: str):
    """Body: {"amount_cents": int, "note"?: str}"""
    payload = require_json_object(request.get_json(silent=True))
    order = order_service.create_balance_carryover(
        customer_id,
        payload.get("amount_cents"),
        note=payload.get("note"),
    )
    return order_service.get_order_details(order.id), 201


@customers_bp.post("/sweep-late")
def sweep_late():
    return customer_service.update_late_statuses()
