# Overview: Flask API routes for the order lifecycle; parses input and returns JSON responses.

# backend/balancey/routes/orders.py
"""
Order lifecycle routes.

State machine: OPEN -> PARTIAL -> CLOSED, and OPEN/PARTIAL -> CANCELLED.
Payments and fulfillments are append-only; status is recomputed by the
service after each one.
"""
from flask import Blueprint, request

from ..errors import ValidationError
from ..services import order_service
from ..validation import coerce_datetime, require_json_object

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
def list_open_orders():
    """OPEN and PARTIAL orders, oldest first."""
    return {"items": order_service.get_open_orders()}


@orders_bp.post("")
def create_order():
    """
    Create an order.

    Body:
    {
      "customer_id": str,
      "items": [{"product_id": str, "quantity_grams"?: number, "quantity_units"?: number,
                 "price_per_gram_cents"?: number, "price_per_unit_cents"?: int}],
      "fulfillment_method"?: "PICKUP"|"DELIVERY",
      "delivery_fee_cents"?: int,
      "initial_payment_cents"?: int,
      "payment_method"?: "CASH"|"CARD"|"OTHER",
      "delivery_address"?: str,
      "due_at"?: ISO-8601,
      "notes"?: str,
      "allow_backorder"?: bool
    }
    """
    payload = require_json_object(request.get_json(silent=True))
    order = order_service.create_order(
        customer_id=payload.get("customer_id"),
        items=payload.get("items") or [],
        fulfillment_method=payload.get("fulfillment_method") or "PICKUP",
        delivery_fee_cents=payload.get("delivery_fee_cents") or 0,
        initial_payment_cents=payload.get("initial_payment_cents"),
        payment_method=payload.get("payment_method") or order_service.PAYMENT_CASH,
        delivery_address=payload.get("delivery_address"),
        due_at=coerce_datetime("due_at", payload.get("due_at")),
        notes=payload.get("notes"),
        allow_backorder=payload.get("allow_backorder") is True,
    )
    return order_service.get_order_details(order.id), 201


@orders_bp.post("/quote")
def quote_order():
    """
    Preview tier, deposit minimum and deliver-now figures without saving.

    Body: {"customer_id", "items", "paid_now_cents"?, "delivery_fee_cents"?}
    """
    payload = require_json_object(request.get_json(silent=True))
    return order_service.quote_order(
        payload.get("customer_id"),
        payload.get("items") or [],
        paid_now_cents=payload.get("paid_now_cents") or 0,
        delivery_fee_cents=payload.get("delivery_fee_cents") or 0,
    )


@orders_bp.get("/<order_id>")
def get_order(order_id: str):
    return order_service.get_order_details(order_id)


@orders_bp.post("/<order_id>/payments")
def add_payment(order_id: str):
    """Body: {"amount_cents": int, "method"?: "CASH"|"CARD"|"OTHER", "note"?: str}"""
    payload = require_json_object(request.get_json(silent=True))
    payment = order_service.add_payment(
        order_id,
        payload.get("amount_cents"),
        method=payload.get("method") or order_service.PAYMENT_CASH,
        note=payload.get("note"),
    )
    return {
        "payment": payment.to_dict(),
        "order": order_service.get_order_details(order_id),
    }, 201


@orders_bp.post("/<order_id>/fulfillments")
def add_fulfillment(order_id: str):
    """Body: {"event": str, "delivered_grams"?: number, "delivered_units"?: number, "note"?: str}"""
    payload = require_json_object(request.get_json(silent=True))
    fulfillment = order_service.add_fulfillment(
        order_id,
        payload.get("event"),
        delivered_grams=payload.get("delivered_grams"),
        delivered_units=payload.get("delivered_units"),
        note=payload.get("note"),
    )
    return {
        "fulfillment": fulfillment.to_dict(),
        "order": order_service.get_order_details(order_id),
    }, 201


@orders_bp.patch("/<order_id>/due-date")
def update_due_date(order_id: str):
    """Body: {"due_at": ISO-8601 | null}"""
    payload = require_json_object(request.get_json(silent=True))
    if "due_at" not in payload:
        raise ValidationError("due_at is required (null clears it)")
    order_service.update_order_due_date(order_id, coerce_datetime("due_at", payload["due_at"]))
    return order_service.get_order_details(order_id)


@orders_bp.post("/<order_id>/cancel")
def cancel_order(order_id: str):
    order_service.cancel_order(order_id)
    return order_service.get_order_details(order_id)


@orders_bp.post("/<order_id>/close")
def close_order(order_id: str):
    order_service.close_order(order_id)
    return order_service.get_order_details(order_id)
