# Overview: Flask API routes for checkout, sale history, receipts, voids and edits.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import cart_service
from ..services import customers_service
from ..services import receipt_service
from ..services import sale_edit_service
from ..services import sales_service
from ..services.cart_service import CartLineRequest
from ..time_utils import parse_iso_datetime
from ..validation import (
    AuthenticationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    coerce_int,
    optional_int,
    require_int,
)
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _error_response(e: Exception, action: str):
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, AuthenticationError):
        return jsonify({"error": str(e)}), 401
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, PersistenceError):
        current_app.logger.error("Failed to %s: %s", action, e)
        return jsonify({"error": "Sale could not be saved", "details": e.details}), 500
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/checkout")
@require_auth
def checkout_route():
    """
    Check out a cart in one request.

    Body:
    {
        "items": [{"product_id": 1, "quantity": 2, "price_cents": 950}],
        "customer_id": 4,               (optional, omitted = walk-in)
        "payment_method": "cash",
        "received_cents": 2000,         (optional, 0/omitted = exact tender)
        "idempotency_key": "..."        (optional)
    }

    A price_cents differing from the catalog price is a price override.

    Header Idempotency-Key is accepted in place of idempotency_key.
    """
    try:
        data = request.get_json(silent=True) or {}
        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            return jsonify({"error": "items required"}), 400

        lines = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                return jsonify({"error": "each item must be an object"}), 400
            lines.append(CartLineRequest(
                product_id=require_int(raw, "product_id", minimum=1),
                quantity=require_int(raw, "quantity", minimum=1),
                price_cents=optional_int(raw, "price_cents", minimum=0),
            ))

        cart = cart_service.build_cart(lines)
        customer = customers_service.resolve_customer(optional_int(data, "customer_id", minimum=1))

        result = sales_service.checkout(
            cart,
            user_id=g.current_user.id,
            customer=customer,
            payment_method=data.get("payment_method") or "cash",
            received_cents=optional_int(data, "received_cents", minimum=0),
            idempotency_key=data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
            persist_price_overrides=current_app.config.get("PERSIST_PRICE_OVERRIDES", True),
        )
        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except Exception as e:
        return _error_response(e, "checkout")


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Sales history, newest first.

    Query params:
    - status: completed | pending | cancelled | refunded (optional)
    - since, until: ISO-8601 datetimes (optional, inclusive)
    - limit: int (optional, default 100)
    """
    try:
        limit = request.args.get("limit", default=100, type=int)
        sales = sales_service.list_sales(
            status=request.args.get("status"),
            since=parse_iso_datetime(request.args.get("since"), field="since"),
            until=parse_iso_datetime(request.args.get("until"), field="until"),
            limit=max(1, min(limit, 1000)),
        )
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@sales_bp.get("/<sale_id>")
@require_auth
def get_sale_route(sale_id: str):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@sales_bp.get("/<sale_id>/movements")
@require_auth
def sale_movements_route(sale_id: str):
    try:
        movements = sales_service.list_sale_movements(sale_id)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@sales_bp.get("/<sale_id>/receipt")
@require_auth
def receipt_route(sale_id: str):
    try:
        receipt = receipt_service.build_receipt(sales_service.get_sale(sale_id))
        return jsonify({"receipt": receipt.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@sales_bp.post("/<sale_id>/void")
@require_auth
def void_sale_route(sale_id: str):
    """Cancel a sale and restore its stock."""
    try:
        result = sales_service.void_sale(sale_id, user_id=g.current_user.id)
        return jsonify(result.to_dict()), 200
    except Exception as e:
        return _error_response(e, "void sale")


@sales_bp.post("/<sale_id>/edit")
@require_auth
def edit_sale_route(sale_id: str):
    """
    Edit line quantities of a completed sale.

    Body: {"items": [{"item_id": 12, "quantity": 2}, {"item_id": 13, "quantity": 0}]}

    Quantity 0 removes the line. Lines not listed are unchanged.
    """
    try:
        data = request.get_json(silent=True) or {}
        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            return jsonify({"error": "items required"}), 400

        quantities = {}
        for raw in raw_items:
            if not isinstance(raw, dict):
                return jsonify({"error": "each item must be an object"}), 400
            item_id = require_int(raw, "item_id", minimum=1)
            quantities[item_id] = coerce_int("quantity", raw.get("quantity"), minimum=0)

        plan, sale = sale_edit_service.apply_edit(sale_id, quantities, user_id=g.current_user.id)
        return jsonify({
            "sale": sale.to_dict(include_items=True),
            "changes": plan.to_dict(),
        }), 200

    except Exception as e:
        return _error_response(e, "edit sale")
