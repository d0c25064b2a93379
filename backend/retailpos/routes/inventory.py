# Overview: Flask API routes for stock levels, the movement ledger and receiving batches.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import inventory_service
from ..services import ledger_service
from ..services.inventory_service import BatchLine
from ..validation import (
    AuthenticationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    optional_int,
    require_int,
)
from ..decorators import require_auth


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:product_id>")
@require_auth
def stock_level_route(product_id: int):
    """Stored stock quantity next to the ledger-derived one."""
    try:
        return jsonify(inventory_service.get_stock_level(product_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@inventory_bp.get("/<int:product_id>/movements")
@require_auth
def product_movements_route(product_id: int):
    limit = request.args.get("limit", default=200, type=int)
    try:
        inventory_service.get_stock_level(product_id)
        movements = ledger_service.list_movements(product_id=product_id, limit=max(1, min(limit, 1000)))
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    products = inventory_service.get_low_stock_products()
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@inventory_bp.post("/batches")
@require_auth
def receive_batch_route():
    """
    Receive stock.

    Body:
    {
        "supplier": "Acme",            (optional)
        "reference": "PO-1001",        (optional, defaults to BATCH-<id>)
        "notes": "...",                (optional)
        "lines": [{"product_id": 1, "quantity": 10, "unit_cost_cents": 250}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        raw_lines = data.get("lines")
        if not isinstance(raw_lines, list) or not raw_lines:
            return jsonify({"error": "lines required"}), 400

        lines = []
        for raw in raw_lines:
            if not isinstance(raw, dict):
                return jsonify({"error": "each line must be an object"}), 400
            lines.append(BatchLine(
                product_id=require_int(raw, "product_id", minimum=1),
                quantity=require_int(raw, "quantity", minimum=1),
                unit_cost_cents=optional_int(raw, "unit_cost_cents", minimum=0),
            ))

        batch = inventory_service.receive_stock_batch(
            lines=lines,
            user_id=g.current_user.id,
            supplier=data.get("supplier"),
            reference=data.get("reference"),
            notes=data.get("notes"),
        )
        return jsonify({"batch": batch.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AuthenticationError as e:
        return jsonify({"error": str(e)}), 401
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PersistenceError as e:
        return jsonify({"error": str(e), "details": e.details}), 500
    except Exception:
        current_app.logger.exception("Failed to receive stock batch")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/batches")
@require_auth
def list_batches_route():
    limit = request.args.get("limit", default=100, type=int)
    batches = inventory_service.list_stock_batches(limit=max(1, min(limit, 500)))
    return jsonify({"batches": [b.to_dict() for b in batches]}), 200


@inventory_bp.get("/batches/<int:batch_id>/movements")
@require_auth
def batch_movements_route(batch_id: int):
    try:
        movements = inventory_service.get_batch_movements(batch_id)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
