# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import products_service
from ..validation import (
    NotFoundError,
    PersistenceError,
    ValidationError,
    optional_int,
    require_int,
    require_str,
)
from ..decorators import require_auth


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    List active products.

    Query params:
    - q: str (optional) - substring of name/SKU, or an exact barcode
    - limit: int (optional) - max rows (default 50)
    """
    query = request.args.get("q", "")
    limit = request.args.get("limit", default=50, type=int)
    try:
        products = products_service.search_products(query, limit=max(1, min(limit, 500)))
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Create a product. opening_stock > 0 is posted to the stock ledger.
    """
    try:
        data = request.get_json(silent=True) or {}
        product = products_service.create_product(
            sku=require_str(data, "sku", max_length=64),
            name=require_str(data, "name"),
            price_cents=require_int(data, "price_cents", minimum=0),
            user_id=g.current_user.id,
            barcode=(data.get("barcode") or None),
            cost_price_cents=optional_int(data, "cost_price_cents", minimum=0),
            min_stock_level=optional_int(data, "min_stock_level", minimum=0),
            opening_stock=optional_int(data, "opening_stock", minimum=0) or 0,
            description=data.get("description"),
        )
        return jsonify({"product": product.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PersistenceError as e:
        return jsonify({"error": str(e), "details": e.details}), 500
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.get("/barcode/<barcode>")
@require_auth
def get_product_by_barcode_route(barcode: str):
    product = products_service.get_product_by_barcode(barcode)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product.to_dict()}), 200


@products_bp.patch("/<int:product_id>/price")
@require_auth
def update_price_route(product_id: int):
    """Set the catalog list price."""
    try:
        data = request.get_json(silent=True) or {}
        price_cents = require_int(data, "price_cents", minimum=0)
        product = products_service.update_price(product_id, price_cents)
        return jsonify({"product": product.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update product price")
        return jsonify({"error": "Internal server error"}), 500
