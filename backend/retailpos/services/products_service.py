# Overview: Catalog lookups, product creation and catalog price updates.

from __future__ import annotations

import logging

from sqlalchemy import or_

from ..extensions import db
from ..models import Product
from ..validation import NotFoundError, ValidationError, validate_price_cents
from .auth_service import resolve_acting_user
from .concurrency import begin_immediate, primary_write, run_with_retry
from . import ledger_service

logger = logging.getLogger(__name__)

OPENING_STOCK_REFERENCE = "OPENING"


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_product_by_barcode(barcode: str) -> Product | None:
    return db.session.query(Product).filter_by(barcode=barcode.strip()).first()


def search_products(query: str, limit: int = 50) -> list[Product]:
    """Case-insensitive substring match on name or SKU, exact match on barcode."""
    q = db.session.query(Product).filter(Product.is_active.is_(True))
    term = (query or "").strip()
    if term:
        like = f"%{term}%"
        q = q.filter(or_(
            Product.name.ilike(like),
            Product.sku.ilike(like),
            Product.barcode == term,
        ))
    return q.order_by(Product.name.asc()).limit(limit).all()


def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int,
    user_id: int | None,
    barcode: str | None = None,
    cost_price_cents: int | None = None,
    min_stock_level: int | None = None,
    opening_stock: int = 0,
    description: str | None = None,
) -> Product:
    """
    Create a catalog product.

    Opening stock is posted as an "in" movement, never written directly,
    so stock_quantity always equals the ledger sum.
    """
    validate_price_cents(price_cents)
    if cost_price_cents is not None:
        validate_price_cents(cost_price_cents, field="cost_price_cents")
    if opening_stock < 0:
        raise ValidationError("opening_stock cannot be negative")
    user = resolve_acting_user(user_id) if opening_stock > 0 else None

    def _op():
        begin_immediate()
        if db.session.query(Product).filter_by(sku=sku).first():
            raise ValidationError(f"SKU '{sku}' already exists")
        if barcode and db.session.query(Product).filter_by(barcode=barcode).first():
            raise ValidationError(f"Barcode '{barcode}' already exists")

        product = Product(
            sku=sku,
            name=name,
            barcode=barcode or None,
            price_cents=price_cents,
            cost_price_cents=cost_price_cents,
            min_stock_level=min_stock_level,
            description=description,
            stock_quantity=0,
            is_active=True,
        )
        with primary_write("create product"):
            db.session.add(product)
            db.session.flush()

        if opening_stock > 0:
            ledger_service.post_stock_movement(
                product_id=product.id,
                movement_type=ledger_service.MOVEMENT_IN,
                quantity=opening_stock,
                reference=OPENING_STOCK_REFERENCE,
                notes="Opening stock",
                user_id=user.id,
            )

        db.session.commit()
        return product

    return run_with_retry(_op)


def apply_price(product_id: int, price_cents: int) -> Product:
    """Set the catalog list price. Does not commit."""
    validate_price_cents(price_cents)
    product = get_product(product_id)
    if product.price_cents != price_cents:
        logger.info(
            "Catalog price for product %s changed: %s -> %s",
            product.id, product.price_cents, price_cents,
        )
        product.price_cents = price_cents
    return product


def update_price(product_id: int, price_cents: int) -> Product:
    """Set the catalog list price used by future cart additions."""
    validate_price_cents(price_cents)

    def _op():
        product = apply_price(product_id, price_cents)
        db.session.commit()
        return product

    return run_with_retry(_op)
