# Overview: Stock projection, drift reconciliation, low-stock and batch receiving.

"""
Inventory Projection (authoritative)

Strategy: direct mutation. ledger_service.post_stock_movement writes the
movement and adjusts Product.stock_quantity in one transaction; nothing else
writes stock_quantity. The formula below is the reference the stored value
must always agree with:

    stock_quantity = SUM(in.quantity) - SUM(out.quantity)

No clamping at zero. A product created with opening stock gets an "in"
movement, so the formula holds from the first row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from sqlalchemy import case, func

from ..extensions import db
from ..models import Product, StockBatch, StockMovement
from ..validation import NotFoundError, ValidationError
from .auth_service import resolve_acting_user
from .concurrency import begin_immediate, primary_write, run_with_retry
from . import ledger_service

logger = logging.getLogger(__name__)


def _movement_parts(movement) -> tuple[str, int]:
    if isinstance(movement, Mapping):
        return movement["type"], movement["quantity"]
    if isinstance(movement, tuple):
        return movement[0], movement[1]
    return movement.type, movement.quantity


def project_stock(movements: Iterable) -> int:
    """
    Pure reduction of a product's movements to its stock quantity.

    Accepts StockMovement rows, mappings with "type"/"quantity", or
    (type, quantity) tuples.
    """
    total = 0
    for movement in movements:
        movement_type, quantity = _movement_parts(movement)
        total += ledger_service.signed_quantity(movement_type, quantity)
    return total


def _ledger_sum_expression():
    return func.coalesce(
        func.sum(
            case(
                (StockMovement.type == ledger_service.MOVEMENT_IN, StockMovement.quantity),
                else_=-StockMovement.quantity,
            )
        ),
        0,
    )


def get_ledger_quantity(product_id: int) -> int:
    """Stock quantity recomputed from the ledger in SQL."""
    q = db.session.query(_ledger_sum_expression()).filter(
        StockMovement.product_id == product_id
    )
    return int(q.scalar() or 0)


def get_stock_level(product_id: int) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    ledger_qty = get_ledger_quantity(product_id)
    return {
        "product_id": product.id,
        "sku": product.sku,
        "stock_quantity": product.stock_quantity,
        "ledger_quantity": ledger_qty,
        "drift": product.stock_quantity - ledger_qty,
        "min_stock_level": product.min_stock_level,
        "is_low": _is_low(product),
    }


def _is_low(product: Product) -> bool:
    return product.min_stock_level is not None and product.stock_quantity <= product.min_stock_level


def reconcile_stock_quantities(*, fix: bool = False) -> list[dict]:
    """
    Compare every product's stored stock_quantity with its ledger sum.

    Returns the drifting products. With fix=True the stored value is
    overwritten with the ledger value (the ledger is authoritative).
    """
    ledger_rows = dict(
        db.session.query(StockMovement.product_id, _ledger_sum_expression())
        .group_by(StockMovement.product_id)
        .all()
    )

    drift = []
    for product in db.session.query(Product).order_by(Product.id).all():
        ledger_qty = int(ledger_rows.get(product.id, 0) or 0)
        if product.stock_quantity == ledger_qty:
            continue
        drift.append({
            "product_id": product.id,
            "sku": product.sku,
            "stock_quantity": product.stock_quantity,
            "ledger_quantity": ledger_qty,
        })
        if fix:
            logger.warning(
                "Repairing stock drift for product %s: stored=%s ledger=%s",
                product.id, product.stock_quantity, ledger_qty,
            )
            product.stock_quantity = ledger_qty

    if fix and drift:
        db.session.commit()
    return drift


def get_low_stock_products(limit: int = 200) -> list[Product]:
    """Active products at or below their minimum stock level."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.min_stock_level.isnot(None),
            Product.stock_quantity <= Product.min_stock_level,
        )
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .limit(limit)
        .all()
    )


@dataclass(frozen=True)
class BatchLine:
    product_id: int
    quantity: int
    unit_cost_cents: int | None = None


def receive_stock_batch(
    *,
    lines: list[BatchLine],
    user_id: int | None,
    supplier: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
) -> StockBatch:
    """
    Record a receiving batch: one StockBatch and one "in" movement per line.

    All-or-nothing: a receiving batch has no peripheral writes.
    """
    user = resolve_acting_user(user_id)

    if not lines:
        raise ValidationError("Cannot receive an empty batch")
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError("Batch line quantity must be positive")
        if line.unit_cost_cents is not None and line.unit_cost_cents < 0:
            raise ValidationError("unit_cost_cents cannot be negative")

    def _op():
        begin_immediate()

        products = {}
        for line in lines:
            product = db.session.get(Product, line.product_id)
            if product is None:
                raise NotFoundError(f"Product {line.product_id} not found")
            products[line.product_id] = product

        total_value = 0
        has_value = False
        for line in lines:
            cost = line.unit_cost_cents
            if cost is None:
                cost = products[line.product_id].cost_price_cents
            if cost is not None:
                has_value = True
                total_value += cost * line.quantity

        with primary_write("record stock batch"):
            batch = StockBatch(
                type=ledger_service.MOVEMENT_IN,
                reference=reference,
                supplier=supplier,
                notes=notes,
                status="completed",
                total_items=len(lines),
                total_quantity=sum(line.quantity for line in lines),
                total_value_cents=total_value if has_value else None,
                user_id=user.id,
            )
            db.session.add(batch)
            db.session.flush()

            if not batch.reference:
                batch.reference = ledger_service.batch_reference(batch.id)

            for line in lines:
                ledger_service.post_stock_movement(
                    product_id=line.product_id,
                    movement_type=ledger_service.MOVEMENT_IN,
                    quantity=line.quantity,
                    reference=batch.reference,
                    notes=f"Received from {supplier}" if supplier else "Stock received",
                    batch_id=batch.id,
                    user_id=user.id,
                )
                product = products[line.product_id]
                if line.unit_cost_cents is not None:
                    product.cost_price_cents = line.unit_cost_cents

        db.session.commit()
        logger.info("Received stock batch %s (%d lines)", batch.reference, len(lines))
        return batch

    return run_with_retry(_op)


def list_stock_batches(limit: int = 100) -> list[StockBatch]:
    return (
        db.session.query(StockBatch)
        .filter(StockBatch.type == ledger_service.MOVEMENT_IN)
        .order_by(StockBatch.created_at.desc(), StockBatch.id.desc())
        .limit(limit)
        .all()
    )


def get_batch_movements(batch_id: int) -> list[StockMovement]:
    """Movements of one batch; the label-printing input."""
    batch = db.session.get(StockBatch, batch_id)
    if batch is None:
        raise NotFoundError(f"Stock batch {batch_id} not found")
    return ledger_service.list_movements(batch_id=batch_id, limit=10_000)
