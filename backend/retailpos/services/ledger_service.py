# Overview: Stock ledger; the only writer of Product.stock_quantity.

from __future__ import annotations

from ..extensions import db
from ..models import Product, StockMovement
from ..validation import NotFoundError, ValidationError
from .concurrency import lock_for_update
"""
Stock Ledger Invariants (authoritative)

- StockMovement rows are append-only: no updates, no deletes.
  Corrections are new rows (VOID-/EDIT- references).
- quantity is always positive; direction is carried by type:
    in  -> +quantity
    out -> -quantity
- Posting a movement applies its signed quantity to Product.stock_quantity
  in the same DB transaction. No floor: stock may go negative.
- Therefore, for every product:
    stock_quantity == SUM(in.quantity) - SUM(out.quantity)
  (see inventory_service.project_stock / get_ledger_quantity).
"""

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT)

SALE_PREFIX = "SALE"
VOID_PREFIX = "VOID"
EDIT_PREFIX = "EDIT"
BATCH_PREFIX = "BATCH"


def short_id(value) -> str:
    """First 8 hex characters of an id, uppercase (e.g. 'SALE-1A2B3C4D')."""
    return str(value).replace("-", "")[:8].upper()


def make_reference(prefix: str, sale_id: str) -> str:
    return f"{prefix}-{short_id(sale_id)}"


def sale_reference(sale_id: str) -> str:
    return make_reference(SALE_PREFIX, sale_id)


def void_reference(sale_id: str) -> str:
    return make_reference(VOID_PREFIX, sale_id)


def edit_reference(sale_id: str) -> str:
    return make_reference(EDIT_PREFIX, sale_id)


def batch_reference(batch_id: int) -> str:
    return f"{BATCH_PREFIX}-{batch_id:08d}"


def signed_quantity(movement_type: str, quantity: int) -> int:
    if movement_type == MOVEMENT_IN:
        return quantity
    if movement_type == MOVEMENT_OUT:
        return -quantity
    raise ValidationError(f"invalid movement type {movement_type!r}")


def post_stock_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    user_id: int,
    reference: str | None = None,
    notes: str | None = None,
    sale_id: str | None = None,
    batch_id: int | None = None,
) -> StockMovement:
    """
    Append a movement and apply it to the product's stock projection.

    Does not commit: callers own the transaction boundary.
    """
    if quantity is None or quantity <= 0:
        raise ValidationError("movement quantity must be positive")
    delta = signed_quantity(movement_type, quantity)

    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    movement = StockMovement(
        product_id=product_id,
        type=movement_type,
        quantity=quantity,
        reference=reference,
        notes=notes,
        sale_id=sale_id,
        batch_id=batch_id,
        user_id=user_id,
    )
    db.session.add(movement)

    # Applied as SQL so the increment happens in the database row.
    product.stock_quantity = Product.stock_quantity + delta

    db.session.flush()
    return movement


def list_movements(
    *,
    product_id: int | None = None,
    reference: str | None = None,
    sale_id: str | None = None,
    batch_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if reference is not None:
        q = q.filter(StockMovement.reference == reference)
    if sale_id is not None:
        q = q.filter(StockMovement.sale_id == sale_id)
    if batch_id is not None:
        q = q.filter(StockMovement.batch_id == batch_id)
    q = q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    return q.limit(limit).all()
