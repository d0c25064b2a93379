"""
Sales Service - checkout, void and sales history.

Checkout and void each run as ONE database transaction:
- Primary writes (sale header, sale items, status change) either all land
  or the transaction is rolled back and PersistenceError is raised.
- Peripheral writes (each stock movement, loyalty accrual, customer totals)
  run in their own SAVEPOINT. A failing one is rolled back alone, logged and
  skipped; the sale still completes. This favors the sale record over
  perfectly consistent secondary effects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Sale, SaleItem, StockMovement, TERMINAL_SALE_STATUSES
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from .auth_service import resolve_acting_user
from .cart_service import Cart
from .concurrency import begin_immediate, best_effort, lock_for_update, primary_write, run_with_retry
from .customers_service import WALK_IN, CustomerRef, RegisteredCustomer
from . import customers_service
from . import ledger_service
from . import products_service

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "card", "mobile", "bank_transfer", "other")


@dataclass
class CheckoutResult:
    success: bool
    sale: Sale
    sale_items: list[SaleItem]
    skipped_writes: list[str] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "sale": self.sale.to_dict(),
            "sale_items": [item.to_dict() for item in self.sale_items],
            "skipped_writes": self.skipped_writes,
            "replayed": self.replayed,
        }


@dataclass
class VoidResult:
    sale: Sale
    movements: list[StockMovement]
    skipped_writes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "movements": [m.to_dict() for m in self.movements],
            "skipped_writes": self.skipped_writes,
        }


def checkout(
    cart: Cart,
    *,
    user_id: int | None,
    customer: CustomerRef | None = None,
    payment_method: str = "cash",
    received_cents: int | None = None,
    idempotency_key: str | None = None,
    persist_price_overrides: bool = False,
) -> CheckoutResult:
    """
    Turn a cart into a completed sale.

    - received_cents of None or 0 means exact tender (received = total).
    - change_cents = received - total and may be negative (underpaid is
      recorded, not blocked).
    - An idempotency_key already used by a sale returns that sale unchanged.
    - persist_price_overrides writes the cart's overridden prices to the
      catalog in the same transaction as the sale.
    """
    user = resolve_acting_user(user_id)

    if cart.is_empty():
        raise ValidationError("Cannot checkout an empty cart")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    if received_cents is not None and received_cents < 0:
        raise ValidationError("received_cents cannot be negative")

    customer = customer or WALK_IN
    lines = cart.items
    subtotal = cart.subtotal_cents()
    tax = cart.tax_cents()
    total = cart.total_cents()
    # 0 is treated like None: exact tender.
    received = total if not received_cents else received_cents
    change = received - total

    def _op():
        begin_immediate()

        if idempotency_key:
            existing = db.session.query(Sale).filter_by(idempotency_key=idempotency_key).first()
            if existing is not None:
                logger.info("Checkout replay for idempotency key %s -> sale %s", idempotency_key, existing.id)
                db.session.commit()
                return CheckoutResult(True, existing, list(existing.items), replayed=True)

        now = utcnow()
        with primary_write("record sale"):
            sale = Sale(
                customer_id=customer.id,
                customer_name=customer.name,
                customer_phone=customer.phone,
                customer_email=customer.email,
                subtotal_cents=subtotal,
                tax_cents=tax,
                total_cents=total,
                payment_method=payment_method,
                received_cents=received,
                change_cents=change,
                status="completed",
                user_id=user.id,
                idempotency_key=idempotency_key,
                created_at=now,
                updated_at=now,
            )
            db.session.add(sale)
            for line in lines:
                db.session.add(SaleItem(
                    sale=sale,
                    product_id=line.product.id,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    total_cents=line.total_cents,
                ))
            db.session.flush()

        if persist_price_overrides:
            with primary_write("update catalog prices"):
                for product_id, price in cart.price_overrides().items():
                    products_service.apply_price(product_id, price)
                db.session.flush()

        reference = ledger_service.sale_reference(sale.id)
        skipped = []
        for line in lines:
            with best_effort("stock movement", sale_id=sale.id, product_id=line.product.id) as write:
                ledger_service.post_stock_movement(
                    product_id=line.product.id,
                    movement_type=ledger_service.MOVEMENT_OUT,
                    quantity=line.quantity,
                    reference=reference,
                    notes=f"Sold to {customer.name}",
                    sale_id=sale.id,
                    user_id=user.id,
                )
            if not write.ok:
                skipped.append(f"stock_movement:{line.product.id}")

        if isinstance(customer, RegisteredCustomer):
            skipped.extend(_apply_customer_effects(customer, sale, user.id))

        with primary_write("commit sale"):
            db.session.commit()

        logger.info(
            "Sale %s completed: %d lines, total=%d cents, change=%d cents",
            reference, len(lines), total, change,
        )
        if skipped:
            logger.error("Sale %s completed with skipped writes: %s", reference, ", ".join(skipped))
        return CheckoutResult(True, sale, list(sale.items), skipped_writes=skipped)

    return run_with_retry(_op)


def _apply_customer_effects(customer: RegisteredCustomer, sale: Sale, user_id: int) -> list[str]:
    skipped = []
    with best_effort("customer purchase totals", sale_id=sale.id, customer_id=customer.id) as write:
        customers_service.record_purchase(customer.id, sale.total_cents)
    if not write.ok:
        skipped.append("customer_totals")

    if customer.earns_loyalty and current_app.config.get("LOYALTY_ENABLED", True):
        points = customers_service.loyalty_points_for(sale.total_cents)
        with best_effort("loyalty accrual", sale_id=sale.id, customer_id=customer.id) as write:
            customers_service.accrue_loyalty(
                customer_id=customer.id,
                points=points,
                user_id=user_id,
                sale_id=sale.id,
                description=f"Earned from sale {ledger_service.sale_reference(sale.id)}",
            )
        if not write.ok:
            skipped.append("loyalty")
    return skipped


def void_sale(sale_id: str, *, user_id: int | None) -> VoidResult:
    """
    Cancel a sale.

    - cancelled (or other terminal) sales are rejected; nothing is written.
    - completed sales get one "in" movement per item for the full quantity,
      reference VOID-<short id>, regardless of the original movements.
    - pending sales flip to cancelled without touching stock.
    """
    user = resolve_acting_user(user_id)

    def _op():
        begin_immediate()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale not found")

        if sale.status == "cancelled":
            raise ValidationError("Sale already cancelled")
        if sale.status in TERMINAL_SALE_STATUSES:
            raise ValidationError(f"Cannot void a {sale.status} sale")

        movements = []
        skipped = []
        if sale.status == "completed":
            reference = ledger_service.void_reference(sale.id)
            for item in sale.items:
                with best_effort("stock restore", sale_id=sale.id, product_id=item.product_id) as write:
                    movements.append(ledger_service.post_stock_movement(
                        product_id=item.product_id,
                        movement_type=ledger_service.MOVEMENT_IN,
                        quantity=item.quantity,
                        reference=reference,
                        notes=f"Stock restored from voided sale #{sale.short_id}",
                        sale_id=sale.id,
                        user_id=user.id,
                    ))
                if not write.ok:
                    skipped.append(f"stock_movement:{item.product_id}")

        previous_status = sale.status
        with primary_write("cancel sale"):
            sale.status = "cancelled"
            sale.updated_at = utcnow()
            db.session.commit()

        logger.info(
            "Sale %s voided (was %s): %d movements restored",
            sale.short_id, previous_status, len(movements),
        )
        return VoidResult(sale, movements, skipped)

    return run_with_retry(_op)


def get_sale(sale_id: str) -> Sale:
    sale = (
        db.session.query(Sale)
        .options(selectinload(Sale.items).selectinload(SaleItem.product))
        .filter_by(id=sale_id)
        .first()
    )
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    *,
    status: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
) -> list[Sale]:
    """Newest first. since/until are inclusive bounds on created_at."""
    q = db.session.query(Sale).options(selectinload(Sale.items))
    if status:
        q = q.filter(Sale.status == status)
    if since is not None:
        q = q.filter(Sale.created_at >= since)
    if until is not None:
        q = q.filter(Sale.created_at <= until)
    return q.order_by(Sale.created_at.desc()).limit(limit).all()


def list_sale_movements(sale_id: str) -> list[StockMovement]:
    """Every movement tied to the sale (SALE-, VOID- and EDIT- entries)."""
    get_sale(sale_id)
    return ledger_service.list_movements(sale_id=sale_id, limit=10_000)
