# Overview: Post-checkout sale editing and its stock reconciliation.

"""
Sale editing.

A SaleEditSession moves viewing -> editing -> (saved | cancelled) -> viewing.
Edits happen in an in-memory buffer; nothing is written until save().

On save the buffer is reconciled against the snapshot taken by begin(),
never against the full original amounts:

    removed line           -> delete SaleItem, "in" movement for its full quantity
    quantity changed       -> diff = original - edited
                              diff > 0: "in" diff   (goods came back)
                              diff < 0: "out" -diff (more goods left)
                              SaleItem quantity/total updated
    unchanged              -> nothing

All movements carry reference EDIT-<short id>. Totals are recomputed with
the sale's original effective tax rate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from ..extensions import db
from ..models import Sale, SaleItem
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError
from .auth_service import resolve_acting_user
from .concurrency import begin_immediate, best_effort, lock_for_update, primary_write, run_with_retry
from . import ledger_service
from . import sales_service

logger = logging.getLogger(__name__)

VIEWING = "viewing"
EDITING = "editing"


@dataclass(frozen=True)
class EditLine:
    item_id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @classmethod
    def from_item(cls, item: SaleItem) -> "EditLine":
        return cls(
            item_id=item.id,
            product_id=item.product_id,
            product_name=item.product.name if item.product else f"Product {item.product_id}",
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        )

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }


@dataclass(frozen=True)
class StockAdjustment:
    item_id: int
    product_id: int
    product_name: str
    movement_type: str
    quantity: int

    @property
    def notes(self) -> str:
        verb = "Returned" if self.movement_type == ledger_service.MOVEMENT_IN else "Added"
        return f"Sale edit: {verb} {self.quantity} x {self.product_name}"


@dataclass
class EditPlan:
    deletions: list[EditLine] = field(default_factory=list)
    updates: list[EditLine] = field(default_factory=list)
    adjustments: list[StockAdjustment] = field(default_factory=list)
    subtotal_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.deletions or self.updates)

    def to_dict(self) -> dict:
        return {
            "deleted_item_ids": [line.item_id for line in self.deletions],
            "updated_items": [line.to_dict() for line in self.updates],
            "adjustments": [
                {
                    "product_id": adj.product_id,
                    "type": adj.movement_type,
                    "quantity": adj.quantity,
                }
                for adj in self.adjustments
            ],
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def recompute_tax(new_subtotal_cents: int, original_subtotal_cents: int, original_tax_cents: int) -> int:
    """new_subtotal * (original_tax / original_subtotal), half-up; 0 when there was no subtotal."""
    if original_subtotal_cents <= 0:
        return 0
    numerator = new_subtotal_cents * original_tax_cents
    return (numerator + original_subtotal_cents // 2) // original_subtotal_cents


def plan_edit(
    original: list[EditLine],
    edited: list[EditLine],
    *,
    original_subtotal_cents: int,
    original_tax_cents: int,
) -> EditPlan:
    """Pure reconciliation of an edited buffer against the pre-edit snapshot."""
    edited_by_id = {line.item_id: line for line in edited if line.quantity > 0}
    plan = EditPlan()

    for before in original:
        after = edited_by_id.get(before.item_id)
        if after is None:
            plan.deletions.append(before)
            plan.adjustments.append(StockAdjustment(
                item_id=before.item_id,
                product_id=before.product_id,
                product_name=before.product_name,
                movement_type=ledger_service.MOVEMENT_IN,
                quantity=before.quantity,
            ))
            continue

        diff = before.quantity - after.quantity
        if diff == 0:
            continue
        plan.updates.append(after)
        plan.adjustments.append(StockAdjustment(
            item_id=before.item_id,
            product_id=before.product_id,
            product_name=before.product_name,
            movement_type=ledger_service.MOVEMENT_IN if diff > 0 else ledger_service.MOVEMENT_OUT,
            quantity=abs(diff),
        ))

    original_ids = {line.item_id for line in original}
    plan.subtotal_cents = sum(
        line.total_cents for line in edited_by_id.values() if line.item_id in original_ids
    )
    plan.tax_cents = recompute_tax(plan.subtotal_cents, original_subtotal_cents, original_tax_cents)
    plan.total_cents = plan.subtotal_cents + plan.tax_cents
    return plan


class SaleEditSession:
    """Edit buffer for one sale, owned by one operator."""

    def __init__(self, sale_id: str, *, user_id: int | None):
        self.sale_id = sale_id
        self.user_id = user_id
        self.state = VIEWING
        self.last_outcome: str | None = None
        self.sale: Sale = sales_service.get_sale(sale_id)
        self._original: list[EditLine] = []
        self._edited: list[EditLine] = []
        self._original_subtotal = 0
        self._original_tax = 0

    def __contains__(self, item_id: int) -> bool:
        return any(line.item_id == item_id for line in self._edited)

    @property
    def edited_items(self) -> list[EditLine]:
        return list(self._edited)

    def _require_editing(self) -> None:
        if self.state != EDITING:
            raise ValidationError("Sale is not in edit mode")

    def _index_of(self, item_id: int) -> int:
        for index, line in enumerate(self._edited):
            if line.item_id == item_id:
                return index
        raise NotFoundError(f"Sale item {item_id} not in edit buffer")

    def begin(self) -> list[EditLine]:
        if self.state == EDITING:
            raise ValidationError("Sale is already being edited")
        if self.sale.status != "completed":
            raise ValidationError("Only completed sales can be edited")

        self._original = [EditLine.from_item(item) for item in self.sale.items]
        self._edited = list(self._original)
        self._original_subtotal = self.sale.subtotal_cents
        self._original_tax = self.sale.tax_cents
        self.state = EDITING
        return self.edited_items

    def change_quantity(self, item_id: int, delta: int) -> EditLine | None:
        """Clamped at 0; a line reaching 0 leaves the buffer."""
        self._require_editing()
        index = self._index_of(item_id)
        line = self._edited[index]
        new_quantity = max(0, line.quantity + delta)
        if new_quantity == 0:
            del self._edited[index]
            return None
        self._edited[index] = replace(line, quantity=new_quantity)
        return self._edited[index]

    def set_quantity(self, item_id: int, quantity: int) -> EditLine | None:
        self._require_editing()
        current = self._edited[self._index_of(item_id)]
        return self.change_quantity(item_id, quantity - current.quantity)

    def remove_item(self, item_id: int) -> None:
        """A sale keeps at least one line; voiding is the way to empty it."""
        self._require_editing()
        index = self._index_of(item_id)
        if len(self._edited) <= 1:
            raise ValidationError("Cannot remove all items. Void the sale instead.")
        del self._edited[index]

    def plan(self) -> EditPlan:
        self._require_editing()
        return plan_edit(
            self._original,
            self._edited,
            original_subtotal_cents=self._original_subtotal,
            original_tax_cents=self._original_tax,
        )

    def save(self) -> EditPlan:
        self._require_editing()
        user = resolve_acting_user(self.user_id)
        if not self._edited:
            raise ValidationError("Cannot remove all items. Void the sale instead.")

        plan = self.plan()
        _persist_plan(self.sale_id, plan, user_id=user.id)
        self._finish("saved")
        return plan

    def cancel(self) -> None:
        self._require_editing()
        self._finish("cancelled")

    def _finish(self, outcome: str) -> None:
        self._original = []
        self._edited = []
        self.state = VIEWING
        self.last_outcome = outcome
        # Canonical state comes from storage; concurrent writers win.
        db.session.expire_all()
        self.sale = sales_service.get_sale(self.sale_id)


def _persist_plan(sale_id: str, plan: EditPlan, *, user_id: int) -> None:
    def _op():
        begin_immediate()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found")
        if sale.status != "completed":
            raise ValidationError("Only completed sales can be edited")

        reference = ledger_service.edit_reference(sale.id)
        skipped = []
        for adj in plan.adjustments:
            with best_effort("stock adjustment", sale_id=sale.id, product_id=adj.product_id) as write:
                ledger_service.post_stock_movement(
                    product_id=adj.product_id,
                    movement_type=adj.movement_type,
                    quantity=adj.quantity,
                    reference=reference,
                    notes=adj.notes,
                    sale_id=sale.id,
                    user_id=user_id,
                )
            if not write.ok:
                skipped.append(f"stock_movement:{adj.product_id}")

        with primary_write("update sale items"):
            for line in plan.deletions:
                item = db.session.get(SaleItem, line.item_id)
                if item is not None and item.sale_id == sale.id:
                    db.session.delete(item)
            for line in plan.updates:
                item = db.session.get(SaleItem, line.item_id)
                if item is None or item.sale_id != sale.id:
                    raise NotFoundError(f"Sale item {line.item_id} not found")
                item.quantity = line.quantity
                item.total_cents = line.total_cents

            sale.subtotal_cents = plan.subtotal_cents
            sale.tax_cents = plan.tax_cents
            sale.total_cents = plan.total_cents
            sale.change_cents = sale.received_cents - plan.total_cents
            sale.updated_at = utcnow()
            db.session.flush()

        with primary_write("commit sale edit"):
            db.session.commit()

        logger.info(
            "Sale %s edited: %d removed, %d changed, %d movements, new total=%d cents",
            sale.short_id, len(plan.deletions), len(plan.updates), len(plan.adjustments), plan.total_cents,
        )
        if skipped:
            logger.error("Sale %s edit skipped writes: %s", sale.short_id, ", ".join(skipped))

    run_with_retry(_op)


def apply_edit(sale_id: str, quantities: dict[int, int], *, user_id: int | None) -> tuple[EditPlan, Sale]:
    """
    One-shot edit: set absolute quantities for the given item ids and save.

    Items not listed keep their quantity; quantity 0 removes the line.
    """
    resolve_acting_user(user_id)
    session = SaleEditSession(sale_id, user_id=user_id)
    session.begin()
    for item_id, quantity in quantities.items():
        if quantity < 0:
            raise ValidationError("quantity cannot be negative")
        if quantity == 0:
            session.remove_item(item_id)
        else:
            session.set_quantity(item_id, quantity)
    plan = session.save()
    return plan, session.sale
