# Overview: Receipt payloads built from persisted sales.

from __future__ import annotations

from dataclasses import dataclass

from ..models import Sale
from ..time_utils import to_utc_z
from . import ledger_service


@dataclass(frozen=True)
class ReceiptLineItem:
    name: str
    sku: str
    unit_price_cents: int
    quantity: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "sku": self.sku,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "total_cents": self.total_cents,
        }


@dataclass(frozen=True)
class Receipt:
    sale_id: str
    reference: str
    status: str
    created_at: str | None
    customer_name: str
    lines: tuple[ReceiptLineItem, ...]
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    payment_method: str
    received_cents: int
    change_cents: int

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "reference": self.reference,
            "status": self.status,
            "created_at": self.created_at,
            "customer_name": self.customer_name,
            "lines": [line.to_dict() for line in self.lines],
            "item_count": self.item_count,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "received_cents": self.received_cents,
            "change_cents": self.change_cents,
        }


def build_receipt(sale: Sale) -> Receipt:
    """Line names/SKUs come from the catalog; prices from what was charged."""
    lines = tuple(
        ReceiptLineItem(
            name=item.product.name if item.product else "Unknown",
            sku=item.product.sku if item.product else "",
            unit_price_cents=item.unit_price_cents,
            quantity=item.quantity,
            total_cents=item.total_cents,
        )
        for item in sale.items
    )
    return Receipt(
        sale_id=sale.id,
        reference=ledger_service.sale_reference(sale.id),
        status=sale.status,
        created_at=to_utc_z(sale.created_at),
        customer_name=sale.customer_name,
        lines=lines,
        subtotal_cents=sale.subtotal_cents,
        tax_cents=sale.tax_cents,
        total_cents=sale.total_cents,
        payment_method=sale.payment_method,
        received_cents=sale.received_cents,
        change_cents=sale.change_cents,
    )
