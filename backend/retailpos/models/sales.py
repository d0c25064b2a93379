from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z


SALE_STATUSES = ("pending", "completed", "cancelled", "refunded")
TERMINAL_SALE_STATUSES = ("cancelled", "refunded")


def _new_sale_id() -> str:
    return str(uuid.uuid4())


class Sale(db.Model):
    """
    Sale header.

    The customer fields are a snapshot taken at checkout; customer_id is NULL
    for walk-in sales. Only "completed" sales can be edited, and only voiding a
    "completed" sale restores stock.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_sales_idempotency_key"),
        db.Index("ix_sales_status_created", "status", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_sale_id)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    received_cents = db.Column(db.Integer, nullable=False, default=0)
    # Negative when underpaid
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    idempotency_key = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "SaleItem",
        backref=db.backref("sale", lazy=True),
        lazy=True,
        order_by="SaleItem.id",
    )

    @property
    def short_id(self) -> str:
        return self.id.replace("-", "")[:8].upper()

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "short_id": self.short_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "received_cents": self.received_cents,
            "change_cents": self.change_cents,
            "status": self.status,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Line item; unit_price_cents is the price actually charged."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "product_sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }
