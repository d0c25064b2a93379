# Overview: Checkout-session cart: lines, price overrides and totals.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..validation import ValidationError, validate_price_cents
from . import products_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    """Catalog values captured when the product was added to the cart."""
    id: int
    name: str
    sku: str
    price_cents: int
    stock_quantity: int
    barcode: str | None = None

    @classmethod
    def from_product(cls, product) -> "ProductSnapshot":
        return cls(
            id=product.id,
            name=product.name,
            sku=product.sku,
            price_cents=product.price_cents,
            stock_quantity=product.stock_quantity,
            barcode=product.barcode,
        )


@dataclass
class CartItem:
    product: ProductSnapshot
    quantity: int
    override_price_cents: int | None = None

    @property
    def unit_price_cents(self) -> int:
        if self.override_price_cents is not None:
            return self.override_price_cents
        return self.product.price_cents

    @property
    def total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class Cart:
    """
    One checkout session's cart.

    Quantities are never capped by known stock: selling goods that are on the
    shelf but not yet received in the system is allowed. Exceeding known
    stock only logs a warning.

    Price overrides live on the cart only. checkout() writes them to the
    catalog inside the sale transaction when asked to (price_overrides()).
    """

    def __init__(self):
        self._items: dict[int, CartItem] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items.values()))

    def __contains__(self, product_id: int) -> bool:
        return product_id in self._items

    @property
    def items(self) -> list[CartItem]:
        return list(self._items.values())

    def is_empty(self) -> bool:
        return not self._items

    def get(self, product_id: int) -> CartItem | None:
        return self._items.get(product_id)

    def _warn_if_over_stock(self, item: CartItem) -> None:
        if item.quantity > item.product.stock_quantity:
            logger.warning(
                "Cart quantity %d for product %s (%s) exceeds known stock %d",
                item.quantity, item.product.id, item.product.sku, item.product.stock_quantity,
            )

    def add_item(self, product: ProductSnapshot, quantity: int = 1) -> CartItem:
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")

        item = self._items.get(product.id)
        if item is None:
            item = CartItem(product=product, quantity=quantity)
            self._items[product.id] = item
        else:
            item.quantity += quantity

        self._warn_if_over_stock(item)
        return item

    def set_quantity(self, product_id: int, quantity: int) -> CartItem | None:
        """quantity <= 0 removes the line."""
        if quantity <= 0:
            self.remove_item(product_id)
            return None

        item = self._items.get(product_id)
        if item is None:
            raise ValidationError(f"Product {product_id} is not in the cart")
        item.quantity = quantity
        self._warn_if_over_stock(item)
        return item

    def remove_item(self, product_id: int) -> None:
        self._items.pop(product_id, None)

    def override_price(self, product_id: int, new_price_cents: int) -> CartItem:
        validate_price_cents(new_price_cents)

        item = self._items.get(product_id)
        if item is None:
            raise ValidationError(f"Product {product_id} is not in the cart")

        item.override_price_cents = new_price_cents
        return item

    def price_overrides(self) -> dict[int, int]:
        """product_id -> overridden unit price, for lines that carry one."""
        return {
            product_id: item.override_price_cents
            for product_id, item in self._items.items()
            if item.override_price_cents is not None
        }

    def subtotal_cents(self) -> int:
        return sum(item.total_cents for item in self._items.values())

    def tax_cents(self) -> int:
        # No tax engine.
        return 0

    def discount_cents(self) -> int:
        return 0

    def total_cents(self) -> int:
        return self.subtotal_cents() + self.tax_cents() - self.discount_cents()

    def item_count(self) -> int:
        return sum(item.quantity for item in self._items.values())

    def clear(self) -> None:
        """Drops lines together with their price overrides."""
        self._items.clear()

    def to_dict(self) -> dict:
        return {
            "items": [
                {
                    "product_id": item.product.id,
                    "name": item.product.name,
                    "sku": item.product.sku,
                    "quantity": item.quantity,
                    "unit_price_cents": item.unit_price_cents,
                    "override_price_cents": item.override_price_cents,
                    "total_cents": item.total_cents,
                }
                for item in self._items.values()
            ],
            "item_count": self.item_count(),
            "subtotal_cents": self.subtotal_cents(),
            "tax_cents": self.tax_cents(),
            "discount_cents": self.discount_cents(),
            "total_cents": self.total_cents(),
        }


@dataclass(frozen=True)
class CartLineRequest:
    product_id: int
    quantity: int
    price_cents: int | None = None


def build_cart(lines: list[CartLineRequest]) -> Cart:
    """
    Build a Cart from client line requests against the current catalog.

    A requested price that differs from the catalog price is applied as an
    override. Nothing is written here.
    """
    cart = Cart()
    for line in lines:
        product = products_service.get_product(line.product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product.id} is inactive")
        cart.add_item(ProductSnapshot.from_product(product), line.quantity)
        if line.price_cents is not None and line.price_cents != product.price_cents:
            cart.override_price(product.id, line.price_cents)
    return cart
