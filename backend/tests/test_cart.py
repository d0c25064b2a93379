"""
Cart tests.

Verifies:
- Line merging, quantity updates and removal
- Price overrides (validation, catalog write-back hook)
- Totals in integer cents
- Over-stock quantities are allowed and only logged
"""

import logging

import pytest

from retailpos.services.cart_service import Cart, ProductSnapshot
from retailpos.validation import ValidationError


WIDGET = ProductSnapshot(id=1, name="Widget", sku="WID-1", price_cents=1000, stock_quantity=5)
GADGET = ProductSnapshot(id=2, name="Gadget", sku="GAD-1", price_cents=250, stock_quantity=10)


class TestCartLines:

    def test_adding_same_product_merges_line(self):
        cart = Cart()
        cart.add_item(WIDGET, 2)
        cart.add_item(WIDGET, 1)
        assert len(cart) == 1
        assert cart.get(WIDGET.id).quantity == 3

    def test_add_rejects_non_positive_quantity(self):
        cart = Cart()
        with pytest.raises(ValidationError):
            cart.add_item(WIDGET, 0)
        assert cart.is_empty()

    def test_set_quantity_zero_removes_line(self):
        cart = Cart()
        cart.add_item(WIDGET, 2)
        assert cart.set_quantity(WIDGET.id, 0) is None
        assert WIDGET.id not in cart

    def test_set_quantity_for_missing_product(self):
        with pytest.raises(ValidationError):
            Cart().set_quantity(99, 3)

    def test_remove_missing_product_is_noop(self):
        cart = Cart()
        cart.add_item(WIDGET)
        cart.remove_item(GADGET.id)
        assert len(cart) == 1

    def test_clear_drops_overrides(self):
        cart = Cart()
        cart.add_item(WIDGET)
        cart.override_price(WIDGET.id, 900)
        cart.clear()
        cart.add_item(WIDGET)
        assert cart.get(WIDGET.id).unit_price_cents == 1000


class TestCartTotals:

    def test_totals_in_cents(self):
        cart = Cart()
        cart.add_item(WIDGET, 3)
        cart.add_item(GADGET, 2)
        assert cart.subtotal_cents() == 3500
        assert cart.tax_cents() == 0
        assert cart.discount_cents() == 0
        assert cart.total_cents() == 3500
        assert cart.item_count() == 5

    def test_override_changes_line_total(self):
        cart = Cart()
        cart.add_item(WIDGET, 2)
        cart.override_price(WIDGET.id, 1500)
        assert cart.get(WIDGET.id).total_cents == 3000
        assert cart.to_dict()["items"][0]["override_price_cents"] == 1500


class TestPriceOverride:

    def test_negative_price_rejected(self):
        cart = Cart()
        cart.add_item(WIDGET)
        with pytest.raises(ValidationError):
            cart.override_price(WIDGET.id, -1)
        assert cart.get(WIDGET.id).unit_price_cents == 1000

    def test_override_requires_line_in_cart(self):
        with pytest.raises(ValidationError):
            Cart().override_price(WIDGET.id, 500)

    def test_price_overrides_lists_only_overridden_lines(self):
        cart = Cart()
        cart.add_item(WIDGET)
        cart.add_item(GADGET)
        cart.override_price(WIDGET.id, 1500)
        assert cart.price_overrides() == {WIDGET.id: 1500}

    def test_rejected_override_leaves_no_override(self):
        cart = Cart()
        cart.add_item(WIDGET)
        with pytest.raises(ValidationError):
            cart.override_price(WIDGET.id, -5)
        assert cart.price_overrides() == {}


class TestStockWarnings:

    def test_quantity_above_stock_is_allowed_and_logged(self, caplog):
        cart = Cart()
        with caplog.at_level(logging.WARNING, logger="retailpos.services.cart_service"):
            cart.add_item(WIDGET, 8)
        assert cart.get(WIDGET.id).quantity == 8
        assert "exceeds known stock" in caplog.text

    def test_quantity_within_stock_is_quiet(self, caplog):
        cart = Cart()
        with caplog.at_level(logging.WARNING, logger="retailpos.services.cart_service"):
            cart.add_item(GADGET, 3)
        assert caplog.text == ""
