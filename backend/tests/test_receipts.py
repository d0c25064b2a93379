"""
Receipt tests.
"""

from retailpos.services import customers_service
from retailpos.services import receipt_service
from retailpos.services import sales_service
from retailpos.services.cart_service import Cart, ProductSnapshot
from retailpos.services.sale_edit_service import apply_edit


def test_receipt_lines_use_charged_prices(db_session, cashier, widget, gadget):
    cart = Cart()
    cart.add_item(ProductSnapshot.from_product(widget), 2)
    cart.add_item(ProductSnapshot.from_product(gadget), 1)
    cart.override_price(widget.id, 900)
    sale = sales_service.checkout(cart, user_id=cashier.id, received_cents=2500).sale

    receipt = receipt_service.build_receipt(sales_service.get_sale(sale.id))

    assert receipt.reference == f"SALE-{sale.short_id}"
    assert receipt.customer_name == customers_service.WALK_IN_NAME
    assert [(line.name, line.unit_price_cents, line.quantity, line.total_cents) for line in receipt.lines] == [
        ("Widget", 900, 2, 1800),
        ("Gadget", 250, 1, 250),
    ]
    assert receipt.item_count == 3
    assert receipt.total_cents == 2050
    assert receipt.change_cents == 450

    data = receipt.to_dict()
    assert data["lines"][0]["sku"] == "WID-1"
    assert data["created_at"].endswith("Z")


def test_receipt_reflects_edits(db_session, cashier, widget):
    cart = Cart()
    cart.add_item(ProductSnapshot.from_product(widget), 4)
    sale = sales_service.checkout(cart, user_id=cashier.id).sale
    apply_edit(sale.id, {sale.items[0].id: 1}, user_id=cashier.id)

    receipt = receipt_service.build_receipt(sales_service.get_sale(sale.id))
    assert receipt.lines[0].quantity == 1
    assert receipt.total_cents == 1000
