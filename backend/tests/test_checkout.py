"""
Checkout tests.

Verifies:
- Sale header, items and SALE- movements are written together
- Change and default tender
- Walk-in vs registered customers, loyalty accrual
- Peripheral failures are skipped, primary failures roll everything back
- Idempotent replay and catalog price-override write-back
- Lock contention retries the whole sale
"""

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from retailpos.models import Customer, LoyaltyTransaction, Product, Sale, SaleItem, StockMovement
from retailpos.services import customers_service
from retailpos.services import ledger_service
from retailpos.services import sales_service
from retailpos.services.cart_service import Cart, CartLineRequest, ProductSnapshot, build_cart
from retailpos.validation import AuthenticationError, PersistenceError, ValidationError


def make_cart(*lines):
    cart = Cart()
    for product, quantity in lines:
        cart.add_item(ProductSnapshot.from_product(product), quantity)
    return cart


def sale_movements(db_session, sale_id):
    return db_session.query(StockMovement).filter_by(sale_id=sale_id).order_by(StockMovement.id).all()


class TestCheckout:

    def test_end_to_end_cash_sale(self, db_session, cashier, widget):
        result = sales_service.checkout(
            make_cart((widget, 3)),
            user_id=cashier.id,
            payment_method="cash",
            received_cents=5000,
        )

        sale = result.sale
        assert result.success is True
        assert sale.status == "completed"
        assert sale.total_cents == 3000
        assert sale.change_cents == 2000
        assert sale.customer_name == customers_service.WALK_IN_NAME
        assert sale.customer_id is None

        movements = sale_movements(db_session, sale.id)
        assert len(movements) == 1
        assert movements[0].type == "out"
        assert movements[0].quantity == 3
        assert movements[0].reference == f"SALE-{sale.id.replace('-', '')[:8].upper()}"
        assert db_session.get(Product, widget.id).stock_quantity == 17

    def test_items_record_charged_price(self, db_session, cashier, widget, gadget):
        cart = make_cart((widget, 1), (gadget, 4))
        cart.override_price(widget.id, 800)
        result = sales_service.checkout(cart, user_id=cashier.id)

        items = {item.product_id: item for item in result.sale_items}
        assert items[widget.id].unit_price_cents == 800
        assert items[gadget.id].total_cents == 1000
        assert result.sale.subtotal_cents == 1800
        assert result.sale.tax_cents == 0

    def test_stock_conservation_per_sale(self, db_session, cashier, widget, gadget):
        result = sales_service.checkout(make_cart((widget, 2), (gadget, 5)), user_id=cashier.id)
        out_total = sum(m.quantity for m in sale_movements(db_session, result.sale.id) if m.type == "out")
        assert out_total == sum(item.quantity for item in result.sale_items)

    def test_overselling_drives_stock_negative(self, db_session, cashier, gadget):
        sales_service.checkout(make_cart((gadget, 12)), user_id=cashier.id)
        assert db_session.get(Product, gadget.id).stock_quantity == -2

    @pytest.mark.parametrize("received", [None, 0])
    def test_missing_tender_means_exact(self, db_session, cashier, widget, received):
        result = sales_service.checkout(make_cart((widget, 2)), user_id=cashier.id, received_cents=received)
        assert result.sale.received_cents == 2000
        assert result.sale.change_cents == 0

    def test_underpayment_is_recorded(self, db_session, cashier, widget):
        result = sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id, received_cents=1000)
        assert result.sale.change_cents == -2000


class TestCheckoutRejections:

    def test_requires_acting_user(self, db_session, widget):
        with pytest.raises(AuthenticationError):
            sales_service.checkout(make_cart((widget, 1)), user_id=None)
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 1  # opening stock only

    def test_empty_cart(self, db_session, cashier):
        with pytest.raises(ValidationError):
            sales_service.checkout(Cart(), user_id=cashier.id)

    def test_unknown_payment_method(self, db_session, cashier, widget):
        with pytest.raises(ValidationError):
            sales_service.checkout(make_cart((widget, 1)), user_id=cashier.id, payment_method="barter")
        assert db_session.query(Sale).count() == 0

    def test_primary_write_failure_rolls_back(self, db_session, cashier, widget):
        cart = make_cart((widget, 2))
        cart.get(widget.id).quantity = 0  # violates the sale_items CHECK constraint

        with pytest.raises(PersistenceError):
            sales_service.checkout(cart, user_id=cashier.id)

        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.get(Product, widget.id).stock_quantity == 20


class TestPeripheralFailures:

    def test_failed_movement_is_skipped(self, db_session, cashier, widget, monkeypatch, caplog):
        def boom(**kwargs):
            raise SQLAlchemyError("ledger unavailable")

        monkeypatch.setattr(ledger_service, "post_stock_movement", boom)
        result = sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id)

        assert result.success is True
        assert result.skipped_writes == [f"stock_movement:{widget.id}"]
        assert db_session.get(Sale, result.sale.id).status == "completed"
        assert len(db_session.get(Sale, result.sale.id).items) == 1
        assert sale_movements(db_session, result.sale.id) == []
        assert db_session.get(Product, widget.id).stock_quantity == 20
        assert "Skipped stock movement" in caplog.text

    def test_failed_loyalty_is_skipped(self, db_session, cashier, widget, loyal_customer, monkeypatch):
        def boom(**kwargs):
            raise SQLAlchemyError("loyalty unavailable")

        monkeypatch.setattr(customers_service, "accrue_loyalty", boom)
        customer = customers_service.resolve_customer(loyal_customer.id)
        result = sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id, customer=customer)

        assert result.skipped_writes == ["loyalty"]
        assert len(sale_movements(db_session, result.sale.id)) == 1
        refreshed = db_session.get(Customer, loyal_customer.id)
        assert refreshed.total_purchases == 1
        assert refreshed.loyalty_points == 0


class TestCustomers:

    def test_registered_customer_earns_points(self, db_session, cashier, widget, loyal_customer):
        customer = customers_service.resolve_customer(loyal_customer.id)
        result = sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id, customer=customer)

        assert result.sale.customer_id == loyal_customer.id
        assert result.sale.customer_name == "Jane Doe"

        refreshed = db_session.get(Customer, loyal_customer.id)
        assert refreshed.loyalty_points == 30
        assert refreshed.total_purchases == 1
        assert refreshed.total_spent_cents == 3000

        entry = db_session.query(LoyaltyTransaction).filter_by(sale_id=result.sale.id).one()
        assert entry.points == 30
        assert entry.type == "earn"

    def test_points_round_down(self):
        assert customers_service.loyalty_points_for(1999) == 19
        assert customers_service.loyalty_points_for(99) == 0

    def test_loyalty_switched_off(self, app, db_session, cashier, widget, loyal_customer, monkeypatch):
        monkeypatch.setitem(app.config, "LOYALTY_ENABLED", False)
        customer = customers_service.resolve_customer(loyal_customer.id)
        sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id, customer=customer)

        assert db_session.get(Customer, loyal_customer.id).loyalty_points == 0
        assert db_session.query(LoyaltyTransaction).count() == 0

    def test_walk_in_never_touches_customers(self, db_session, cashier, widget, loyal_customer):
        sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id)
        assert db_session.get(Customer, loyal_customer.id).total_purchases == 0
        assert db_session.query(LoyaltyTransaction).count() == 0

    def test_inactive_customer_rejected(self, db_session, loyal_customer):
        loyal_customer.is_active = False
        db_session.commit()
        with pytest.raises(ValidationError):
            customers_service.resolve_customer(loyal_customer.id)


class TestIdempotency:

    def test_same_key_replays_sale(self, db_session, cashier, widget):
        first = sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id, idempotency_key="abc-123")
        second = sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id, idempotency_key="abc-123")

        assert second.replayed is True
        assert second.sale.id == first.sale.id
        assert db_session.query(Sale).count() == 1
        assert len(sale_movements(db_session, first.sale.id)) == 1
        assert db_session.get(Product, widget.id).stock_quantity == 17


class TestPriceOverridePersistence:

    def test_override_written_with_the_sale(self, db_session, cashier, widget):
        cart = build_cart([CartLineRequest(product_id=widget.id, quantity=1, price_cents=1500)])
        assert db_session.get(Product, widget.id).price_cents == 1000

        sales_service.checkout(cart, user_id=cashier.id, persist_price_overrides=True)

        fresh = build_cart([CartLineRequest(product_id=widget.id, quantity=1)])
        assert db_session.get(Product, widget.id).price_cents == 1500
        assert fresh.get(widget.id).unit_price_cents == 1500
        assert fresh.get(widget.id).override_price_cents is None

    def test_override_kept_on_cart_when_not_persisted(self, db_session, cashier, widget):
        cart = build_cart([CartLineRequest(product_id=widget.id, quantity=1, price_cents=1500)])
        result = sales_service.checkout(cart, user_id=cashier.id, persist_price_overrides=False)

        assert result.sale_items[0].unit_price_cents == 1500
        assert db_session.get(Product, widget.id).price_cents == 1000

    def test_rejected_checkout_leaves_catalog_price(self, db_session, cashier, widget):
        cart = build_cart([CartLineRequest(product_id=widget.id, quantity=1, price_cents=1)])
        with pytest.raises(ValidationError):
            sales_service.checkout(cart, user_id=cashier.id, payment_method="barter",
                                   persist_price_overrides=True)

        db_session.expire_all()
        assert db_session.get(Product, widget.id).price_cents == 1000

    def test_failed_sale_rolls_back_catalog_price(self, db_session, cashier, widget):
        cart = build_cart([CartLineRequest(product_id=widget.id, quantity=2, price_cents=1500)])
        cart.get(widget.id).quantity = 0  # violates the sale_items CHECK constraint

        with pytest.raises(PersistenceError):
            sales_service.checkout(cart, user_id=cashier.id, persist_price_overrides=True)

        db_session.expire_all()
        assert db_session.get(Product, widget.id).price_cents == 1000


class TestLockContention:

    def test_locked_movement_retries_whole_sale(self, app, db_session, cashier, widget, monkeypatch):
        monkeypatch.setitem(app.config, "DB_RETRY_ATTEMPTS", 3)
        real_post = ledger_service.post_stock_movement
        calls = []

        def locked_once(**kwargs):
            calls.append(kwargs["product_id"])
            if len(calls) == 1:
                raise OperationalError("INSERT INTO stock_movements", {}, Exception("database is locked"))
            return real_post(**kwargs)

        monkeypatch.setattr(ledger_service, "post_stock_movement", locked_once)
        result = sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id)

        assert len(calls) == 2
        assert result.skipped_writes == []
        assert db_session.query(Sale).count() == 1
        assert len(sale_movements(db_session, result.sale.id)) == 1
        assert db_session.get(Product, widget.id).stock_quantity == 17

    def test_contention_is_not_skipped_when_retries_run_out(self, db_session, cashier, widget, monkeypatch):
        def locked(**kwargs):
            raise OperationalError("INSERT INTO stock_movements", {}, Exception("database is locked"))

        monkeypatch.setattr(ledger_service, "post_stock_movement", locked)
        with pytest.raises(OperationalError):
            sales_service.checkout(make_cart((widget, 3)), user_id=cashier.id)

        assert db_session.query(Sale).count() == 0
        assert db_session.get(Product, widget.id).stock_quantity == 20
