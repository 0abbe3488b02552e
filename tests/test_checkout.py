from decimal import Decimal

import pytest

from app.data.models import (
    StoreModel,
    ProductModel,
    OrderModel,
    OrderItemModel,
    PaymentTransactionModel,
    UserAddressModel,
)
from app.domain.errors import InsufficientStock, Unauthorized, ValidationError, OrderCreationFailed
from app.domain.identity import Identity
from app.repos.settings_repo import SettingsRepo
from app.services.cart_service import CartService
from app.services.checkout_service import CheckoutService, generate_order_number


@pytest.fixture
def cart(db, lock_service):
    return CartService(db, lock_service)


@pytest.fixture
def checkout(db, lock_service, notifier):
    return CheckoutService(db, lock_service, notifier)


def test_two_store_order_scenario(db, cart, checkout, user_identity, address, notifier):
    store_a = StoreModel(name="A", is_active=True)
    store_b = StoreModel(name="B", is_active=True)
    db.add_all([store_a, store_b])
    db.flush()
    ten = ProductModel(store_id=store_a.id, name="Ten", price=Decimal("10.00"), stock_quantity=5, is_active=True)
    five = ProductModel(store_id=store_b.id, name="Five", price=Decimal("5.00"), stock_quantity=5, is_active=True)
    db.add_all([ten, five])
    SettingsRepo(db).set("global_delivery_fee", "4.99")
    SettingsRepo(db).set("global_tax_rate", "8")
    db.commit()

    cart.add_item(user_identity, ten.id, 2)
    cart.add_item(user_identity, five.id, 1)

    order = checkout.place_order(user_identity, address, "shipping")

    assert order.subtotal == Decimal("25.00")
    assert order.tax == Decimal("2.00")
    assert order.total_amount == Decimal("31.99")
    assert order.status == "pending"
    assert order.order_number.startswith("ORD-")
    assert order.primary_store_id == store_a.id
    assert sorted(item.store_id for item in order.items) == sorted([store_a.id, store_b.id])

    txs = db.query(PaymentTransactionModel).filter_by(order_id=order.id).all()
    assert len(txs) == 1
    assert txs[0].amount == Decimal("31.99")
    assert txs[0].status == "pending"

    assert cart.get_line_items(user_identity) == []
    assert notifier.kinds() == ["order_placed"]


def test_order_captures_prices_and_decrements_stock(db, cart, checkout, catalog, user_identity, address):
    milk = catalog["products"]["milk"]
    cart.add_item(user_identity, milk.id, 2)

    order = checkout.place_order(user_identity, address, "fast_delivery")

    milk.price = Decimal("9.99")
    db.commit()
    item = db.query(OrderItemModel).filter_by(order_id=order.id).one()
    assert item.unit_price == Decimal("3.99")
    assert item.total_price == Decimal("7.98")
    assert db.get(ProductModel, milk.id).stock_quantity == 8


def test_session_cart_of_logged_in_user_survives_checkout(db, cart, checkout, catalog, user, address):
    guest = Identity(session_id="sess-1")
    both = Identity(user_id=user.id, session_id="sess-1")
    cart.add_item(guest, catalog["products"]["pasta"].id, 1)
    cart.add_item(both, catalog["products"]["milk"].id, 1)

    order = checkout.place_order(both, address, "shipping")

    assert {i.product_id for i in order.items} == {catalog["products"]["milk"].id}
    assert [l.product_id for l in cart.get_line_items(guest)] == [catalog["products"]["pasta"].id]
    assert cart.get_line_items(both) == []


def test_checkout_reprices_from_current_catalog(db, cart, checkout, catalog, user_identity, address):
    milk = catalog["products"]["milk"]
    cart.add_item(user_identity, milk.id, 1)
    milk.price = Decimal("4.50")
    db.commit()

    order = checkout.place_order(user_identity, address, "shipping")

    assert order.subtotal == Decimal("4.50")


def test_stock_failure_partway_leaves_nothing_behind(db, cart, checkout, catalog, user_identity, address):
    milk = catalog["products"]["milk"]
    bread = catalog["products"]["bread"]
    cart.add_item(user_identity, milk.id, 2)
    cart.add_item(user_identity, bread.id, 3)
    bread.stock_quantity = 1
    db.commit()

    with pytest.raises(InsufficientStock):
        checkout.place_order(user_identity, address, "shipping")

    assert db.query(OrderModel).count() == 0
    assert db.query(OrderItemModel).count() == 0
    assert db.query(PaymentTransactionModel).count() == 0
    assert db.query(UserAddressModel).count() == 0
    assert db.get(ProductModel, milk.id).stock_quantity == 10
    assert {line.product_id: line.quantity for line in cart.get_line_items(user_identity)} == {
        milk.id: 2,
        bread.id: 3,
    }


def test_guest_cannot_place_order(checkout, address):
    with pytest.raises(Unauthorized):
        checkout.place_order(Identity(session_id="guest"), address, "shipping")


def test_empty_cart_rejected(checkout, catalog, user_identity, address):
    with pytest.raises(ValidationError):
        checkout.place_order(user_identity, address, "shipping")


def test_rejected_discount_code_blocks_order(cart, checkout, catalog, user_identity, address):
    cart.add_item(user_identity, catalog["products"]["milk"].id, 1)

    with pytest.raises(ValidationError) as exc:
        checkout.place_order(user_identity, address, "shipping", discount_code="NOPE")

    assert exc.value.field == "discount_code"


def test_discount_code_recorded_on_order(cart, checkout, catalog, discount_code, user_identity, address):
    cart.add_item(user_identity, catalog["products"]["pasta"].id, 2)

    order = checkout.place_order(user_identity, address, "shipping", discount_code="save10")

    assert order.discount == Decimal("2.40")
    assert order.discount_code == "SAVE10"


def test_address_reused_and_first_becomes_default(db, cart, checkout, catalog, user_identity, address):
    milk = catalog["products"]["milk"]
    cart.add_item(user_identity, milk.id, 1)
    first = checkout.place_order(user_identity, address, "shipping")
    cart.add_item(user_identity, milk.id, 1)
    second = checkout.place_order(user_identity, address.model_copy(update={"city": "SPRINGFIELD"}), "shipping")

    addresses = db.query(UserAddressModel).all()
    assert len(addresses) == 1
    assert addresses[0].is_default is True
    assert first.user_address_id == second.user_address_id


def test_unexpected_failure_is_opaque_and_rolled_back(db, cart, checkout, catalog, user_identity, address, monkeypatch):
    cart.add_item(user_identity, catalog["products"]["milk"].id, 1)

    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(checkout.users, "resolve_address", boom)

    with pytest.raises(OrderCreationFailed) as exc:
        checkout.place_order(user_identity, address, "shipping")

    assert isinstance(exc.value.__cause__, RuntimeError)
    assert "disk on fire" not in exc.value.message
    assert db.query(OrderModel).count() == 0
    assert len(cart.get_line_items(user_identity)) == 1


def test_order_number_format():
    number = generate_order_number()

    prefix, date, suffix = number.split("-")
    assert prefix == "ORD"
    assert len(date) == 8 and date.isdigit()
    assert len(suffix) == 8
