"""Tests for checkout and order placement."""

from decimal import Decimal

import pytest

from zellow import config
from zellow.errors import CheckoutIncompleteError, ValidationError
from zellow.extensions import db
from zellow.models import (
    AuditLog,
    Order,
    OrderStatus,
    PaymentStatus,
    ShippingRate,
    ShippingRegion,
)
from zellow.services import cart_service, checkout_service

GIFT = {
    "recipient_name": "Amina Otieno",
    "recipient_contact_method": "email",
    "recipient_contact_value": "amina@example.com",
    "gift_message": "Happy birthday!",
    "notify_recipient": True,
    "show_prices_to_recipient": False,
    "recipient_can_view_and_track": True,
}


@pytest.fixture
def cart(customer):
    return cart_service.get_or_create_cart(customer)


class TestSteps:
    def test_empty_cart_is_first_step(self, cart):
        assert checkout_service.next_incomplete_step(cart) == "cart"

    def test_steps_progress(self, cart, make_product, make_shipping_method,
                            shipping_address):
        cart_service.add_line(cart, make_product(), 1)
        assert checkout_service.next_incomplete_step(cart) == \
            "shipping_address"

        checkout_service.set_shipping_address(cart, shipping_address)
        assert checkout_service.next_incomplete_step(cart) == "payment_method"

        checkout_service.set_payment_method(cart, "card")
        assert checkout_service.next_incomplete_step(cart) == \
            "shipping_method"

        method = make_shipping_method()
        checkout_service.set_shipping_method(cart, method.id)
        assert checkout_service.next_incomplete_step(cart) == "review"

    def test_later_step_before_earlier_one(self, cart, make_product):
        cart_service.add_line(cart, make_product(), 1)
        with pytest.raises(CheckoutIncompleteError) as excinfo:
            checkout_service.set_payment_method(cart, "MPESA")
        assert excinfo.value.step == "shipping_address"

    def test_inactive_shipping_method_is_not_a_selection(
            self, cart, make_product, make_shipping_method,
            shipping_address):
        cart_service.add_line(cart, make_product(), 1)
        checkout_service.set_shipping_address(cart, shipping_address)
        checkout_service.set_payment_method(cart, "MPESA")
        method = make_shipping_method()
        checkout_service.set_shipping_method(cart, method.id)

        method.active = False
        assert checkout_service.next_incomplete_step(cart) == \
            "shipping_method"


class TestValidation:
    def test_address_requires_county(self, shipping_address):
        del shipping_address["county"]
        with pytest.raises(ValidationError) as excinfo:
            checkout_service.validate_shipping_address(shipping_address)
        assert excinfo.value.extra["field"] == "county"

    def test_address_rejects_short_phone(self, shipping_address):
        shipping_address["phone"] = "0712"
        with pytest.raises(ValidationError, match="phone"):
            checkout_service.validate_shipping_address(shipping_address)

    def test_unknown_payment_method(self, cart, make_product,
                                    shipping_address):
        cart_service.add_line(cart, make_product(), 1)
        checkout_service.set_shipping_address(cart, shipping_address)
        with pytest.raises(ValidationError):
            checkout_service.set_payment_method(cart, "PAYPAL")

    def test_gift_requires_recipient_name(self):
        with pytest.raises(ValidationError, match="Recipient"):
            checkout_service.validate_gift_details(
                {**GIFT, "recipient_name": ""})

    def test_gift_notify_requires_contact(self):
        with pytest.raises(ValidationError, match="contact"):
            checkout_service.validate_gift_details({
                **GIFT,
                "recipient_contact_method": "",
                "recipient_contact_value": "",
            })

    def test_gift_without_notify_resets_visibility(self):
        gift = checkout_service.validate_gift_details({
            **GIFT,
            "notify_recipient": False,
            "show_prices_to_recipient": True,
            "recipient_can_view_and_track": False,
        })
        assert gift.show_prices_to_recipient is False
        assert gift.recipient_can_view_and_track is True


class TestPlaceOrder:
    def test_totals_and_first_history_entry(
            self, customer, make_product, order_factory):
        product = make_product(price=500, stock=10)

        order = order_factory(
            customer, items=[(product, 2, None)], shipping_price=100)

        assert order.sub_total == Decimal("1000.00")
        assert order.shipping_cost == Decimal("100.00")
        assert order.total_amount == Decimal("1100.00")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PAID
        assert len(order.delivery_history) == 1
        first = order.delivery_history[0]
        assert first.status == OrderStatus.PENDING
        assert first.actor_id == customer.id
        assert first.position == 0

    def test_stock_decremented_and_cart_cleared(
            self, customer, make_product, order_factory):
        product = make_product(stock=10)

        order_factory(customer, items=[(product, 3, None)])

        cart = cart_service.get_or_create_cart(customer)
        assert product.stock == 7
        assert cart.lines == []
        assert cart.shipping_address is None
        assert cart.payment_method is None

    def test_pay_on_delivery_is_pending(self, customer, order_factory):
        order = order_factory(customer, payment_method="PAY_ON_DELIVERY")
        assert order.payment_status == PaymentStatus.PENDING

    def test_settled_methods_follow_config(self, app, customer,
                                           order_factory):
        app.config["SYNC_PAYMENT_METHODS"] = ("CARD",)
        order = order_factory(customer, payment_method="MPESA")
        assert order.payment_status == PaymentStatus.PENDING

    @pytest.mark.parametrize("raw, expected", [
        (None, ("MPESA", "CARD")),
        ("card", ("CARD",)),
        (" mpesa , pay_on_delivery ,", ("MPESA", "PAY_ON_DELIVERY")),
    ])
    def test_settled_methods_from_environment(self, monkeypatch, raw,
                                              expected):
        if raw is None:
            monkeypatch.delenv("SYNC_PAYMENT_METHODS", raising=False)
        else:
            monkeypatch.setenv("SYNC_PAYMENT_METHODS", raw)
        assert config._env_list("SYNC_PAYMENT_METHODS", "MPESA,CARD") == \
            expected

    def test_item_snapshot_survives_catalogue_edit(
            self, customer, make_product, order_factory):
        product = make_product(name="Mug", price=500)
        order = order_factory(customer, items=[(product, 1, None)])

        product.name = "Renamed Mug"
        product.price = Decimal("900.00")

        assert order.items[0].name == "Mug"
        assert order.items[0].price == Decimal("500.00")

    def test_incomplete_checkout(self, cart, make_product):
        cart_service.add_line(cart, make_product(), 1)
        with pytest.raises(CheckoutIncompleteError) as excinfo:
            checkout_service.place_order(cart, cart.user)
        assert excinfo.value.step == "shipping_address"

    def test_live_stock_recheck_writes_nothing(
            self, customer, cart, make_product, make_shipping_method,
            shipping_address):
        product = make_product(name="Frame", stock=5)
        cart_service.add_line(cart, product, 5)
        checkout_service.set_shipping_address(cart, shipping_address)
        checkout_service.set_payment_method(cart, "MPESA")
        checkout_service.set_shipping_method(
            cart, make_shipping_method().id)

        product.stock = 2

        with pytest.raises(ValidationError, match="Only 2 units of Frame"):
            checkout_service.place_order(cart, customer)
        assert Order.query.count() == 0
        assert len(cart.lines) == 1

    def test_order_create_is_audited(self, customer, order_factory):
        order = order_factory(customer)
        audit = AuditLog.query.filter_by(action="ORDER_CREATE").one()
        assert audit.target_id == order.id
        assert audit.actor_id == customer.id

    def test_gift_details_copied_to_order(self, customer, order_factory):
        order = order_factory(customer, gift=dict(GIFT))
        assert order.is_gift is True
        assert order.gift.recipient_name == "Amina Otieno"


class TestCheckoutRoutes:
    def _fill_cart(self, client, product, method, address):
        client.post("/api/cart/items",
                    json={"product_id": product.id, "quantity": 2})
        client.put("/api/checkout/shipping-address", json=address)
        client.put("/api/checkout/payment-method",
                   json={"payment_method": "MPESA"})
        return client.put("/api/checkout/shipping-method",
                          json={"shipping_method_id": method.id})

    def test_shipping_methods_are_public(self, client, make_shipping_method):
        make_shipping_method(name="Express", price=500)
        make_shipping_method(name="Old", price=50, active=False)

        response = client.get("/api/shipping-methods")

        assert response.status_code == 200
        names = [m["name"] for m in response.get_json()["shipping_methods"]]
        assert names == ["Express"]

    def test_summary_and_place_order(
            self, client, login, customer, make_product,
            make_shipping_method, shipping_address):
        product = make_product(price=500)
        method = make_shipping_method(price=100)
        login(customer)

        response = self._fill_cart(client, product, method, shipping_address)
        summary = response.get_json()
        assert summary["next_step"] == "review"
        assert summary["total_amount"] == 1100.0

        response = client.post("/api/checkout/place-order")

        assert response.status_code == 201
        data = response.get_json()
        assert data["order"]["total_amount"] == 1100.0
        assert data["order"]["status"] == "pending"
        assert data["order"]["payment_status"] == "paid"
        assert "gift_notification" not in data

    def test_place_order_with_empty_cart(self, client, login, customer):
        login(customer)
        response = client.post("/api/checkout/place-order")
        assert response.status_code == 400
        assert response.get_json()["step"] == "cart"

    def test_gift_order_notifies_recipient(
            self, client, login, customer, make_product,
            make_shipping_method, shipping_address, outbox):
        product = make_product()
        method = make_shipping_method()
        login(customer)
        client.post("/api/cart/items", json={"product_id": product.id})
        client.put("/api/checkout/shipping-address", json=shipping_address)
        client.put("/api/checkout/payment-method",
                   json={"payment_method": "CARD"})
        response = client.put("/api/checkout/gift", json=GIFT)
        assert response.get_json()["is_gift"] is True
        client.put("/api/checkout/shipping-method",
                   json={"shipping_method_id": method.id})

        response = client.post("/api/checkout/place-order")

        data = response.get_json()
        order_id = data["order_id"]
        link = f"https://zellow.test/track/gift?token={order_id}"
        assert data["tracking_link"] == link
        assert data["gift_notification"]["success"] is True
        assert len(outbox) == 1
        assert outbox[0].recipients == ["amina@example.com"]
        assert link in outbox[0].html


@pytest.fixture
def make_region(app):
    def _make(name="Nairobi Metro", towns=("Nairobi", "Karen"),
              active=True):
        region = ShippingRegion(name=name, county="Nairobi",
                                towns=list(towns), active=active)
        db.session.add(region)
        db.session.commit()
        return region

    return _make


def add_rate(region, method, price, active=True):
    rate = ShippingRate(region_id=region.id, method_id=method.id,
                        custom_price=Decimal(str(price)), active=active)
    db.session.add(rate)
    db.session.commit()
    return rate


class TestShippingRegions:
    def _ready_cart(self, cart, make_product, method, address):
        cart_service.add_line(cart, make_product(price=500), 2)
        checkout_service.set_shipping_address(cart, address)
        checkout_service.set_payment_method(cart, "MPESA")
        checkout_service.set_shipping_method(cart, method.id)

    def test_region_rate_overrides_base_price(
            self, cart, customer, make_product, make_shipping_method,
            make_region, shipping_address):
        region = make_region()
        method = make_shipping_method(price=100)
        add_rate(region, method, 250)
        self._ready_cart(cart, make_product, method,
                         {**shipping_address, "region_id": region.id})

        summary = checkout_service.checkout_summary(cart)
        assert summary["shipping_cost"] == 250.0
        assert summary["shipping_method"]["price"] == 250.0
        assert summary["total_amount"] == 1250.0

        order = checkout_service.place_order(cart, customer)

        assert order.shipping_cost == Decimal("250.00")
        assert order.total_amount == Decimal("1250.00")
        assert order.shipping_address["region_id"] == region.id
        assert order.shipping_address["region_name"] == "Nairobi Metro"

    @pytest.mark.parametrize("rate_active, region_active", [
        (None, True),
        (False, True),
        (True, False),
    ])
    def test_base_price_without_active_rate(
            self, cart, customer, make_product, make_shipping_method,
            make_region, shipping_address, rate_active, region_active):
        region = make_region()
        method = make_shipping_method(price=100)
        if rate_active is not None:
            add_rate(region, method, 250, active=rate_active)
        self._ready_cart(cart, make_product, method,
                         {**shipping_address, "region_id": region.id})
        region.active = region_active
        db.session.commit()

        order = checkout_service.place_order(cart, customer)

        assert order.shipping_cost == Decimal("100.00")
        assert order.total_amount == Decimal("1100.00")

    def test_region_required_once_configured(self, make_region,
                                             shipping_address):
        make_region()
        with pytest.raises(ValidationError) as excinfo:
            checkout_service.validate_shipping_address(shipping_address)
        assert excinfo.value.extra["field"] == "region_id"

    def test_inactive_region_is_unknown(self, make_region, shipping_address):
        region = make_region(active=False)
        with pytest.raises(ValidationError, match="Unknown delivery region"):
            checkout_service.validate_shipping_address(
                {**shipping_address, "region_id": region.id})

    def test_town_outside_region(self, make_region, shipping_address):
        region = make_region(name="Coast", towns=["Mombasa"])
        with pytest.raises(ValidationError) as excinfo:
            checkout_service.validate_shipping_address(
                {**shipping_address, "region_id": region.id})
        assert excinfo.value.extra["field"] == "city"

    def test_public_prices_follow_region(self, client, make_region,
                                         make_shipping_method):
        region = make_region()
        standard = make_shipping_method(name="Standard", price=100)
        make_shipping_method(name="Express", price=300)
        add_rate(region, standard, 400)

        base = client.get("/api/shipping-methods").get_json()
        regional = client.get(
            f"/api/shipping-methods?region_id={region.id}").get_json()

        assert [(m["name"], m["price"]) for m in base["shipping_methods"]] \
            == [("Standard", 100.0), ("Express", 300.0)]
        assert [(m["name"], m["price"])
                for m in regional["shipping_methods"]] \
            == [("Express", 300.0), ("Standard", 400.0)]

    def test_regions_are_public(self, client, make_region):
        make_region()
        make_region(name="Closed", active=False)

        response = client.get("/api/shipping-regions")

        assert response.status_code == 200
        regions = response.get_json()["shipping_regions"]
        assert [r["name"] for r in regions] == ["Nairobi Metro"]
        assert regions[0]["towns"] == ["Nairobi", "Karen"]
