"""Pytest fixtures for zellow tests."""

import itertools
from decimal import Decimal

import pytest
from flask import g

from zellow import create_app
from zellow.config import Config
from zellow.extensions import db, mail
from zellow.models import Product, ShippingMethod, User, UserRole, UserStatus
from zellow.services import cart_service, checkout_service
from zellow.services.lifecycle_service import apply_transition
from zellow.services.order_events import broker

PASSWORD = "secret123"

SHIPPING_ADDRESS = {
    "full_name": "Jane Wanjiku",
    "address_line1": "12 Moi Avenue",
    "city": "Nairobi",
    "county": "Nairobi",
    "phone": "0712345678",
}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SITE_URL = "https://zellow.test"
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = ("Zellow Enterprises", "no-reply@zellow.test")
    VAPID_PUBLIC_KEY = ""
    VAPID_PRIVATE_KEY = ""
    HISTORY_LONG_POLL_SECONDS = 1


@pytest.fixture
def app():
    """Application with a fresh in-memory database."""
    app = create_app(TestingConfig)

    # Requests share the test's app context; reload the user from the
    # session cookie on every request.
    @app.teardown_request
    def _forget_loaded_user(exc):
        g.pop("_login_user", None)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    broker.reset()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(app):
    """Messages sent through Flask-Mail during the test."""
    with mail.record_messages() as messages:
        yield messages


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role="CUSTOMER", email=None, status=UserStatus.APPROVED,
              password=PASSWORD, **fields):
        n = next(counter)
        fields.setdefault("display_name", f"{role.title()} {n}")
        user = User(
            email=email or f"{role.lower()}{n}@zellow.test",
            role=UserRole[role],
            status=status,
            **fields,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def customer(make_user):
    return make_user("CUSTOMER", display_name="Jane Wanjiku")


@pytest.fixture
def admin(make_user):
    return make_user("ADMIN")


@pytest.fixture
def finance(make_user):
    return make_user("FINANCE_MANAGER")


@pytest.fixture
def dispatcher(make_user):
    return make_user("DISPATCH_MANAGER")


@pytest.fixture
def rider(make_user):
    return make_user("RIDER")


@pytest.fixture
def make_product(app):
    def _make(name="Engraved Mug", price=500, stock=10, options=None,
              published=True, **fields):
        product = Product(
            name=name,
            price=Decimal(str(price)),
            stock=stock,
            published=published,
            customization_options=options or [],
            **fields,
        )
        db.session.add(product)
        db.session.commit()
        return product

    return _make


@pytest.fixture
def make_shipping_method(app):
    def _make(name="Standard Delivery", price=100, active=True):
        method = ShippingMethod(
            name=name,
            duration="2-3 days",
            base_price=Decimal(str(price)),
            active=active,
        )
        db.session.add(method)
        db.session.commit()
        return method

    return _make


@pytest.fixture
def login(client):
    """Log ``user`` into the shared test client."""

    def _login(user, password=PASSWORD):
        response = client.post(
            "/api/auth/login",
            json={"email": user.email, "password": password},
        )
        assert response.status_code == 200, response.get_json()
        return response

    return _login


@pytest.fixture
def order_factory(make_product, make_shipping_method):
    """Place an order through the checkout service."""

    def _make(customer, items=None, payment_method="MPESA", gift=None,
              shipping_price=100, address=None):
        cart = cart_service.get_or_create_cart(customer)
        if items is None:
            items = [(make_product(), 1, None)]
        for product, quantity, customizations in items:
            cart_service.add_line(cart, product, quantity, customizations)
        checkout_service.set_shipping_address(
            cart, dict(address or SHIPPING_ADDRESS))
        checkout_service.set_payment_method(cart, payment_method)
        if gift is not None:
            checkout_service.set_gift_details(cart, gift)
        method = make_shipping_method(price=shipping_price)
        checkout_service.set_shipping_method(cart, method.id)
        return checkout_service.place_order(cart, customer)

    return _make


@pytest.fixture
def advance():
    """Apply a sequence of lifecycle commands as ``actor``."""

    def _advance(order, actor, *commands, **kwargs):
        entry = None
        for command in commands:
            entry = apply_transition(order, command, actor, **kwargs)
        return entry

    return _advance


@pytest.fixture
def shipping_address():
    return dict(SHIPPING_ADDRESS)
