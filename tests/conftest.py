# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The environment is pointed at a throwaway SQLite file and media directory
before anything from ``storefront`` is imported, because Config reads the
environment at import time.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

_TMP_ROOT = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_ROOT, 'test.db')}"
os.environ["MEDIA_ROOT"] = os.path.join(_TMP_ROOT, "media")
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ["FLASK_TESTING"] = "true"
os.environ["RAZORPAY_KEY_ID"] = ""

from storefront.database import SessionLocal, clear_all_tables, init_database  # noqa: E402
from storefront.models import Product, Profile, Role  # noqa: E402
from storefront.observability.metrics import reset_metrics  # noqa: E402
from storefront.services.change_feed import ChangeFeed  # noqa: E402
from storefront.services.notification_service import NotificationScheduler  # noqa: E402
from storefront.services.payment_service import get_luxepay_gateway  # noqa: E402
from werkzeug.security import generate_password_hash  # noqa: E402

init_database()

PASSWORD = "secret123"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_process_state():
    """Singletons live for the whole process; start every test clean."""
    ChangeFeed().reset()
    NotificationScheduler().reset()
    get_luxepay_gateway().reset()
    reset_metrics()
    yield
    ChangeFeed().reset()
    NotificationScheduler().reset()
    get_luxepay_gateway().reset()


@pytest.fixture
def db_session():
    """A session per test; every table is emptied afterwards."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        clear_all_tables()


@pytest.fixture
def app(db_session):
    from storefront.main import app as flask_app

    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def _make_profile(db_session, email, role=Role.CUSTOMER, full_name="Test Shopper"):
    profile = Profile(
        email=email,
        full_name=full_name,
        role=role.value,
        password_hash=generate_password_hash(PASSWORD),
    )
    db_session.add(profile)
    db_session.commit()
    return profile


@pytest.fixture
def customer(db_session):
    return _make_profile(db_session, "shopper@example.com")


@pytest.fixture
def other_customer(db_session):
    return _make_profile(db_session, "someone@example.com", full_name="Someone Else")


@pytest.fixture
def admin(db_session):
    return _make_profile(db_session, "admin@example.com", role=Role.ADMIN, full_name="Store Admin")


@pytest.fixture
def make_product(db_session):
    def _make(**overrides):
        fields = {
            "name": "Silk Scarf",
            "price": Decimal("450.00"),
            "original_price": Decimal("600.00"),
            "category": "Fashion",
            "subcategory": "Accessories",
            "stock": 20,
            "images": ["/media/fashion/scarf.jpg"],
            "sizes": [],
            "colors": ["Red"],
            "tags": ["silk"],
        }
        fields.update(overrides)
        fields.setdefault("description", f"{fields['name']} from the Luxe collection")
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def products(make_product):
    return [
        make_product(
            name="Silk Scarf",
            description="Hand-rolled silk scarf",
            price=Decimal("450.00"),
            rating=Decimal("4.20"),
        ),
        make_product(
            name="Noise Cancelling Headphones",
            description="Over-ear wireless headphones",
            tags=["audio"],
            category="Electronics",
            subcategory="Audio",
            price=Decimal("12999.00"),
            original_price=Decimal("15999.00"),
            featured=True,
            rating=Decimal("4.80"),
        ),
        make_product(
            name="Espresso Machine",
            description="Barista-grade pump for the home kitchen",
            tags=["coffee"],
            category="Kitchen",
            subcategory="Coffee",
            price=Decimal("8999.00"),
            bestseller=True,
            deal_of_the_day=True,
            deal_expires_at=datetime.now(timezone.utc) + timedelta(hours=5),
            rating=Decimal("4.50"),
        ),
    ]


@pytest.fixture
def address_payload():
    return {
        "fullName": "Test Shopper",
        "phone": "9876543210",
        "addressLine1": "12 Residency Road",
        "addressLine2": "Flat 4B",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560025",
    }


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def login_as(client):
    def _login(profile, password=PASSWORD):
        response = client.post("/api/auth/login", json={"email": profile.email, "password": password})
        assert response.status_code == 200
        return response

    return _login


@pytest.fixture
def place_order(db_session, address_payload):
    """Run a real checkout for ``profile`` with ``(product, quantity)`` lines."""
    from storefront.services.cart_service import CartService
    from storefront.services.checkout_service import CheckoutService
    from storefront.services.payment_service import RAZORPAY_MOCK_SIGNATURE

    def _place(profile, lines, payment_method="cod"):
        cart = CartService(db_session)
        for product, quantity in lines:
            cart.add_to_cart(profile.id, product.id, quantity)
        checkout = CheckoutService(db_session)
        _, _, address = checkout.add_address(profile.id, address_payload)
        payment = None
        if payment_method != "cod":
            payment = {
                "razorpay_order_id": "order_test",
                "razorpay_payment_id": "pay_test",
                "razorpay_signature": RAZORPAY_MOCK_SIGNATURE,
            }
        ok, message, order = checkout.place_order(profile, address.id, payment_method, payment=payment)
        assert ok, message
        return order

    return _place
