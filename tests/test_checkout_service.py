from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from storefront.models import (
    Address,
    CartItem,
    Coupon,
    DiscountType,
    Notification,
    NotificationType,
    Order,
    OrderStatus,
    Transaction,
    TransactionStatus,
)
from storefront.services.cart_service import CartService
from storefront.services.change_feed import ChangeFeed
from storefront.services.checkout_service import CheckoutService, validate_address
from storefront.services.notification_service import NotificationScheduler, NotificationService
from storefront.services.payment_service import RAZORPAY_MOCK_SIGNATURE, LuxePayGateway, RazorpayClient

NOW = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def gateway(fake_clock):
    return LuxePayGateway(clock=fake_clock)


@pytest.fixture
def checkout(db_session, gateway):
    return CheckoutService(db_session, gateway=gateway, razorpay=RazorpayClient(key_id="", key_secret=""))


@pytest.fixture
def address(checkout, customer, address_payload):
    _, _, address = checkout.add_address(customer.id, address_payload)
    return address


@pytest.fixture
def filled_cart(db_session, customer, products):
    CartService(db_session).add_to_cart(customer.id, products[0].id, 1, color="Red")
    return products[0]


def _authorized_session(gateway, fake_clock, amount, user_id):
    _, _, session = gateway.open_session(amount, user_id=user_id)
    gateway.select_method(session.id, "card")
    gateway.pay(session.id)
    fake_clock.advance(gateway.release_after)
    return session.id


def test_validate_address():
    assert validate_address({}) == "fullName is required"
    payload = {
        "fullName": "A",
        "phone": "1",
        "addressLine1": "x",
        "city": "c",
        "state": "s",
        "pincode": "12345",
    }
    assert validate_address(payload) == "Pincode must be 6 digits"
    payload["pincode"] = "123456"
    assert validate_address(payload) is None


def test_first_address_becomes_default(checkout, customer, address_payload):
    _, _, first = checkout.add_address(customer.id, address_payload)
    _, _, second = checkout.add_address(customer.id, dict(address_payload, city="Mysuru"))
    assert first.is_default
    assert not second.is_default

    assert checkout.delete_address(customer.id, first.id) == (True, "Address removed")
    remaining = checkout.list_addresses(customer.id)
    assert [a.city for a in remaining] == ["Mysuru"]
    assert remaining[0].is_default


def test_precondition_messages(checkout, customer, address):
    assert checkout.place_order(customer, None, "cod")[:2] == (False, "Please select a delivery address")
    assert checkout.place_order(customer, address.id, None)[:2] == (False, "Please select a payment method")
    assert checkout.place_order(None, address.id, "cod")[:2] == (False, "You must be signed in to place an order")
    assert checkout.place_order(customer, address.id, "barter")[:2] == (False, "Unsupported payment method barter")
    assert checkout.place_order(customer, "elsewhere", "cod")[:2] == (False, "Delivery address not found")
    assert checkout.place_order(customer, address.id, "cod")[:2] == (False, "Your cart is empty")


def test_cod_order_is_pending_payment(db_session, checkout, customer, address, filled_cart):
    ok, message, order = checkout.place_order(customer, address.id, "cod", now=NOW)
    assert ok
    assert message == "Order placed successfully!"

    assert order.status == OrderStatus.CONFIRMED
    assert float(order.subtotal) == 450
    assert float(order.shipping) == 99
    assert float(order.tax) == 81
    assert float(order.handling_fee) == 5
    assert float(order.total) == 635
    assert order.shipping_address["pincode"] == "560025"
    assert order.payment_details == {"method": "cod", "paid": False}
    assert order.tracking_steps[0]["completed"] is True
    assert not any(step["completed"] for step in order.tracking_steps[1:])
    assert 3 <= (order.estimated_delivery.replace(tzinfo=timezone.utc) - NOW).days <= 7

    [item] = order.items
    assert item.quantity == 1
    assert float(item.price_at_purchase) == 450
    assert item.selected_color == "Red"
    assert item.selected_size == "N/A"

    transaction = db_session.query(Transaction).filter_by(order_id=order.id).one()
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.transaction_ref.startswith("PAY-")

    notification = db_session.query(Notification).filter_by(user_id=customer.id).one()
    assert notification.type == NotificationType.ORDER_PLACED
    assert notification.body == f"Your order #{order.id[:8]} has been placed and is being processed."

    assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 0
    assert NotificationScheduler().scheduled(customer.id) == []

    tables = [event.table for event in ChangeFeed().since(0)]
    assert "orders" in tables
    assert "transactions" in tables


def test_luxepay_order_uses_authorized_result(db_session, checkout, gateway, fake_clock, customer, address, filled_cart):
    _, _, quote = checkout.quote_for_user(customer.id, "upi")
    session_id = _authorized_session(gateway, fake_clock, quote.total, customer.id)

    ok, _, order = checkout.place_order(
        customer, address.id, "upi", payment={"luxepay_session_id": session_id}, now=NOW
    )
    assert ok
    assert order.payment_details["gateway"] == "LuxePay Platinum"

    transaction = db_session.query(Transaction).filter_by(order_id=order.id).one()
    assert transaction.status == TransactionStatus.COMPLETED
    assert transaction.transaction_ref == order.payment_details["transactionId"]
    assert float(transaction.amount) == 630


def test_unpaid_online_order_is_refused(db_session, checkout, gateway, customer, address, filled_cart):
    assert checkout.place_order(customer, address.id, "upi")[:2] == (False, "Payment has not been completed")

    _, _, session = gateway.open_session(630, user_id=customer.id)
    ok, message, _ = checkout.place_order(customer, address.id, "upi", payment={"luxepay_session_id": session.id})
    assert not ok
    assert message == "Payment has not been authorized"
    assert db_session.query(Order).count() == 0


def test_razorpay_signature_is_verified(db_session, checkout, customer, address, filled_cart):
    bad = {"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_1", "razorpay_signature": "forged"}
    assert checkout.place_order(customer, address.id, "credit_card", payment=bad)[:2] == (
        False,
        "Payment verification failed",
    )

    good = dict(bad, razorpay_signature=RAZORPAY_MOCK_SIGNATURE)
    ok, _, order = checkout.place_order(customer, address.id, "credit_card", payment=good)
    assert ok
    assert order.payment_details["gateway"] == "Razorpay"
    assert order.payment_details["isMock"] is True


def test_coupon_is_applied_and_counted(db_session, checkout, customer, address, filled_cart):
    coupon = Coupon(
        code="WELCOME50",
        discount_type=DiscountType.FIXED,
        discount_value=Decimal("50"),
        min_purchase_amount=Decimal("0"),
        used_count=0,
        is_active=True,
    )
    db_session.add(coupon)
    db_session.commit()

    ok, _, order = checkout.place_order(customer, address.id, "cod", coupon_code="welcome50")
    assert ok
    assert order.coupon_code == "WELCOME50"
    assert float(order.discount) == 50
    assert float(order.total) == 585
    db_session.refresh(coupon)
    assert coupon.used_count == 1


def test_bad_coupon_blocks_order(checkout, customer, address, filled_cart):
    assert checkout.place_order(customer, address.id, "cod", coupon_code="BOGUS")[:2] == (
        False,
        "Invalid coupon code",
    )


class _BrokenNotifications(NotificationService):
    def send_order_placed(self, user_id, order_id, commit=True):
        raise SQLAlchemyError("notifications table unavailable")


def test_failure_mid_checkout_rolls_everything_back(db_session, gateway, customer, address, filled_cart):
    checkout = CheckoutService(
        db_session,
        notification_service=_BrokenNotifications(db_session),
        gateway=gateway,
    )
    ok, message, order = checkout.place_order(customer, address.id, "cod")
    assert not ok
    assert order is None
    assert message == "Order Failed: could not save your order"

    assert db_session.query(Order).count() == 0
    assert db_session.query(Transaction).count() == 0
    assert db_session.query(CartItem).filter_by(user_id=customer.id).count() == 1
    assert db_session.query(Address).count() == 1


def test_luxepay_session_of_another_shopper_is_refused(
    db_session, checkout, gateway, fake_clock, customer, other_customer, products, address_payload
):
    session_id = _authorized_session(gateway, fake_clock, 630, customer.id)
    CartService(db_session).add_to_cart(other_customer.id, products[0].id, 1)
    _, _, other_address = checkout.add_address(other_customer.id, address_payload)

    ok, message, _ = checkout.place_order(
        other_customer, other_address.id, "upi", payment={"luxepay_session_id": session_id}
    )
    assert not ok
    assert message == "Payment session belongs to another account"
    assert db_session.query(Order).count() == 0
    assert gateway.poll(session_id)["consumed"] is False


def test_failed_save_leaves_luxepay_payment_reusable(db_session, gateway, fake_clock, customer, address, filled_cart):
    broken = CheckoutService(
        db_session,
        notification_service=_BrokenNotifications(db_session),
        gateway=gateway,
    )
    _, _, quote = broken.quote_for_user(customer.id, "upi")
    session_id = _authorized_session(gateway, fake_clock, quote.total, customer.id)
    payment = {"luxepay_session_id": session_id}

    assert broken.place_order(customer, address.id, "upi", payment=payment)[:2] == (
        False,
        "Order Failed: could not save your order",
    )
    assert gateway.poll(session_id)["consumed"] is False

    ok, message, order = CheckoutService(db_session, gateway=gateway).place_order(
        customer, address.id, "upi", payment=payment
    )
    assert ok, message
    assert order.payment_details["gateway"] == "LuxePay Platinum"
    assert gateway.poll(session_id)["consumed"] is True
