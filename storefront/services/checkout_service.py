from __future__ import annotations

import logging
import random
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.models import (
    Address,
    NotificationType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMode,
    Profile,
    Transaction,
    TransactionStatus,
)
from storefront.observability import increment_counter, record_event, timed
from storefront.services.cart_service import CartService, CartSnapshot
from storefront.services.change_feed import publish_change
from storefront.services.notification_service import NotificationScheduler, NotificationService
from storefront.services.order_service import estimate_delivery, generate_tracking_steps
from storefront.services.payment_service import LuxePayGateway, RazorpayClient, get_luxepay_gateway
from storefront.services.pricing_service import PriceQuote, PricingService

PINCODE_PATTERN = re.compile(r"^\d{6}$")

ADDRESS_FIELDS = {
    "fullName": "full_name",
    "phone": "phone",
    "addressLine1": "address_line1",
    "addressLine2": "address_line2",
    "city": "city",
    "state": "state",
    "pincode": "pincode",
}
REQUIRED_ADDRESS_FIELDS = ("fullName", "phone", "addressLine1", "city", "state", "pincode")


def validate_address(data: Dict[str, Any]) -> Optional[str]:
    """Return the first problem with a submitted address, or None."""
    for key in REQUIRED_ADDRESS_FIELDS:
        if not str(data.get(key) or "").strip():
            return f"{key} is required"
    if not PINCODE_PATTERN.match(str(data.get("pincode")).strip()):
        return "Pincode must be 6 digits"
    return None


class CheckoutService:
    """
    Turns a cart into an order.

    The order row, its items, the transaction and the confirmation
    notification are written in one database transaction together with the
    coupon bookkeeping and the cart clear-out. Any failure rolls all of it
    back.
    """

    def __init__(
        self,
        db_session: Session,
        pricing_service: Optional[PricingService] = None,
        cart_service: Optional[CartService] = None,
        notification_service: Optional[NotificationService] = None,
        gateway: Optional[LuxePayGateway] = None,
        razorpay: Optional[RazorpayClient] = None,
        scheduler: Optional[NotificationScheduler] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.pricing = pricing_service or PricingService(db_session)
        self.scheduler = scheduler or NotificationScheduler()
        self.cart = cart_service or CartService(db_session, scheduler=self.scheduler)
        self.notifications = notification_service or NotificationService(db_session)
        self.gateway = gateway or get_luxepay_gateway()
        self.razorpay = razorpay or RazorpayClient()
        self.rng = rng

    # ------------------------------------------------------------------
    # Addresses
    # ------------------------------------------------------------------
    def list_addresses(self, user_id: str) -> List[Address]:
        return (
            self.db.query(Address)
            .filter_by(user_id=user_id)
            .order_by(Address.is_default.desc(), Address.full_name.asc())
            .all()
        )

    def add_address(self, user_id: str, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Address]]:
        problem = validate_address(data)
        if problem:
            return False, problem, None

        has_addresses = self.db.query(Address.id).filter_by(user_id=user_id).first() is not None
        make_default = not has_addresses or bool(data.get("isDefault"))
        if make_default and has_addresses:
            self.db.query(Address).filter_by(user_id=user_id).update(
                {Address.is_default: False}, synchronize_session="fetch"
            )

        address = Address(
            user_id=user_id,
            is_default=make_default,
            **{column: (str(data.get(key)).strip() if data.get(key) else None) for key, column in ADDRESS_FIELDS.items()},
        )
        self.db.add(address)
        self.db.commit()
        return True, "Address saved", address

    def delete_address(self, user_id: str, address_id: str) -> Tuple[bool, str]:
        address = self.db.query(Address).filter_by(id=address_id, user_id=user_id).first()
        if not address:
            return False, "Address not found"
        was_default = address.is_default
        self.db.delete(address)
        self.db.flush()
        if was_default:
            replacement = self.db.query(Address).filter_by(user_id=user_id).first()
            if replacement:
                replacement.is_default = True
        self.db.commit()
        return True, "Address removed"

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def quote_for_user(
        self,
        user_id: str,
        payment_method: Optional[str] = None,
        coupon_code: Optional[str] = None,
    ) -> Tuple[bool, str, PriceQuote]:
        snapshot = self.cart.get_cart(user_id)
        return self.pricing.quote(snapshot.cart_total, payment_method, coupon_code)

    def place_order(
        self,
        user: Optional[Profile],
        address_id: Optional[str],
        payment_method: Optional[str],
        coupon_code: Optional[str] = None,
        payment: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[Order]]:
        if not address_id:
            return False, "Please select a delivery address", None
        if not payment_method:
            return False, "Please select a payment method", None
        if user is None:
            return False, "You must be signed in to place an order", None
        try:
            mode = PaymentMode(payment_method)
        except ValueError:
            return False, f"Unsupported payment method {payment_method}", None

        address = self.db.query(Address).filter_by(id=address_id, user_id=user.id).first()
        if not address:
            return False, "Delivery address not found", None

        snapshot = self.cart.get_cart(user.id)
        if snapshot.is_empty:
            return False, "Your cart is empty", None

        coupon_ok, coupon_message, quote = self.pricing.quote(
            snapshot.cart_total, mode.value, coupon_code, now=now
        )
        if coupon_code and not coupon_ok:
            return False, coupon_message, None

        payment = payment or {}
        luxepay_session_id = None
        if mode == PaymentMode.COD:
            payment_details: Dict[str, Any] = {"method": "cod", "paid": False}
        else:
            paid, message, payment_details = self._collect_payment(payment, quote.total, user.id)
            if not paid:
                increment_counter("checkout_failures_total", labels={"reason": "payment"})
                return False, message, None
            luxepay_session_id = payment.get("luxepay_session_id")

        placed, message, order = self.finalize_order(
            user.id, snapshot, address, mode, quote, payment_details, now=now
        )
        if not placed and luxepay_session_id:
            # Nothing was saved, so the authorization stays usable
            self.gateway.restore(luxepay_session_id)
        return placed, message, order

    def _collect_payment(
        self,
        payment: Dict[str, Any],
        amount: float,
        user_id: str,
    ) -> Tuple[bool, str, Dict[str, Any]]:
        session_id = payment.get("luxepay_session_id")
        if session_id:
            ok, message, result = self.gateway.consume(session_id, amount, user_id=user_id)
            return ok, message, result or {}

        order_id = payment.get("razorpay_order_id")
        payment_id = payment.get("razorpay_payment_id")
        signature = payment.get("razorpay_signature")
        if payment_id:
            if not self.razorpay.verify_signature(order_id, payment_id, signature):
                self.logger.warning("Razorpay signature mismatch", extra={"razorpay_order_id": order_id})
                return False, "Payment verification failed", {}
            return True, "Payment verified", {
                "gateway": "Razorpay",
                "transactionId": payment_id,
                "orderId": order_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "status": "Authorized",
                "isMock": self.razorpay.is_mock,
            }

        return False, "Payment has not been completed", {}

    def finalize_order(
        self,
        user_id: str,
        snapshot: CartSnapshot,
        address: Address,
        mode: PaymentMode,
        quote: PriceQuote,
        payment_details: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[Order]]:
        now = now or datetime.now(timezone.utc)
        paid = mode != PaymentMode.COD
        try:
            with timed("checkout_finalize_ms"):
                order = Order(
                    user_id=user_id,
                    status=OrderStatus.CONFIRMED,
                    subtotal=quote.subtotal,
                    shipping=quote.shipping,
                    tax=quote.tax,
                    handling_fee=quote.handling_fee,
                    discount=quote.discount,
                    coupon_code=quote.coupon_code,
                    total=quote.total,
                    shipping_address=address.to_snapshot(),
                    payment_method=mode.value,
                    payment_details=payment_details,
                    estimated_delivery=estimate_delivery(now, self.rng),
                    tracking_steps=generate_tracking_steps(now),
                    created_at=now,
                )
                self.db.add(order)
                self.db.flush()

                for line in snapshot.items:
                    self.db.add(
                        OrderItem(
                            order_id=order.id,
                            product_id=line.product_id,
                            quantity=line.quantity,
                            price_at_purchase=line.product.price,
                            selected_size=line.selected_size or "N/A",
                            selected_color=line.selected_color or "N/A",
                        )
                    )

                transaction = Transaction(
                    order_id=order.id,
                    user_id=user_id,
                    payment_mode=mode.value,
                    amount=quote.total,
                    status=TransactionStatus.COMPLETED if paid else TransactionStatus.PENDING,
                    transaction_ref=payment_details.get("transactionId") or f"PAY-{int(time.time() * 1000)}",
                    timestamp=now,
                )
                self.db.add(transaction)

                self.notifications.send_order_placed(user_id, order.id, commit=False)
                self.pricing.record_coupon_use(quote.coupon_code)
                self.cart.clear_cart(user_id, commit=False)
                self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Order placement failed", extra={"checkout_user_id": user_id})
            increment_counter("checkout_failures_total", labels={"reason": "database"})
            return False, "Order Failed: could not save your order", None

        self.scheduler.cancel_by_type(NotificationType.CART_ABANDONMENT, user_id=user_id)
        increment_counter("orders_placed_total", labels={"payment_mode": mode.value})
        record_event(
            "order_placed",
            {"order_id": order.id, "user_id": user_id, "total": quote.total, "payment_mode": mode.value},
        )
        publish_change("orders", "INSERT", order.id, {"status": order.status.value, "total": quote.total})
        publish_change("transactions", "INSERT", transaction.id, {"order_id": order.id, "status": transaction.status.value})
        self.logger.info(
            "Order %s placed",
            order.id,
            extra={"payment_mode": mode.value, "total": quote.total, "items": len(snapshot.items)},
        )
        return True, "Order placed successfully!", order
