from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from storefront.config import Config
from storefront.models import (
    NotificationType,
    Order,
    OrderItem,
    OrderStatus,
    Transaction,
    TransactionStatus,
)
from storefront.observability import increment_counter, record_event
from storefront.services.cart_service import CartService
from storefront.services.change_feed import publish_change
from storefront.services.notification_service import NotificationService
from storefront.services.pricing_service import format_price

TRACKING_TEMPLATE = (
    (OrderStatus.CONFIRMED, "Order Confirmed", "Your order has been placed successfully"),
    (OrderStatus.PROCESSING, "Processing", "Seller is preparing your order"),
    (OrderStatus.SHIPPED, "Shipped", "Your order is on the way"),
    (OrderStatus.OUT_FOR_DELIVERY, "Out for Delivery", "Your order is out for delivery"),
    (OrderStatus.DELIVERED, "Delivered", "Order delivered successfully"),
)
_TRACKING_ORDER = [status.value for status, _, _ in TRACKING_TEMPLATE]

CANCELLABLE_STATUSES = {OrderStatus.CONFIRMED, OrderStatus.PROCESSING}


def generate_tracking_steps(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Fresh timeline for a new order: only the confirmation is complete."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    steps = []
    for index, (status, title, description) in enumerate(TRACKING_TEMPLATE):
        step: Dict[str, Any] = {
            "status": status.value,
            "title": title,
            "description": description,
            "completed": index == 0,
        }
        if index == 0:
            step["timestamp"] = stamp
        steps.append(step)
    return steps


def advance_tracking(
    steps: Optional[List[Dict[str, Any]]],
    status: OrderStatus,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Mark every step up to ``status`` complete. Cancelling leaves the timeline as is."""
    current = [dict(step) for step in (steps or generate_tracking_steps(now))]
    if status.value not in _TRACKING_ORDER:
        return current
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    reached = _TRACKING_ORDER.index(status.value)
    for step in current:
        if step.get("status") not in _TRACKING_ORDER:
            continue
        if _TRACKING_ORDER.index(step["status"]) <= reached and not step.get("completed"):
            step["completed"] = True
            step["timestamp"] = stamp
    return current


def estimate_delivery(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> datetime:
    rng = rng or random
    days = rng.randint(Config.DELIVERY_MIN_DAYS, Config.DELIVERY_MAX_DAYS)
    return (now or datetime.now(timezone.utc)) + timedelta(days=days)


def _coerce_status(status: OrderStatus | str) -> OrderStatus:
    if isinstance(status, OrderStatus):
        return status
    return OrderStatus(str(status).strip().lower())


class OrderService:
    """Order history, tracking and the status lifecycle after checkout."""

    def __init__(
        self,
        db_session: Session,
        notification_service: Optional[NotificationService] = None,
        cart_service: Optional[CartService] = None,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.notifications = notification_service or NotificationService(db_session)
        self.cart_service = cart_service or CartService(db_session)

    def _base_query(self):
        return self.db.query(Order).options(
            selectinload(Order.items).selectinload(OrderItem.product)
        )

    def list_orders(self, user_id: str) -> List[Order]:
        return (
            self._base_query()
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .all()
        )

    def get_order(self, order_id: str, user_id: Optional[str] = None) -> Optional[Order]:
        query = self._base_query().filter(Order.id == order_id)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        return query.first()

    def search_orders(self, search: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        """Admin order list. ``status`` of ``ALL`` (or empty) means every status."""
        orders = self._base_query().order_by(Order.created_at.desc()).all()
        wanted_status = (status or "ALL").strip().lower()
        term = (search or "").strip().lower()

        def _matches(order: Order) -> bool:
            if wanted_status != "all" and order.status.value != wanted_status:
                return False
            if not term:
                return True
            address = order.shipping_address or {}
            return (
                term in (order.id or "").lower()
                or term in str(address.get("fullName") or "").lower()
                or term in str(address.get("email") or "").lower()
            )

        return [order for order in orders if _matches(order)]

    # ------------------------------------------------------------------
    # Customer actions
    # ------------------------------------------------------------------
    def cancel_order(self, user_id: str, order_id: str) -> Tuple[bool, str, Optional[Order]]:
        order = self.get_order(order_id, user_id=user_id)
        if not order:
            return False, "Order not found", None
        if order.status not in CANCELLABLE_STATUSES:
            return False, f"Orders that are {order.status.value.replace('_', ' ')} cannot be cancelled", order

        order.status = OrderStatus.CANCELLED
        (
            self.db.query(Transaction)
            .filter(Transaction.order_id == order.id)
            .filter(Transaction.status == TransactionStatus.COMPLETED)
            .update({Transaction.status: TransactionStatus.REFUNDED}, synchronize_session="fetch")
        )
        self.notifications.send_order_update(user_id, order.id, OrderStatus.CANCELLED.value, commit=False)
        self.db.commit()

        increment_counter("orders_cancelled_total", labels={"actor": "customer"})
        publish_change("orders", "UPDATE", order.id, {"status": order.status.value})
        self.logger.info("Order %s cancelled by customer", order.id)
        return True, "Order cancelled successfully", order

    def request_return(self, user_id: str, order_id: str) -> Tuple[bool, str, Optional[Order]]:
        order = self.get_order(order_id, user_id=user_id)
        if not order:
            return False, "Order not found", None
        if order.status != OrderStatus.DELIVERED:
            return False, "Only delivered orders can be returned", order

        self.notifications.create(
            user_id,
            NotificationType.ORDER_UPDATE,
            "Return Requested",
            f"Return request for order #{order.short_id} submitted! Our executive will contact you.",
            data={"orderId": order.id, "status": "return_requested"},
        )
        increment_counter("order_returns_requested_total")
        record_event("order_return_requested", {"order_id": order.id, "user_id": user_id})
        return True, "Return request submitted! Our executive will contact you.", order

    def reorder(self, user_id: str, order_id: str) -> Tuple[bool, str, int]:
        order = self.get_order(order_id, user_id=user_id)
        if not order:
            return False, "Order not found", 0

        added = 0
        for item in order.items:
            if item.product is None:
                continue
            success, _, _ = self.cart_service.add_to_cart(
                user_id,
                item.product_id,
                item.quantity,
                size=None if item.selected_size in (None, "N/A") else item.selected_size,
                color=None if item.selected_color in (None, "N/A") else item.selected_color,
            )
            if success:
                added += 1
        if not added:
            return False, "None of these items are available anymore", 0
        return True, "All items added to cart for reorder!", added

    @staticmethod
    def invoice_text(order: Order) -> str:
        address = order.shipping_address or {}
        lines = [
            f"{Config.APP_NAME} - Tax Invoice",
            f"Order: #{order.short_id}",
            f"Placed: {order.created_at:%d %b %Y}" if order.created_at else "Placed: -",
            f"Status: {order.status.value.replace('_', ' ').title()}",
            "",
            "Ship to:",
            f"  {address.get('fullName', '')}",
            f"  {address.get('addressLine1', '')}",
        ]
        if address.get("addressLine2"):
            lines.append(f"  {address['addressLine2']}")
        lines.extend([
            f"  {address.get('city', '')}, {address.get('state', '')} - {address.get('pincode', '')}",
            f"  Phone: {address.get('phone', '')}",
            "",
            "Items:",
        ])
        for item in order.items:
            name = item.product.name if item.product else "Unavailable product"
            lines.append(
                f"  {name} x{item.quantity} @ {format_price(item.price_at_purchase)} = {format_price(item.line_total)}"
            )
        lines.extend([
            "",
            f"Subtotal: {format_price(order.subtotal)}",
            f"Shipping: {'FREE' if not float(order.shipping or 0) else format_price(order.shipping)}",
            f"Tax: {format_price(order.tax)}",
        ])
        if float(order.handling_fee or 0):
            lines.append(f"Handling fee: {format_price(order.handling_fee)}")
        if float(order.discount or 0):
            code = f" ({order.coupon_code})" if order.coupon_code else ""
            lines.append(f"Discount{code}: -{format_price(order.discount)}")
        lines.extend([
            f"Total: {format_price(order.total)}",
            f"Payment: {(order.payment_method or '').upper()}",
        ])
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def update_status(
        self,
        order_id: str,
        status: OrderStatus | str,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[Order]]:
        try:
            new_status = _coerce_status(status)
        except ValueError:
            return False, f"Unknown order status {status}", None

        order = self.get_order(order_id)
        if not order:
            return False, "Order not found", None

        old_status = order.status
        order.status = new_status
        order.tracking_steps = advance_tracking(order.tracking_steps, new_status, now)
        if order.user_id:
            self.notifications.send_order_update(order.user_id, order.id, new_status.value, commit=False)
        self.db.commit()

        increment_counter(
            "order_status_transitions_total",
            labels={"from_status": old_status.value, "to_status": new_status.value},
        )
        publish_change("orders", "UPDATE", order.id, {"status": new_status.value, "previous": old_status.value})
        self.logger.info(
            "Order %s status updated",
            order.id,
            extra={"from_status": old_status.value, "to_status": new_status.value},
        )
        return True, f"Order status updated to {new_status.value}", order
