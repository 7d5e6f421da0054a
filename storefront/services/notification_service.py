"""
Notification Service

Persistent per-user notifications (order updates, promotions, cart
reminders) plus a lightweight in-memory scheduler for reminders that fire
later, such as the cart-abandonment nudge.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Notification, NotificationType, Profile, Role
from storefront.observability import increment_counter, record_event
from storefront.observability.business_metrics import as_utc
from storefront.services.pricing_service import format_price

ORDER_STATUS_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "confirmed": (
        "Order Confirmed!",
        "Your order #{order_id} has been confirmed and is being prepared.",
    ),
    "shipped": (
        "Your Order is On Its Way!",
        "Great news! Order #{order_id} has been shipped and is on its way to you.",
    ),
    "delivered": (
        "Delivery Complete!",
        "Your order #{order_id} has been delivered. Enjoy your purchase!",
    ),
    "cancelled": (
        "Order Cancelled",
        "Order #{order_id} has been cancelled. Refund will be processed within 3-5 days.",
    ),
}
_FALLBACK_TEMPLATE = ("Order Update", "Your order #{order_id} status has been updated to: {status}")


def order_update_message(order_id: str, status: str) -> Tuple[str, str]:
    title, body = ORDER_STATUS_TEMPLATES.get(status, _FALLBACK_TEMPLATE)
    return title, body.format(order_id=order_id, status=status)


class NotificationService:
    """Database-backed notifications for a signed-in shopper."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def create(
        self,
        user_id: Optional[str],
        notification_type: NotificationType | str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> Notification:
        """
        Store a notification for ``user_id``.

        With ``commit=False`` the row is only flushed, so the caller can keep
        it inside a larger unit of work (checkout does this).
        """
        type_enum = (
            notification_type
            if isinstance(notification_type, NotificationType)
            else NotificationType(notification_type)
        )
        notification = Notification(
            user_id=user_id,
            type=type_enum,
            title=title,
            body=body,
            data=data or {},
            read=False,
        )
        self.db.add(notification)
        if commit:
            self.db.commit()
        else:
            self.db.flush()

        increment_counter("notifications_created_total", labels={"type": type_enum.value})
        self.logger.info("Notification created for user %s: %s", user_id, title)
        return notification

    def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        query = self.db.query(Notification).filter_by(user_id=user_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        return (
            query.order_by(Notification.created_at.desc())
            .limit(limit or Config.NOTIFICATION_PAGE_SIZE)
            .all()
        )

    def unread_count(self, user_id: str) -> int:
        return (
            self.db.query(Notification)
            .filter_by(user_id=user_id)
            .filter(Notification.read.is_(False))
            .count()
        )

    def mark_as_read(self, user_id: str, notification_id: str) -> bool:
        notification = (
            self.db.query(Notification)
            .filter_by(id=notification_id, user_id=user_id)
            .first()
        )
        if not notification:
            return False
        notification.read = True
        self.db.commit()
        return True

    def mark_all_as_read(self, user_id: str) -> int:
        count = (
            self.db.query(Notification)
            .filter_by(user_id=user_id)
            .filter(Notification.read.is_(False))
            .update({Notification.read: True}, synchronize_session=False)
        )
        self.db.commit()
        return count

    def delete(self, user_id: str, notification_id: str) -> bool:
        deleted = (
            self.db.query(Notification)
            .filter_by(id=notification_id, user_id=user_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return bool(deleted)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    def send_order_placed(self, user_id: str, order_id: str, commit: bool = True) -> Notification:
        return self.create(
            user_id,
            NotificationType.ORDER_PLACED,
            "Order Placed Successfully",
            f"Your order #{order_id[:8]} has been placed and is being processed.",
            data={"orderId": order_id},
            commit=commit,
        )

    def send_order_update(
        self,
        user_id: str,
        order_id: str,
        status: str,
        commit: bool = True,
    ) -> Notification:
        title, body = order_update_message(order_id[:8], status)
        return self.create(
            user_id,
            NotificationType.ORDER_UPDATE,
            title,
            body,
            data={"orderId": order_id, "status": status},
            commit=commit,
        )

    def send_promotion(
        self,
        campaign_id: str,
        title: str,
        body: str,
        discount: Optional[str] = None,
    ) -> int:
        """Fan a promotion out to every customer. Returns how many were sent."""
        customer_ids = [
            user_id
            for (user_id,) in self.db.query(Profile.id).filter(Profile.role == Role.CUSTOMER.value)
        ]
        for user_id in customer_ids:
            self.db.add(
                Notification(
                    user_id=user_id,
                    type=NotificationType.PROMOTION,
                    title=title,
                    body=body,
                    data={"campaignId": campaign_id, "discount": discount},
                    read=False,
                )
            )
        self.db.commit()

        increment_counter(
            "notifications_created_total",
            amount=len(customer_ids),
            labels={"type": NotificationType.PROMOTION.value},
        )
        record_event("promotion_sent", {"campaign_id": campaign_id, "recipients": len(customer_ids)})
        self.logger.info("Promotion %s sent to %d customers", campaign_id, len(customer_ids))
        return len(customer_ids)


@dataclass
class ScheduledNotification:
    id: str
    user_id: str
    notification_type: str
    title: str
    body: str
    fire_at: datetime
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.notification_type,
            "title": self.title,
            "body": self.body,
            "fire_at": self.fire_at.isoformat(),
            "data": self.data,
        }


class NotificationScheduler:
    """
    Process-local queue of notifications that fire later.

    Due entries are persisted by ``dispatch_due``, which the notifications
    endpoint calls before listing. Nothing survives a restart.
    """

    _instance: Optional["NotificationScheduler"] = None
    _lock: Lock = Lock()

    def __new__(cls) -> "NotificationScheduler":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._pending: Dict[str, ScheduledNotification] = {}
        self.logger = logging.getLogger(__name__)
        self._initialized = True

    def schedule(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        title: str,
        body: str,
        delay_minutes: float,
        data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> str:
        now = as_utc(now or datetime.now(timezone.utc))
        type_value = NotificationType(notification_type).value
        scheduled_id = f"notif-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"
        entry = ScheduledNotification(
            id=scheduled_id,
            user_id=user_id,
            notification_type=type_value,
            title=title,
            body=body,
            fire_at=now + timedelta(minutes=delay_minutes),
            data=dict(data or {}),
        )
        with self._lock:
            self._pending[scheduled_id] = entry
        increment_counter("notifications_scheduled_total", labels={"type": type_value})
        return scheduled_id

    def cancel(self, scheduled_id: str) -> bool:
        with self._lock:
            return self._pending.pop(scheduled_id, None) is not None

    def cancel_by_type(self, notification_type: NotificationType | str, user_id: Optional[str] = None) -> int:
        type_value = NotificationType(notification_type).value
        with self._lock:
            doomed = [
                key
                for key, entry in self._pending.items()
                if entry.notification_type == type_value and (user_id is None or entry.user_id == user_id)
            ]
            for key in doomed:
                del self._pending[key]
        return len(doomed)

    def scheduled(self, user_id: Optional[str] = None) -> List[ScheduledNotification]:
        with self._lock:
            entries = [e for e in self._pending.values() if user_id is None or e.user_id == user_id]
        return sorted(entries, key=lambda e: e.fire_at)

    def schedule_cart_reminder(
        self,
        user_id: str,
        cart_value: float,
        item_count: int,
        now: Optional[datetime] = None,
    ) -> str:
        # Only the latest cart state is worth a reminder
        self.cancel_by_type(NotificationType.CART_ABANDONMENT, user_id=user_id)
        plural = "s" if item_count > 1 else ""
        return self.schedule(
            user_id,
            NotificationType.CART_ABANDONMENT,
            "Don't forget your items!",
            f"You have {item_count} item{plural} worth {format_price(cart_value)} waiting in your cart.",
            Config.CART_REMINDER_DELAY_MINUTES,
            data={"cartValue": round(cart_value, 2), "itemCount": item_count},
            now=now,
        )

    def dispatch_due(self, db_session: Session, now: Optional[datetime] = None) -> List[Notification]:
        now = as_utc(now or datetime.now(timezone.utc))
        with self._lock:
            due = [entry for entry in self._pending.values() if entry.fire_at <= now]
            for entry in due:
                del self._pending[entry.id]
        if not due:
            return []

        service = NotificationService(db_session)
        created = [
            service.create(
                entry.user_id,
                entry.notification_type,
                entry.title,
                entry.body,
                data=entry.data,
                commit=False,
            )
            for entry in sorted(due, key=lambda e: e.fire_at)
        ]
        db_session.commit()
        self.logger.info("Dispatched %d scheduled notifications", len(created))
        return created

    def reset(self) -> None:
        """Testing helper."""
        with self._lock:
            self._pending.clear()
