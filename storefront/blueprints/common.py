"""Shared request guards and JSON serializers for the storefront blueprints."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from flask import g, jsonify, session

from storefront.database import get_db
from storefront.models import (
    Address,
    CartItem,
    Coupon,
    Notification,
    Order,
    OrderItem,
    Product,
    ProductMedia,
    Profile,
    Review,
    SavedItem,
    Transaction,
)
from storefront.services.transaction_service import payment_mode_label


def current_user() -> Optional[Profile]:
    if "current_user" in g:
        return g.current_user
    user = None
    user_id = session.get("user_id")
    if user_id:
        user = get_db().query(Profile).filter_by(id=user_id).first()
    g.current_user = user
    return user


def require_user() -> Tuple[Optional[Profile], Optional[Any]]:
    user = current_user()
    if user is None:
        return None, (jsonify({"error": "Not authenticated"}), 401)
    return user, None


def require_admin() -> Tuple[Optional[Profile], Optional[Any]]:
    user = current_user()
    if user is None:
        return None, (jsonify({"error": "Not authenticated"}), 401)
    if not user.is_admin:
        return None, (jsonify({"error": "Forbidden"}), 403)
    return user, None


def json_result(success: bool, message: str, failure_status: int = 400, **payload: Any):
    body: Dict[str, Any] = {"success": success, "message": message}
    body.update(payload)
    if not success:
        body["error"] = message
    return jsonify(body), 200 if success else failure_status


def not_found_or_bad_request(message: str) -> int:
    return 404 if "not found" in message.lower() else 400


def parse_float(value: Any) -> Optional[float]:
    """Query-string number, or None when absent. Raises ValueError when malformed."""
    if value in (None, ""):
        return None
    return float(value)


def serialize_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _money(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


# ---------------------------
# Serializers
# ---------------------------


def serialize_product(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": _money(product.price),
        "original_price": _money(product.original_price),
        "category": product.category,
        "subcategory": product.subcategory,
        "images": product.images or [],
        "video_url": product.video_url,
        "rating": _money(product.rating) or 0.0,
        "review_count": product.review_count or 0,
        "stock": product.stock,
        "tags": product.tags or [],
        "featured": bool(product.featured),
        "bestseller": bool(product.bestseller),
        "sizes": product.sizes or [],
        "colors": product.colors or [],
        "deal_of_the_day": bool(product.deal_of_the_day),
        "deal_expires_at": serialize_dt(product.deal_expires_at),
        "attributes": product.attributes or {},
        "created_at": serialize_dt(product.created_at),
    }


def serialize_products(products: List[Product]) -> List[Dict[str, Any]]:
    return [serialize_product(product) for product in products]


def serialize_media(media: ProductMedia) -> Dict[str, Any]:
    return {
        "id": media.id,
        "product_id": media.product_id,
        "type": enum_value(media.type),
        "url": media.url,
        "path": media.path,
        "is_primary": media.is_primary,
        "created_at": serialize_dt(media.created_at),
    }


def serialize_review(review: Review) -> Dict[str, Any]:
    return {
        "id": review.id,
        "product_id": review.product_id,
        "user_id": review.user_id,
        "user_name": review.user_name or "Anonymous",
        "rating": review.rating or 0,
        "comment": review.comment or "",
        "created_at": serialize_dt(review.created_at),
    }


def serialize_cart_line(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "product": serialize_product(item.product),
        "quantity": item.quantity,
        "selected_size": item.selected_size or None,
        "selected_color": item.selected_color or None,
        "line_total": round(item.line_total, 2),
        "added_at": serialize_dt(item.created_at),
    }


def serialize_saved(item: SavedItem) -> Dict[str, Any]:
    return {
        "product": serialize_product(item.product) if item.product else None,
        "saved_at": serialize_dt(item.created_at),
    }


def serialize_address(address: Address) -> Dict[str, Any]:
    return address.to_snapshot()


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "product": serialize_product(item.product) if item.product else None,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "price_at_purchase": _money(item.price_at_purchase),
        "selected_size": item.selected_size,
        "selected_color": item.selected_color,
        "line_total": round(item.line_total, 2),
    }


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "status": enum_value(order.status),
        "subtotal": _money(order.subtotal),
        "shipping": _money(order.shipping),
        "tax": _money(order.tax),
        "handling_fee": _money(order.handling_fee),
        "discount": _money(order.discount),
        "coupon_code": order.coupon_code,
        "total": _money(order.total),
        "shipping_address": order.shipping_address,
        "payment_method": order.payment_method,
        "payment_details": order.payment_details,
        "estimated_delivery": serialize_dt(order.estimated_delivery),
        "tracking_steps": order.tracking_steps or [],
        "created_at": serialize_dt(order.created_at),
        "items": [serialize_order_item(item) for item in order.items],
    }


def serialize_transaction(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "order_id": transaction.order_id,
        "user_id": transaction.user_id,
        "payment_mode": transaction.payment_mode,
        "payment_mode_label": payment_mode_label(transaction.payment_mode),
        "amount": _money(transaction.amount),
        "status": enum_value(transaction.status),
        "transaction_ref": transaction.transaction_ref,
        "timestamp": serialize_dt(transaction.timestamp),
        "receipt_url": transaction.receipt_url,
    }


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": enum_value(notification.type),
        "title": notification.title,
        "body": notification.body,
        "read": notification.read,
        "data": notification.data or {},
        "created_at": serialize_dt(notification.created_at),
    }


def serialize_profile(profile: Profile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "email": profile.email,
        "full_name": profile.full_name,
        "avatar_url": profile.avatar_url,
        "role": profile.role,
        "created_at": serialize_dt(profile.created_at),
    }


def serialize_coupon(coupon: Coupon) -> Dict[str, Any]:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "discount_type": enum_value(coupon.discount_type),
        "discount_value": _money(coupon.discount_value),
        "min_purchase_amount": _money(coupon.min_purchase_amount) or 0.0,
        "start_date": serialize_dt(coupon.start_date),
        "end_date": serialize_dt(coupon.end_date),
        "usage_limit": coupon.usage_limit,
        "used_count": coupon.used_count or 0,
        "is_active": bool(coupon.is_active),
        "created_at": serialize_dt(coupon.created_at),
    }
