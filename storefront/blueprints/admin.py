from __future__ import annotations

import uuid
from typing import Any, Dict

from flask import Blueprint, jsonify, request

from storefront.config import Config
from storefront.database import get_db
from storefront.observability import record_event
from storefront.services.admin_service import AdminService
from storefront.services.catalog_service import CatalogService
from storefront.services.change_feed import ChangeFeed
from storefront.services.media_service import MediaService
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from storefront.services.profile_service import ProfileService
from storefront.services.transaction_service import TransactionFilter, TransactionService

from .common import (
    json_result,
    not_found_or_bad_request,
    require_admin,
    serialize_coupon,
    serialize_media,
    serialize_order,
    serialize_product,
    serialize_products,
    serialize_profile,
    serialize_review,
    serialize_transaction,
)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or request.form.to_dict()


@admin_bp.before_request
def _admin_only():
    _, error = require_admin()
    if error:
        return error
    return None


# ---------------------------
# Dashboard
# ---------------------------


@admin_bp.route("/dashboard", methods=["GET"])
def dashboard():
    summary = AdminService(get_db()).dashboard()
    summary["recent_orders"] = [serialize_order(order) for order in summary["recent_orders"]]
    return jsonify(summary)


@admin_bp.route("/analytics", methods=["GET"])
def analytics():
    return jsonify(AdminService(get_db()).analytics())


# ---------------------------
# Orders
# ---------------------------


@admin_bp.route("/orders", methods=["GET"])
def list_orders():
    orders = OrderService(get_db()).search_orders(request.args.get("q"), request.args.get("status"))
    return jsonify({"orders": [serialize_order(order) for order in orders], "count": len(orders)})


@admin_bp.route("/orders/<order_id>/status", methods=["POST"])
def update_order_status(order_id: str):
    success, message, order = OrderService(get_db()).update_status(order_id, _payload().get("status") or "")
    if not success:
        return json_result(False, message, not_found_or_bad_request(message))
    return json_result(True, message, order=serialize_order(order))


# ---------------------------
# Products and media
# ---------------------------


@admin_bp.route("/products", methods=["GET"])
def list_products():
    products = CatalogService(get_db()).list_products(search=request.args.get("q"))
    return jsonify({"products": serialize_products(products)})


@admin_bp.route("/products", methods=["POST"])
def create_product():
    success, message, product = CatalogService(get_db()).create_product(_payload())
    if not success:
        return json_result(False, message)
    return jsonify({"success": True, "message": message, "product": serialize_product(product)}), 201


@admin_bp.route("/products/<product_id>", methods=["PATCH", "PUT"])
def update_product(product_id: str):
    success, message, product = CatalogService(get_db()).update_product(product_id, _payload())
    if not success:
        return json_result(False, message, not_found_or_bad_request(message))
    return json_result(True, message, product=serialize_product(product))


@admin_bp.route("/products/<product_id>", methods=["DELETE"])
def delete_product(product_id: str):
    success, message = CatalogService(get_db()).delete_product(product_id)
    return json_result(success, message, 404)


@admin_bp.route("/products/low-stock", methods=["GET"])
def low_stock_products():
    try:
        threshold = int(request.args.get("threshold", Config.LOW_STOCK_THRESHOLD))
    except ValueError:
        return jsonify({"error": "Threshold must be a whole number"}), 400
    products = CatalogService(get_db()).low_stock(threshold)
    return jsonify({"threshold": threshold, "products": serialize_products(products)})


@admin_bp.route("/products/<product_id>/media", methods=["POST"])
def upload_product_media(product_id: str):
    form = request.form
    success, message, media = MediaService(get_db()).upload_media(
        product_id,
        form.get("category"),
        request.files.get("file"),
        media_type=form.get("type") or "image",
        is_primary=form.get("is_primary") in ("1", "true", "on"),
    )
    if not success:
        return json_result(False, message, not_found_or_bad_request(message))
    return jsonify({"success": True, "message": message, "media": serialize_media(media)}), 201


@admin_bp.route("/products/<product_id>/media/<media_id>/primary", methods=["POST"])
def set_primary_media(product_id: str, media_id: str):
    success, message = MediaService(get_db()).set_primary(product_id, media_id)
    return json_result(success, message, 404)


@admin_bp.route("/media/<media_id>", methods=["DELETE"])
def delete_media(media_id: str):
    success, message = MediaService(get_db()).delete_media(media_id)
    return json_result(success, message, 404)


# ---------------------------
# Coupons
# ---------------------------


@admin_bp.route("/coupons", methods=["GET"])
def list_coupons():
    coupons = AdminService(get_db()).list_coupons()
    return jsonify({"coupons": [serialize_coupon(coupon) for coupon in coupons]})


@admin_bp.route("/coupons", methods=["POST"])
def create_coupon():
    success, message, coupon = AdminService(get_db()).create_coupon(_payload())
    if not success:
        return json_result(False, message, 409 if "already exists" in message else 400)
    return jsonify({"success": True, "message": message, "coupon": serialize_coupon(coupon)}), 201


@admin_bp.route("/coupons/<coupon_id>", methods=["DELETE"])
def delete_coupon(coupon_id: str):
    success, message = AdminService(get_db()).delete_coupon(coupon_id)
    return json_result(success, message, 404)


# ---------------------------
# Customers
# ---------------------------


@admin_bp.route("/customers", methods=["GET"])
def list_customers():
    profiles = ProfileService(get_db()).list_profiles(request.args.get("q"))
    return jsonify({"customers": [serialize_profile(profile) for profile in profiles]})


@admin_bp.route("/customers/<user_id>/role", methods=["POST"])
def set_customer_role(user_id: str):
    success, message, profile = ProfileService(get_db()).set_role(user_id, _payload().get("role") or "")
    if not success:
        return json_result(False, message, not_found_or_bad_request(message))
    return json_result(True, message, customer=serialize_profile(profile))


# ---------------------------
# Reviews
# ---------------------------


@admin_bp.route("/reviews", methods=["GET"])
def list_reviews():
    reviews = CatalogService(get_db()).all_reviews()
    return jsonify({"reviews": [serialize_review(review) for review in reviews]})


@admin_bp.route("/reviews/<review_id>", methods=["DELETE"])
def delete_review(review_id: str):
    success, message = CatalogService(get_db()).delete_review(review_id)
    return json_result(success, message, 404)


# ---------------------------
# Transactions
# ---------------------------


@admin_bp.route("/transactions", methods=["GET"])
def list_transactions():
    try:
        filters = TransactionFilter.from_args(request.args.to_dict())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    service = TransactionService(get_db())
    transactions = service.list_transactions(filters=filters)
    return jsonify({
        "transactions": [serialize_transaction(transaction) for transaction in transactions],
        "stats": service.stats().to_dict(),
    })


# ---------------------------
# Settings
# ---------------------------


@admin_bp.route("/settings", methods=["GET"])
def get_settings():
    return jsonify(AdminService(get_db()).get_settings())


@admin_bp.route("/settings", methods=["POST", "PUT"])
def save_settings():
    success, message, settings = AdminService(get_db()).save_settings(request.get_json(silent=True) or {})
    if not success:
        return json_result(False, message, settings=settings)
    return json_result(True, message, settings=settings)


# ---------------------------
# Promotions and change feed
# ---------------------------


@admin_bp.route("/promotions", methods=["POST"])
def send_promotion():
    data = _payload()
    title = (data.get("title") or "").strip()
    body = (data.get("body") or "").strip()
    if not title or not body:
        return json_result(False, "Title and message are required")
    campaign_id = data.get("campaign_id") or uuid.uuid4().hex[:12]
    sent = NotificationService(get_db()).send_promotion(campaign_id, title, body, data.get("discount"))
    record_event("promotion_requested", {"campaign_id": campaign_id})
    return json_result(True, f"Promotion sent to {sent} customers", campaign_id=campaign_id, recipients=sent)


@admin_bp.route("/changes", methods=["GET"])
def changes():
    try:
        cursor = int(request.args.get("since", 0))
    except ValueError:
        return jsonify({"error": "since must be a whole number"}), 400
    tables = [table for table in (request.args.get("tables") or "").split(",") if table]
    feed = ChangeFeed()
    events = feed.since(cursor, tables or None)
    return jsonify({"events": [event.to_dict() for event in events], "cursor": feed.cursor})
