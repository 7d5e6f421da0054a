from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from storefront.database import get_db
from storefront.services.notification_service import NotificationScheduler, NotificationService
from storefront.services.order_service import OrderService
from storefront.services.transaction_service import TransactionFilter, TransactionService

from .common import (
    json_result,
    require_user,
    serialize_notification,
    serialize_order,
    serialize_transaction,
)

orders_bp = Blueprint("orders", __name__, url_prefix="/api")


def _download(body: str, filename: str, mimetype: str = "text/plain") -> Response:
    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------
# Orders
# ---------------------------


@orders_bp.route("/orders", methods=["GET"])
def list_orders():
    user, error = require_user()
    if error:
        return error
    orders = OrderService(get_db()).list_orders(user.id)
    return jsonify({"orders": [serialize_order(order) for order in orders]})


@orders_bp.route("/orders/<order_id>", methods=["GET"])
def order_detail(order_id: str):
    user, error = require_user()
    if error:
        return error
    order = OrderService(get_db()).get_order(order_id, user_id=user.id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": serialize_order(order)})


@orders_bp.route("/orders/<order_id>/cancel", methods=["POST"])
def cancel_order(order_id: str):
    user, error = require_user()
    if error:
        return error
    success, message, order = OrderService(get_db()).cancel_order(user.id, order_id)
    if not success:
        return json_result(False, message, 404 if order is None else 409)
    return json_result(True, message, order=serialize_order(order))


@orders_bp.route("/orders/<order_id>/return", methods=["POST"])
def request_return(order_id: str):
    user, error = require_user()
    if error:
        return error
    success, message, order = OrderService(get_db()).request_return(user.id, order_id)
    if not success:
        return json_result(False, message, 404 if order is None else 409)
    return json_result(True, message)


@orders_bp.route("/orders/<order_id>/reorder", methods=["POST"])
def reorder(order_id: str):
    user, error = require_user()
    if error:
        return error
    success, message, added = OrderService(get_db()).reorder(user.id, order_id)
    if not success:
        return json_result(False, message, 404 if message == "Order not found" else 409)
    return json_result(True, message, items_added=added)


@orders_bp.route("/orders/<order_id>/invoice", methods=["GET"])
def download_invoice(order_id: str):
    user, error = require_user()
    if error:
        return error
    order = OrderService(get_db()).get_order(order_id, user_id=user.id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return _download(OrderService.invoice_text(order), f"invoice-{order.short_id}.txt")


# ---------------------------
# Transactions
# ---------------------------


@orders_bp.route("/transactions", methods=["GET"])
def list_transactions():
    user, error = require_user()
    if error:
        return error
    try:
        filters = TransactionFilter.from_args(request.args.to_dict())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    service = TransactionService(get_db())
    transactions = service.list_transactions(user.id, filters)
    return jsonify({
        "transactions": [serialize_transaction(transaction) for transaction in transactions],
        "stats": service.stats(user.id).to_dict(),
    })


@orders_bp.route("/transactions/<transaction_id>/receipt", methods=["GET"])
def transaction_receipt(transaction_id: str):
    user, error = require_user()
    if error:
        return error
    transaction = TransactionService(get_db()).get_transaction(transaction_id, user_id=user.id)
    if not transaction:
        return jsonify({"error": "Transaction not found"}), 404
    return _download(TransactionService.receipt_text(transaction), f"receipt-{transaction.order_id}.txt")


@orders_bp.route("/transactions/export.csv", methods=["GET"])
def export_transactions_csv():
    user, error = require_user()
    if error:
        return error
    try:
        filters = TransactionFilter.from_args(request.args.to_dict())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    body = TransactionService(get_db()).export_csv(user.id, filters)
    return _download(body, "transactions.csv", mimetype="text/csv")


@orders_bp.route("/transactions/report", methods=["GET"])
def export_transactions_report():
    user, error = require_user()
    if error:
        return error
    try:
        filters = TransactionFilter.from_args(request.args.to_dict())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    body = TransactionService(get_db()).export_report(user.id, filters)
    return _download(body, "transaction-report.txt")


# ---------------------------
# Notifications
# ---------------------------


@orders_bp.route("/notifications", methods=["GET"])
def list_notifications():
    user, error = require_user()
    if error:
        return error
    db = get_db()
    NotificationScheduler().dispatch_due(db)
    service = NotificationService(db)
    unread_only = request.args.get("unread") in ("1", "true", "yes")
    notifications = service.list_for_user(user.id, unread_only=unread_only)
    return jsonify({
        "notifications": [serialize_notification(notification) for notification in notifications],
        "unread_count": service.unread_count(user.id),
    })


@orders_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id: str):
    user, error = require_user()
    if error:
        return error
    if not NotificationService(get_db()).mark_as_read(user.id, notification_id):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"success": True})


@orders_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_notifications_read():
    user, error = require_user()
    if error:
        return error
    updated = NotificationService(get_db()).mark_all_as_read(user.id)
    return jsonify({"success": True, "updated": updated})


@orders_bp.route("/notifications/<notification_id>", methods=["DELETE"])
def delete_notification(notification_id: str):
    user, error = require_user()
    if error:
        return error
    if not NotificationService(get_db()).delete(user.id, notification_id):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"success": True})
