from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request

from storefront.database import get_db
from storefront.services.checkout_service import CheckoutService
from storefront.services.payment_service import RazorpayClient, get_luxepay_gateway

from .common import (
    json_result,
    not_found_or_bad_request,
    require_user,
    serialize_address,
    serialize_order,
)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or request.form.to_dict()


# ---------------------------
# Addresses
# ---------------------------


@checkout_bp.route("/addresses", methods=["GET"])
def list_addresses():
    user, error = require_user()
    if error:
        return error
    addresses = CheckoutService(get_db()).list_addresses(user.id)
    return jsonify({"addresses": [serialize_address(address) for address in addresses]})


@checkout_bp.route("/addresses", methods=["POST"])
def add_address():
    user, error = require_user()
    if error:
        return error
    success, message, address = CheckoutService(get_db()).add_address(user.id, _payload())
    if not success:
        return json_result(False, message)
    return jsonify({"success": True, "message": message, "address": serialize_address(address)}), 201


@checkout_bp.route("/addresses/<address_id>", methods=["DELETE"])
def delete_address(address_id: str):
    user, error = require_user()
    if error:
        return error
    success, message = CheckoutService(get_db()).delete_address(user.id, address_id)
    return json_result(success, message, 404)


# ---------------------------
# Pricing
# ---------------------------


@checkout_bp.route("/quote", methods=["GET", "POST"])
def quote():
    user, error = require_user()
    if error:
        return error
    data = request.args.to_dict() if request.method == "GET" else _payload()
    success, message, price = CheckoutService(get_db()).quote_for_user(
        user.id, data.get("payment_method"), data.get("coupon_code")
    )
    body = {"success": success, "message": message, "quote": price.to_dict()}
    if not success:
        body["error"] = message
    return jsonify(body)


# ---------------------------
# LuxePay
# ---------------------------


@checkout_bp.route("/luxepay/sessions", methods=["POST"])
def open_luxepay_session():
    user, error = require_user()
    if error:
        return error
    data = _payload()
    coupon_ok, message, price = CheckoutService(get_db()).quote_for_user(
        user.id, data.get("payment_method"), data.get("coupon_code")
    )
    if data.get("coupon_code") and not coupon_ok:
        return json_result(False, message)
    if price.subtotal <= 0:
        return json_result(False, "Your cart is empty")

    success, message, payment_session = get_luxepay_gateway().open_session(
        price.total, data.get("order_reference"), user_id=user.id
    )
    if not success:
        return json_result(False, message)
    return jsonify({"success": True, "session": get_luxepay_gateway().poll(payment_session.id)}), 201


@checkout_bp.route("/luxepay/sessions/<session_id>", methods=["GET"])
def poll_luxepay_session(session_id: str):
    user, error = require_user()
    if error:
        return error
    if get_luxepay_gateway().get_session(session_id, user.id) is None:
        return jsonify({"error": "Payment session not found"}), 404
    return jsonify({"session": get_luxepay_gateway().poll(session_id)})


@checkout_bp.route("/luxepay/sessions/<session_id>/method", methods=["POST"])
def select_luxepay_method(session_id: str):
    user, error = require_user()
    if error:
        return error
    gateway = get_luxepay_gateway()
    if gateway.get_session(session_id, user.id) is None:
        return jsonify({"error": "Payment session not found"}), 404
    success, message, _ = gateway.select_method(session_id, _payload().get("method"))
    if not success:
        return json_result(False, message, not_found_or_bad_request(message))
    return json_result(True, message, session=gateway.poll(session_id))


@checkout_bp.route("/luxepay/sessions/<session_id>/pay", methods=["POST"])
def pay_luxepay_session(session_id: str):
    user, error = require_user()
    if error:
        return error
    gateway = get_luxepay_gateway()
    if gateway.get_session(session_id, user.id) is None:
        return jsonify({"error": "Payment session not found"}), 404
    success, message, _ = gateway.pay(session_id)
    if not success:
        return json_result(False, message, not_found_or_bad_request(message))
    return json_result(True, message, session=gateway.poll(session_id))


@checkout_bp.route("/luxepay/sessions/<session_id>/cancel", methods=["POST"])
def cancel_luxepay_session(session_id: str):
    user, error = require_user()
    if error:
        return error
    gateway = get_luxepay_gateway()
    if gateway.get_session(session_id, user.id) is None:
        return jsonify({"error": "Payment session not found"}), 404
    success, message = gateway.cancel(session_id)
    return json_result(success, message, not_found_or_bad_request(message))


# ---------------------------
# Razorpay
# ---------------------------


@checkout_bp.route("/razorpay/orders", methods=["POST"])
def create_razorpay_order():
    user, error = require_user()
    if error:
        return error
    data = _payload()
    _, _, price = CheckoutService(get_db()).quote_for_user(
        user.id, data.get("payment_method"), data.get("coupon_code")
    )
    success, message, payment = RazorpayClient().create_payment(
        price.total, data.get("receipt"), {"user_id": user.id}
    )
    if not success:
        return json_result(False, message, 502)
    return json_result(True, message, payment=payment, amount=price.total)


# ---------------------------
# Place order
# ---------------------------


@checkout_bp.route("/orders", methods=["POST"])
def place_order():
    user, error = require_user()
    if error:
        return error
    data = _payload()
    payment = {
        key: data.get(key)
        for key in ("luxepay_session_id", "razorpay_order_id", "razorpay_payment_id", "razorpay_signature")
        if data.get(key)
    }
    success, message, order = CheckoutService(get_db()).place_order(
        user,
        data.get("address_id"),
        data.get("payment_method"),
        coupon_code=data.get("coupon_code"),
        payment=payment,
    )
    if not success:
        status = 500 if message.startswith("Order Failed") else not_found_or_bad_request(message)
        return json_result(False, message, status)
    return jsonify({"success": True, "message": message, "order": serialize_order(order)}), 201
