from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify, request, session

from storefront.database import get_db
from storefront.models import Product
from storefront.services.cart_service import CartService, guest_add, guest_remove, guest_update

from .common import (
    current_user,
    json_result,
    not_found_or_bad_request,
    require_user,
    serialize_cart_line,
    serialize_product,
    serialize_saved,
)

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or request.form.to_dict()


def _cart_body() -> Dict[str, Any]:
    user = current_user()
    service = CartService(get_db())
    if user is not None:
        snapshot = service.get_cart(user.id)
        return {
            "items": [serialize_cart_line(item) for item in snapshot.items],
            "saved": [serialize_saved(item) for item in snapshot.saved],
            "cart_total": snapshot.cart_total,
            "cart_count": snapshot.cart_count,
            "saved_count": snapshot.saved_count,
            "guest": False,
        }

    priced = service.price_guest_cart(session.get("cart") or [])
    items = [
        {
            "product": serialize_product(line["product"]),
            "quantity": line["quantity"],
            "selected_size": line["size"] or None,
            "selected_color": line["color"] or None,
            "line_total": line["line_total"],
        }
        for line in priced
    ]
    return {
        "items": items,
        "saved": [],
        "cart_total": round(sum(line["line_total"] for line in priced), 2),
        "cart_count": sum(line["quantity"] for line in priced),
        "saved_count": 0,
        "guest": True,
    }


@cart_bp.route("", methods=["GET"])
def view_cart():
    return jsonify(_cart_body())


@cart_bp.route("/items", methods=["POST"])
def add_item():
    data = _payload()
    product_id = data.get("product_id")
    if not product_id:
        return jsonify({"error": "Product ID is required."}), 400

    user = current_user()
    if user is not None:
        success, message, _ = CartService(get_db()).add_to_cart(
            user.id, product_id, data.get("quantity", 1), data.get("size"), data.get("color")
        )
        if not success:
            return json_result(False, message, not_found_or_bad_request(message))
        return jsonify({"success": True, "message": message, "cart": _cart_body()})

    try:
        quantity = int(data.get("quantity", 1))
    except (TypeError, ValueError):
        return jsonify({"error": "Quantity must be a whole number"}), 400
    if quantity <= 0:
        return jsonify({"error": "Quantity must be at least 1"}), 400
    product = get_db().query(Product).filter_by(id=product_id).first()
    if not product:
        return jsonify({"error": "Product not found"}), 404
    session["cart"] = guest_add(
        session.get("cart") or [], product_id, quantity, data.get("size"), data.get("color")
    )
    return jsonify({"success": True, "message": f"{product.name} added to cart", "cart": _cart_body()})


@cart_bp.route("/items/<product_id>", methods=["PATCH"])
def update_item(product_id: str):
    data = _payload()
    user = current_user()
    if user is not None:
        success, message = CartService(get_db()).update_quantity(user.id, product_id, data.get("quantity"))
        if not success:
            return json_result(False, message, 404 if message == "Item not in cart" else 400)
        return jsonify({"success": True, "message": message, "cart": _cart_body()})

    try:
        quantity = int(data.get("quantity"))
    except (TypeError, ValueError):
        return jsonify({"error": "Quantity must be a whole number"}), 400
    session["cart"] = guest_update(session.get("cart") or [], product_id, quantity)
    return jsonify({"success": True, "message": "Quantity updated", "cart": _cart_body()})


@cart_bp.route("/items/<product_id>", methods=["DELETE"])
def remove_item(product_id: str):
    user = current_user()
    if user is not None:
        success, message = CartService(get_db()).remove_from_cart(user.id, product_id)
        if not success:
            return json_result(False, message, 404)
        return jsonify({"success": True, "message": message, "cart": _cart_body()})

    session["cart"] = guest_remove(session.get("cart") or [], product_id)
    return jsonify({"success": True, "message": "Item removed from cart", "cart": _cart_body()})


@cart_bp.route("", methods=["DELETE"])
def clear_cart():
    user = current_user()
    if user is not None:
        cleared = CartService(get_db()).clear_cart(user.id)
    else:
        cleared = len(session.pop("cart", None) or [])
    return jsonify({"success": True, "cleared": cleared, "cart": _cart_body()})


# ---------------------------
# Saved for later
# ---------------------------


@cart_bp.route("/saved/<product_id>", methods=["POST"])
def save_for_later(product_id: str):
    user, error = require_user()
    if error:
        return error
    success, message = CartService(get_db()).save_for_later(user.id, product_id)
    if not success:
        return json_result(False, message, 404)
    return jsonify({"success": True, "message": message, "cart": _cart_body()})


@cart_bp.route("/saved/<product_id>/move", methods=["POST"])
def move_to_cart(product_id: str):
    user, error = require_user()
    if error:
        return error
    success, message = CartService(get_db()).move_to_cart(user.id, product_id)
    if not success:
        return json_result(False, message, 404)
    return jsonify({"success": True, "message": message, "cart": _cart_body()})


@cart_bp.route("/saved/<product_id>", methods=["DELETE"])
def remove_saved(product_id: str):
    user, error = require_user()
    if error:
        return error
    success, message = CartService(get_db()).remove_from_saved(user.id, product_id)
    if not success:
        return json_result(False, message, 404)
    return jsonify({"success": True, "message": message, "cart": _cart_body()})
