from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request, session

from storefront.database import get_db
from storefront.services.cart_service import CartService
from storefront.services.profile_service import ProfileService

from .common import current_user, json_result, require_user, serialize_profile

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
logger = logging.getLogger(__name__)


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _sign_in(profile) -> int:
    """Start a session for ``profile`` and fold the guest cart into the stored one."""
    guest_lines = session.pop("cart", None) or []
    session["user_id"] = profile.id
    g.current_user = profile
    merged = 0
    if guest_lines:
        merged = CartService(get_db()).merge_guest_cart(profile.id, guest_lines)
    return merged


@auth_bp.route("/register", methods=["POST"])
def register():
    data = _payload()
    service = ProfileService(get_db())
    success, message, profile = service.register(
        data.get("email"), data.get("password"), data.get("full_name")
    )
    if not success:
        status = 409 if message == "Email already registered." else 400
        return json_result(False, message, status)
    merged = _sign_in(profile)
    return jsonify({
        "success": True,
        "message": message,
        "user": serialize_profile(profile),
        "merged_cart_items": merged,
    }), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = _payload()
    profile = ProfileService(get_db()).authenticate(data.get("email"), data.get("password"))
    if not profile:
        return json_result(False, "Invalid email or password.", 401)
    merged = _sign_in(profile)
    logger.info("User signed in", extra={"user_id": profile.id})
    return jsonify({
        "success": True,
        "user": serialize_profile(profile),
        "is_admin": profile.is_admin,
        "merged_cart_items": merged,
    })


@auth_bp.route("/admin/login", methods=["POST"])
def admin_login():
    data = _payload()
    profile = ProfileService(get_db()).authenticate(data.get("email"), data.get("password"))
    if not profile:
        return json_result(False, "Invalid email or password.", 401)
    if not profile.is_admin:
        logger.warning("Non-admin attempted admin sign-in", extra={"user_id": profile.id})
        return json_result(False, "Access denied. Admin privileges required.", 403)
    _sign_in(profile)
    return jsonify({"success": True, "user": serialize_profile(profile), "is_admin": True})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    g.current_user = None
    return jsonify({"success": True})


@auth_bp.route("/me", methods=["GET"])
def me():
    user = current_user()
    if user is None:
        return jsonify({"user": None, "is_admin": False})
    return jsonify({"user": serialize_profile(user), "is_admin": user.is_admin})


@auth_bp.route("/profile", methods=["PATCH"])
def update_profile():
    user, error = require_user()
    if error:
        return error
    data = _payload()
    success, message, profile = ProfileService(get_db()).update_profile(
        user.id, data.get("full_name"), data.get("avatar_url")
    )
    if not success:
        return json_result(False, message, 404)
    return json_result(True, message, user=serialize_profile(profile))


@auth_bp.route("/profile/avatar", methods=["POST"])
def upload_avatar():
    user, error = require_user()
    if error:
        return error
    success, message, profile = ProfileService(get_db()).upload_avatar(user.id, request.files.get("file"))
    if not success:
        return json_result(False, message)
    return json_result(True, message, user=serialize_profile(profile))
