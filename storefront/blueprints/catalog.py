from __future__ import annotations

from typing import List

from flask import Blueprint, jsonify, request, session

from storefront.database import get_db
from storefront.services.catalog_service import SORT_OPTIONS, CatalogService, deal_time_left
from storefront.services.recommendation_service import (
    RecommendationService,
    gift_quiz_category,
    push_recent,
)

from .common import (
    current_user,
    json_result,
    not_found_or_bad_request,
    parse_float,
    require_user,
    serialize_product,
    serialize_products,
    serialize_review,
)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _history_for_request() -> List[str]:
    user = current_user()
    if user is not None:
        return RecommendationService(get_db()).history_ids(user.id)
    return list(session.get("recently_viewed") or [])


@catalog_bp.route("/products", methods=["GET"])
def list_products():
    try:
        min_price = parse_float(request.args.get("min_price"))
        max_price = parse_float(request.args.get("max_price"))
    except ValueError:
        return jsonify({"error": "Price filters must be numbers"}), 400

    sort_by = request.args.get("sort")
    if sort_by and sort_by not in SORT_OPTIONS:
        return jsonify({"error": f"Unknown sort option {sort_by}"}), 400

    products = CatalogService(get_db()).list_products(
        category=request.args.get("category"),
        subcategory=request.args.get("subcategory"),
        min_price=min_price,
        max_price=max_price,
        search=request.args.get("q"),
        sort_by=sort_by,
    )
    return jsonify({"products": serialize_products(products), "count": len(products)})


@catalog_bp.route("/products/<product_id>", methods=["GET"])
def product_detail(product_id: str):
    db = get_db()
    catalog = CatalogService(db)
    product = catalog.get_product(product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404

    recommendations = RecommendationService(db)
    user = current_user()
    if user is not None:
        recommendations.track_view(user.id, product.id)
    else:
        session["recently_viewed"] = push_recent(session.get("recently_viewed") or [], product.id)

    body = serialize_product(product)
    if product.deal_of_the_day:
        body["deal_time_left"] = deal_time_left(product.deal_expires_at)
    return jsonify({
        "product": body,
        "reviews": [serialize_review(review) for review in catalog.list_reviews(product.id)],
        "related": serialize_products(recommendations.related_products(product.id)),
        "frequently_bought_together": serialize_products(
            recommendations.frequently_bought_together(product.id)
        ),
    })


@catalog_bp.route("/products/featured", methods=["GET"])
def featured_products():
    return jsonify({"products": serialize_products(CatalogService(get_db()).featured())})


@catalog_bp.route("/products/bestsellers", methods=["GET"])
def bestseller_products():
    return jsonify({"products": serialize_products(CatalogService(get_db()).bestsellers())})


@catalog_bp.route("/products/deals", methods=["GET"])
def deal_products():
    deals = []
    for product in CatalogService(get_db()).deals_of_the_day():
        body = serialize_product(product)
        body["deal_time_left"] = deal_time_left(product.deal_expires_at)
        deals.append(body)
    return jsonify({"products": deals})


@catalog_bp.route("/categories", methods=["GET"])
def categories():
    return jsonify({"categories": CatalogService.categories()})


@catalog_bp.route("/categories/<name>/products", methods=["GET"])
def category_products(name: str):
    return jsonify({"products": serialize_products(CatalogService(get_db()).by_category(name))})


@catalog_bp.route("/search", methods=["GET"])
def search():
    term = (request.args.get("q") or "").strip()
    if not term:
        return jsonify({"products": [], "count": 0})
    products = CatalogService(get_db()).search(term)
    return jsonify({"products": serialize_products(products), "count": len(products)})


# ---------------------------
# Reviews
# ---------------------------


@catalog_bp.route("/products/<product_id>/reviews", methods=["GET"])
def product_reviews(product_id: str):
    reviews = CatalogService(get_db()).list_reviews(product_id)
    return jsonify({"reviews": [serialize_review(review) for review in reviews]})


@catalog_bp.route("/products/<product_id>/reviews", methods=["POST"])
def submit_review(product_id: str):
    data = request.get_json(silent=True) or request.form.to_dict()
    success, message, review = CatalogService(get_db()).submit_review(
        product_id, current_user(), data.get("rating"), data.get("comment")
    )
    if not success:
        return json_result(False, message, not_found_or_bad_request(message))
    return jsonify({"success": True, "message": message, "review": serialize_review(review)}), 201


# ---------------------------
# Recommendations and history
# ---------------------------


@catalog_bp.route("/recommendations", methods=["GET"])
def recommendations():
    service = RecommendationService(get_db())
    history = _history_for_request()
    return jsonify({
        "personalized": serialize_products(service.personalized(history)),
        "trending": serialize_products(service.trending()),
    })


@catalog_bp.route("/recently-viewed", methods=["GET"])
def recently_viewed():
    products = RecommendationService(get_db()).recently_viewed(_history_for_request())
    return jsonify({"products": serialize_products(products)})


@catalog_bp.route("/recently-viewed", methods=["DELETE"])
def clear_recently_viewed():
    user = current_user()
    cleared = len(session.pop("recently_viewed", None) or [])
    if user is not None:
        cleared = RecommendationService(get_db()).clear_history(user.id)
    return jsonify({"success": True, "cleared": cleared})


@catalog_bp.route("/gift-quiz", methods=["POST"])
def gift_quiz():
    answers = (request.get_json(silent=True) or {}).get("answers") or {}
    if not isinstance(answers, dict):
        return jsonify({"error": "Answers must be an object keyed by question number"}), 400
    category = gift_quiz_category(answers)
    products = CatalogService(get_db()).list_products(category=category)
    return jsonify({"category": category, "products": serialize_products(products)})


# ---------------------------
# Wishlist
# ---------------------------


@catalog_bp.route("/wishlist", methods=["GET"])
def wishlist():
    user, error = require_user()
    if error:
        return error
    return jsonify({"products": serialize_products(RecommendationService(get_db()).get_wishlist(user.id))})


@catalog_bp.route("/wishlist/<product_id>", methods=["POST"])
def add_to_wishlist(product_id: str):
    user, error = require_user()
    if error:
        return error
    success, message = RecommendationService(get_db()).add_to_wishlist(user.id, product_id)
    return json_result(success, message, not_found_or_bad_request(message))


@catalog_bp.route("/wishlist/<product_id>", methods=["DELETE"])
def remove_from_wishlist(product_id: str):
    user, error = require_user()
    if error:
        return error
    success, message = RecommendationService(get_db()).remove_from_wishlist(user.id, product_id)
    return json_result(success, message, 404)
