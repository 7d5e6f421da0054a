from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import bleach
from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.models import (
    BrowsingHistory,
    CartItem,
    OrderItem,
    Product,
    Profile,
    Review,
    SavedItem,
    WishlistItem,
)
from storefront.observability import increment_counter, record_event
from storefront.observability.business_metrics import as_utc
from storefront.services.change_feed import publish_change

CATEGORIES: List[Dict[str, str]] = [
    {"id": "electronics", "name": "Electronics", "icon": "Smartphone"},
    {"id": "fashion", "name": "Fashion", "icon": "Shirt"},
    {"id": "home", "name": "Home", "icon": "Home"},
    {"id": "appliances", "name": "Appliances", "icon": "Tv"},
    {"id": "grocery", "name": "Grocery", "icon": "ShoppingBasket"},
    {"id": "beauty", "name": "Beauty", "icon": "Sparkles"},
    {"id": "toys", "name": "Toys", "icon": "Gamepad2"},
    {"id": "books", "name": "Books", "icon": "Book"},
    {"id": "mobiles", "name": "Mobiles", "icon": "Smartphone"},
    {"id": "laptops", "name": "Laptops", "icon": "Laptop"},
    {"id": "footwear", "name": "Footwear", "icon": "Footprints"},
    {"id": "kitchen", "name": "Kitchen", "icon": "Utensils"},
    {"id": "jewelry", "name": "Jewelry", "icon": "Gem"},
    {"id": "sports", "name": "Sports", "icon": "Trophy"},
    {"id": "travel", "name": "Travel", "icon": "Plane"},
    {"id": "decor", "name": "Decor", "icon": "Palette"},
]

SORT_OPTIONS = ("price_asc", "price_desc", "rating", "newest")

_EDITABLE_FIELDS = (
    "name",
    "description",
    "price",
    "original_price",
    "category",
    "subcategory",
    "images",
    "video_url",
    "stock",
    "tags",
    "featured",
    "bestseller",
    "sizes",
    "colors",
    "deal_of_the_day",
    "deal_expires_at",
    "attributes",
)


def deal_time_left(expires_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Countdown label shown on deal cards, e.g. ``05h 04m 03s``."""
    if expires_at is None:
        return "00h 00m 00s"
    now = as_utc(now or datetime.now(timezone.utc))
    remaining = int((as_utc(expires_at) - now).total_seconds())
    if remaining <= 0:
        return "00h 00m 00s"
    hours, rest = divmod(remaining, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}h {minutes:02d}m {seconds:02d}s"


def sanitize_text(value: Optional[str]) -> str:
    return bleach.clean(value or "", tags=[], strip=True).strip()


class CatalogService:
    """Product browsing, reviews and the admin product manager."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------
    def list_products(
        self,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
    ) -> List[Product]:
        query = self.db.query(Product)

        if category:
            pattern = f"%{category}%"
            query = query.filter(or_(Product.category.ilike(pattern), Product.subcategory.ilike(pattern)))
        if subcategory:
            query = query.filter(Product.subcategory.ilike(subcategory))
        if min_price is not None:
            query = query.filter(Product.price >= min_price)
        if max_price is not None:
            query = query.filter(Product.price <= max_price)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

        if sort_by == "price_asc":
            query = query.order_by(Product.price.asc())
        elif sort_by == "price_desc":
            query = query.order_by(Product.price.desc())
        elif sort_by == "rating":
            query = query.order_by(Product.rating.desc())
        else:
            query = query.order_by(Product.created_at.desc())

        return query.all()

    def get_product(self, product_id: str) -> Optional[Product]:
        return self.db.query(Product).filter_by(id=product_id).first()

    def featured(self, limit: int = 8) -> List[Product]:
        return self.db.query(Product).filter(Product.featured.is_(True)).limit(limit).all()

    def bestsellers(self, limit: int = 8) -> List[Product]:
        return self.db.query(Product).filter(Product.bestseller.is_(True)).limit(limit).all()

    def deals_of_the_day(self, limit: int = 8) -> List[Product]:
        return self.db.query(Product).filter(Product.deal_of_the_day.is_(True)).limit(limit).all()

    def by_category(self, name: str) -> List[Product]:
        return self.db.query(Product).filter(Product.category.ilike(name)).all()

    def search(self, query: str) -> List[Product]:
        return self.list_products(search=query)

    @staticmethod
    def categories() -> List[Dict[str, str]]:
        return list(CATEGORIES)

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------
    def list_reviews(self, product_id: str) -> List[Review]:
        return (
            self.db.query(Review)
            .filter_by(product_id=product_id)
            .order_by(Review.created_at.desc())
            .all()
        )

    def submit_review(
        self,
        product_id: str,
        user: Optional[Profile],
        rating: Any,
        comment: Optional[str],
    ) -> Tuple[bool, str, Optional[Review]]:
        product = self.get_product(product_id)
        if not product:
            return False, "Product not found", None

        try:
            rating_value = int(rating)
        except (TypeError, ValueError):
            return False, "Rating must be a number between 1 and 5", None
        if not 1 <= rating_value <= 5:
            return False, "Rating must be a number between 1 and 5", None

        cleaned = sanitize_text(comment)
        if not cleaned:
            return False, "Please write a comment", None

        review = Review(
            product_id=product.id,
            user_id=user.id if user else None,
            user_name=user.display_name if user else "Anonymous",
            rating=rating_value,
            comment=cleaned,
        )
        self.db.add(review)
        self.db.flush()
        product.apply_rating(
            value for (value,) in self.db.query(Review.rating).filter_by(product_id=product.id)
        )
        self.db.commit()

        increment_counter("reviews_submitted_total", labels={"rating": str(rating_value)})
        publish_change("reviews", "INSERT", review.id, {"product_id": product.id, "rating": rating_value})
        self.logger.info("Review submitted", extra={"product_id": product.id, "rating": rating_value})
        return True, "Review submitted", review

    def delete_review(self, review_id: str) -> Tuple[bool, str]:
        review = self.db.query(Review).filter_by(id=review_id).first()
        if not review:
            return False, "Review not found"
        product = review.product
        self.db.delete(review)
        self.db.flush()
        if product:
            product.apply_rating(
                value for (value,) in self.db.query(Review.rating).filter_by(product_id=product.id)
            )
        self.db.commit()
        publish_change("reviews", "DELETE", review_id)
        return True, "Review deleted"

    def all_reviews(self) -> List[Review]:
        return self.db.query(Review).order_by(Review.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Product manager
    # ------------------------------------------------------------------
    def create_product(self, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        ok, message, fields = self._clean_product_fields(data, require_all=True)
        if not ok:
            return False, message, None

        product = Product(**fields)
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)

        record_event("product_created", {"product_id": product.id, "category": product.category})
        publish_change("products", "INSERT", product.id, {"name": product.name})
        self.logger.info("Product %s created", product.id, extra={"category": product.category})
        return True, "Product created", product

    def update_product(self, product_id: str, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        product = self.get_product(product_id)
        if not product:
            return False, "Product not found", None

        ok, message, fields = self._clean_product_fields(data, require_all=False)
        if not ok:
            return False, message, None
        for key, value in fields.items():
            setattr(product, key, value)
        self.db.commit()

        publish_change("products", "UPDATE", product.id, {"fields": sorted(fields)})
        return True, "Product updated", product

    def delete_product(self, product_id: str) -> Tuple[bool, str]:
        product = self.get_product(product_id)
        if not product:
            return False, "Product not found"

        for model in (CartItem, SavedItem, WishlistItem, BrowsingHistory):
            self.db.query(model).filter_by(product_id=product_id).delete(synchronize_session=False)
        # Past orders keep their lines and prices
        self.db.query(OrderItem).filter_by(product_id=product_id).update(
            {OrderItem.product_id: None}, synchronize_session=False
        )
        self.db.delete(product)
        self.db.commit()

        publish_change("products", "DELETE", product_id)
        self.logger.info("Product %s deleted", product_id)
        return True, "Product deleted"

    def low_stock(self, threshold: int) -> List[Product]:
        return (
            self.db.query(Product)
            .filter(Product.stock <= threshold)
            .order_by(Product.stock.asc())
            .all()
        )

    def _clean_product_fields(
        self,
        data: Dict[str, Any],
        require_all: bool,
    ) -> Tuple[bool, str, Dict[str, Any]]:
        fields = {key: data[key] for key in _EDITABLE_FIELDS if key in data}

        if require_all or "name" in fields:
            name = sanitize_text(fields.get("name"))
            if not name:
                return False, "Product name is required", {}
            fields["name"] = name
        if require_all or "category" in fields:
            category = (fields.get("category") or "").strip()
            if not category:
                return False, "Category is required", {}
            fields["category"] = category

        for money_field in ("price", "original_price"):
            if money_field not in fields and not (require_all and money_field == "price"):
                continue
            raw = fields.get(money_field)
            if raw in (None, "") and money_field == "original_price":
                fields[money_field] = None
                continue
            try:
                amount = Decimal(str(raw))
            except (InvalidOperation, TypeError, ValueError):
                return False, f"Invalid {money_field.replace('_', ' ')}", {}
            if amount <= 0:
                return False, f"{money_field.replace('_', ' ').capitalize()} must be positive", {}
            fields[money_field] = amount

        if "stock" in fields:
            try:
                fields["stock"] = max(int(fields["stock"]), 0)
            except (TypeError, ValueError):
                return False, "Stock must be a whole number", {}

        if "description" in fields:
            fields["description"] = sanitize_text(fields["description"])

        if isinstance(fields.get("deal_expires_at"), str):
            try:
                fields["deal_expires_at"] = datetime.fromisoformat(fields["deal_expires_at"])
            except ValueError:
                return False, "Invalid deal expiry", {}

        for list_field in ("images", "tags", "sizes", "colors"):
            if list_field in fields and fields[list_field] is None:
                fields[list_field] = []

        return True, "", fields
