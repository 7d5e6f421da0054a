from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import BrowsingHistory, Product, WishlistItem
from storefront.observability import increment_counter

COMPLEMENTARY_CATEGORIES: Dict[str, List[str]] = {
    "Clothing": ["Accessories", "Footwear"],
    "Electronics": ["Accessories"],
    "Accessories": ["Clothing", "Beauty"],
    "Footwear": ["Clothing", "Accessories"],
    "Beauty": ["Accessories"],
    "Home": ["Beauty"],
}

GIFT_INTEREST_CATEGORIES = {
    "tech": "Electronics",
    "cooking": "Kitchen",
    "home": "Decor",
    "fashion": "Fashion",
}
GIFT_FALLBACK_CATEGORY = "Fashion"


def gift_quiz_category(answers: Mapping) -> str:
    """
    Pick a gift category from quiz answers.

    Question 1 is the recipient, 2 the occasion and 3 the interest. Interest
    is the strongest signal, then recipient, then occasion.
    """
    recipient = answers.get(1) or answers.get("1")
    occasion = answers.get(2) or answers.get("2")
    interest = answers.get(3) or answers.get("3")

    if interest in GIFT_INTEREST_CATEGORIES:
        return GIFT_INTEREST_CATEGORIES[interest]

    if recipient == "kids":
        return "Toys"
    if recipient == "parents":
        return "Decor" if occasion == "housewarming" else "Appliances"

    if occasion in ("birthday", "anniversary"):
        return "Jewelry"
    if occasion == "housewarming":
        return "Home"

    return GIFT_FALLBACK_CATEGORY


def push_recent(history: Sequence[str], product_id: str, limit: Optional[int] = None) -> List[str]:
    """Move ``product_id`` to the front of a recently-viewed list and trim it."""
    limit = limit or Config.BROWSING_HISTORY_LIMIT
    updated = [product_id] + [pid for pid in history if pid != product_id]
    return updated[:limit]


class RecommendationService:
    """Related, trending and personalized product picks plus the wishlist."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def related_products(self, product_id: str, limit: int = 6) -> List[Product]:
        current = self.db.query(Product).filter_by(id=product_id).first()
        if not current:
            return []
        return (
            self.db.query(Product)
            .filter(Product.id != product_id)
            .filter(Product.category == current.category)
            .limit(limit)
            .all()
        )

    def personalized(self, history: Sequence[str], limit: int = 8) -> List[Product]:
        if not history:
            return self.db.query(Product).filter(Product.featured.is_(True)).limit(limit).all()

        recent = list(history)[: Config.RECENT_HISTORY_WINDOW]
        categories = {
            category
            for (category,) in self.db.query(Product.category).filter(Product.id.in_(recent))
        }
        if not categories:
            return []
        return (
            self.db.query(Product)
            .filter(Product.category.in_(categories))
            .filter(Product.id.notin_(list(history)))
            .limit(limit)
            .all()
        )

    def trending(self, limit: int = 6) -> List[Product]:
        return self.db.query(Product).order_by(Product.rating.desc()).limit(limit).all()

    def frequently_bought_together(self, product_id: str, limit: int = 3) -> List[Product]:
        current = self.db.query(Product).filter_by(id=product_id).first()
        if not current:
            return []
        related = COMPLEMENTARY_CATEGORIES.get(current.category, [])
        if not related:
            return []
        return self.db.query(Product).filter(Product.category.in_(related)).limit(limit).all()

    # ------------------------------------------------------------------
    # Browsing history
    # ------------------------------------------------------------------
    def track_view(self, user_id: str, product_id: str) -> None:
        if not self.db.query(Product.id).filter_by(id=product_id).first():
            return
        self.db.query(BrowsingHistory).filter_by(user_id=user_id, product_id=product_id).delete(
            synchronize_session=False
        )
        self.db.add(BrowsingHistory(user_id=user_id, product_id=product_id))
        self.db.flush()

        stale = (
            self.db.query(BrowsingHistory.id)
            .filter_by(user_id=user_id)
            .order_by(BrowsingHistory.viewed_at.desc())
            .offset(Config.BROWSING_HISTORY_LIMIT)
            .all()
        )
        if stale:
            self.db.query(BrowsingHistory).filter(
                BrowsingHistory.id.in_([row_id for (row_id,) in stale])
            ).delete(synchronize_session=False)
        self.db.commit()
        increment_counter("product_views_total")

    def history_ids(self, user_id: str) -> List[str]:
        return [
            product_id
            for (product_id,) in self.db.query(BrowsingHistory.product_id)
            .filter_by(user_id=user_id)
            .order_by(BrowsingHistory.viewed_at.desc())
            .limit(Config.BROWSING_HISTORY_LIMIT)
        ]

    def recently_viewed(self, history: Sequence[str]) -> List[Product]:
        """Products for the given ids, kept in history order."""
        if not history:
            return []
        products = {p.id: p for p in self.db.query(Product).filter(Product.id.in_(list(history)))}
        return [products[pid] for pid in history if pid in products]

    def clear_history(self, user_id: str) -> int:
        cleared = self.db.query(BrowsingHistory).filter_by(user_id=user_id).delete(synchronize_session=False)
        self.db.commit()
        return cleared

    # ------------------------------------------------------------------
    # Wishlist
    # ------------------------------------------------------------------
    def add_to_wishlist(self, user_id: str, product_id: str) -> Tuple[bool, str]:
        if not self.db.query(Product.id).filter_by(id=product_id).first():
            return False, "Product not found"
        exists = self.db.query(WishlistItem).filter_by(user_id=user_id, product_id=product_id).first()
        if not exists:
            self.db.add(WishlistItem(user_id=user_id, product_id=product_id))
            self.db.commit()
        return True, "Added to wishlist"

    def remove_from_wishlist(self, user_id: str, product_id: str) -> Tuple[bool, str]:
        removed = (
            self.db.query(WishlistItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if not removed:
            return False, "Item is not in your wishlist"
        return True, "Removed from wishlist"

    def get_wishlist(self, user_id: str) -> List[Product]:
        rows = (
            self.db.query(WishlistItem)
            .filter_by(user_id=user_id)
            .order_by(WishlistItem.created_at.asc())
            .all()
        )
        return [row.product for row in rows if row.product]
