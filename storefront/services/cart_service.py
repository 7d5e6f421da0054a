from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from storefront.models import CartItem, NotificationType, Product, SavedItem
from storefront.observability import increment_counter
from storefront.services.notification_service import NotificationScheduler


@dataclass
class CartSnapshot:
    items: List[CartItem] = field(default_factory=list)
    saved: List[SavedItem] = field(default_factory=list)

    @property
    def cart_total(self) -> float:
        return round(sum(item.line_total for item in self.items), 2)

    @property
    def cart_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def saved_count(self) -> int:
        return len(self.saved)

    @property
    def is_empty(self) -> bool:
        return not self.items


def _parse_quantity(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError("Quantity must be a whole number")


class CartService:
    """Per-user cart and saved-for-later lists."""

    def __init__(self, db_session: Session, scheduler: Optional[NotificationScheduler] = None) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.scheduler = scheduler or NotificationScheduler()

    def get_cart(self, user_id: str) -> CartSnapshot:
        items = (
            self.db.query(CartItem)
            .filter_by(user_id=user_id)
            .order_by(CartItem.created_at.asc())
            .all()
        )
        saved = (
            self.db.query(SavedItem)
            .filter_by(user_id=user_id)
            .order_by(SavedItem.created_at.asc())
            .all()
        )
        return CartSnapshot(items=[item for item in items if item.product], saved=saved)

    def add_to_cart(
        self,
        user_id: str,
        product_id: str,
        quantity: Any = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[CartItem]]:
        try:
            quantity = _parse_quantity(quantity)
        except ValueError as exc:
            return False, str(exc), None
        if quantity <= 0:
            return False, "Quantity must be at least 1", None

        product = self.db.query(Product).filter_by(id=product_id).first()
        if not product:
            return False, "Product not found", None

        line = (
            self.db.query(CartItem)
            .filter_by(
                user_id=user_id,
                product_id=product_id,
                selected_size=size or "",
                selected_color=color or "",
            )
            .first()
        )
        if line:
            line.quantity += quantity
        else:
            line = CartItem(
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
                selected_size=size or "",
                selected_color=color or "",
            )
            self.db.add(line)
        self.db.commit()

        increment_counter("cart_additions_total")
        self._refresh_reminder(user_id)
        return True, f"{product.name} added to cart", line

    def remove_from_cart(self, user_id: str, product_id: str) -> Tuple[bool, str]:
        removed = self._delete_product_lines(user_id, product_id)
        self.db.commit()
        if not removed:
            return False, "Item not in cart"
        self._refresh_reminder(user_id)
        return True, "Item removed from cart"

    def update_quantity(self, user_id: str, product_id: str, quantity: Any) -> Tuple[bool, str]:
        try:
            quantity = _parse_quantity(quantity)
        except ValueError as exc:
            return False, str(exc)
        if quantity <= 0:
            return self.remove_from_cart(user_id, product_id)

        updated = (
            self.db.query(CartItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .update({CartItem.quantity: quantity}, synchronize_session="fetch")
        )
        self.db.commit()
        if not updated:
            return False, "Item not in cart"
        self._refresh_reminder(user_id)
        return True, "Quantity updated"

    def clear_cart(self, user_id: str, commit: bool = True) -> int:
        cleared = (
            self.db.query(CartItem)
            .filter_by(user_id=user_id)
            .delete(synchronize_session=False)
        )
        if commit:
            self.db.commit()
            self.scheduler.cancel_by_type(NotificationType.CART_ABANDONMENT, user_id=user_id)
        return cleared

    # ------------------------------------------------------------------
    # Saved for later
    # ------------------------------------------------------------------
    def save_for_later(self, user_id: str, product_id: str) -> Tuple[bool, str]:
        in_cart = (
            self.db.query(CartItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .first()
        )
        if not in_cart:
            return False, "Item not in cart"
        name = in_cart.product.name if in_cart.product else "Item"

        already_saved = (
            self.db.query(SavedItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .first()
        )
        if not already_saved:
            self.db.add(SavedItem(user_id=user_id, product_id=product_id))
        self._delete_product_lines(user_id, product_id)
        self.db.commit()
        self._refresh_reminder(user_id)
        return True, f"{name} saved for later"

    def move_to_cart(self, user_id: str, product_id: str) -> Tuple[bool, str]:
        saved = (
            self.db.query(SavedItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .first()
        )
        if not saved:
            return False, "Item is not in your saved list"
        self.db.delete(saved)
        self.db.flush()
        success, message, _ = self.add_to_cart(user_id, product_id, 1)
        if not success:
            self.db.rollback()
            return False, message
        return True, "Moved to cart"

    def remove_from_saved(self, user_id: str, product_id: str) -> Tuple[bool, str]:
        removed = (
            self.db.query(SavedItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if not removed:
            return False, "Item is not in your saved list"
        return True, "Removed from saved items"

    # ------------------------------------------------------------------
    # Guest carts
    # ------------------------------------------------------------------
    def merge_guest_cart(self, user_id: str, guest_lines: Iterable[Dict[str, Any]]) -> int:
        """
        Push a signed-out cart into the user's cart at sign-in.

        Products already in the stored cart win; only new products are added.
        """
        existing = {
            product_id
            for (product_id,) in self.db.query(CartItem.product_id).filter_by(user_id=user_id)
        }
        merged = 0
        for line in guest_lines or []:
            product_id = line.get("product_id")
            if not product_id or product_id in existing:
                continue
            if not self.db.query(Product.id).filter_by(id=product_id).first():
                continue
            try:
                quantity = max(_parse_quantity(line.get("quantity", 1)), 1)
            except ValueError:
                quantity = 1
            self.db.add(
                CartItem(
                    user_id=user_id,
                    product_id=product_id,
                    quantity=quantity,
                    selected_size=line.get("size") or "",
                    selected_color=line.get("color") or "",
                )
            )
            existing.add(product_id)
            merged += 1
        if merged:
            self.db.commit()
            self._refresh_reminder(user_id)
            self.logger.info("Merged %d guest cart lines", merged, extra={"cart_user_id": user_id})
        return merged

    def price_guest_cart(self, guest_lines: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Attach current product rows to session cart lines, dropping unknown products."""
        lines = list(guest_lines or [])
        ids = {line.get("product_id") for line in lines}
        products = {
            product.id: product
            for product in self.db.query(Product).filter(Product.id.in_(ids)).all()
        } if ids else {}
        priced = []
        for line in lines:
            product = products.get(line.get("product_id"))
            if product is None:
                continue
            quantity = int(line.get("quantity", 1))
            priced.append({
                "product": product,
                "quantity": quantity,
                "size": line.get("size") or "",
                "color": line.get("color") or "",
                "line_total": round(product.unit_price * quantity, 2),
            })
        return priced

    def _delete_product_lines(self, user_id: str, product_id: str) -> int:
        return (
            self.db.query(CartItem)
            .filter_by(user_id=user_id, product_id=product_id)
            .delete(synchronize_session="fetch")
        )

    def _refresh_reminder(self, user_id: str) -> None:
        snapshot = self.get_cart(user_id)
        if snapshot.is_empty:
            self.scheduler.cancel_by_type(NotificationType.CART_ABANDONMENT, user_id=user_id)
            return
        self.scheduler.schedule_cart_reminder(user_id, snapshot.cart_total, snapshot.cart_count)


def guest_add(
    lines: List[Dict[str, Any]],
    product_id: str,
    quantity: int = 1,
    size: Optional[str] = None,
    color: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Merge into a session cart the same way stored carts merge."""
    updated = [dict(line) for line in lines or []]
    for line in updated:
        if (
            line.get("product_id") == product_id
            and (line.get("size") or "") == (size or "")
            and (line.get("color") or "") == (color or "")
        ):
            line["quantity"] = int(line.get("quantity", 0)) + quantity
            return updated
    updated.append({"product_id": product_id, "quantity": quantity, "size": size or "", "color": color or ""})
    return updated


def guest_update(lines: List[Dict[str, Any]], product_id: str, quantity: int) -> List[Dict[str, Any]]:
    if quantity <= 0:
        return guest_remove(lines, product_id)
    return [
        dict(line, quantity=quantity) if line.get("product_id") == product_id else dict(line)
        for line in lines or []
    ]


def guest_remove(lines: List[Dict[str, Any]], product_id: str) -> List[Dict[str, Any]]:
    return [dict(line) for line in lines or [] if line.get("product_id") != product_id]
