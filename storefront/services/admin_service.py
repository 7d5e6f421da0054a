from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Coupon, DiscountType, Order, OrderStatus, Profile, SiteSetting
from storefront.observability import record_event, set_gauge
from storefront.observability.business_metrics import compute_sales_summary
from storefront.services.change_feed import publish_change
from storefront.services.pricing_service import BUILTIN_COUPONS, TAX_CONFIG_KEY

SITE_INFO_KEY = "site_info"
SETTING_DESCRIPTIONS = {
    SITE_INFO_KEY: "General site information",
    TAX_CONFIG_KEY: "Tax and shipping configuration",
}
_SITE_INFO_FIELDS = ("name", "description", "support_email", "logo_url")
_TAX_CONFIG_FIELDS = ("rate", "shipping_rate", "free_shipping_threshold")

INACTIVE_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


class AdminService:
    """Dashboard figures, coupons and store settings for the admin console."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def dashboard(self) -> Dict[str, Any]:
        orders = self.db.query(Order).order_by(Order.created_at.desc()).all()
        total_revenue = round(sum(float(order.total or 0) for order in orders), 2)
        active = [order for order in orders if order.status not in INACTIVE_STATUSES]
        customers = self.db.query(func.count(Profile.id)).scalar() or 0

        set_gauge("orders_active", len(active))
        return {
            "total_revenue": total_revenue,
            "total_customers": customers,
            "total_orders": len(orders),
            "active_orders": len(active),
            "recent_orders": orders[:5],
        }

    def analytics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return compute_sales_summary(self.db, now=now)

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------
    def list_coupons(self) -> List[Coupon]:
        return self.db.query(Coupon).order_by(Coupon.created_at.desc()).all()

    def create_coupon(self, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Coupon]]:
        code = str(data.get("code") or "").strip().upper()
        if not code:
            return False, "Coupon code is required", None
        if code in BUILTIN_COUPONS:
            return False, f"{code} is reserved", None

        try:
            discount_type = DiscountType(str(data.get("discount_type") or "percentage").lower())
        except ValueError:
            return False, "Discount type must be percentage or fixed", None

        try:
            discount_value = Decimal(str(data.get("discount_value")))
            min_purchase = Decimal(str(data.get("min_purchase_amount") or 0))
        except (InvalidOperation, TypeError, ValueError):
            return False, "Discount values must be numbers", None
        if discount_value <= 0:
            return False, "Discount value must be positive", None
        if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
            return False, "Percentage discounts cannot exceed 100", None

        usage_limit = data.get("usage_limit")
        try:
            usage_limit = int(usage_limit) if usage_limit not in (None, "") else None
            start_date = _parse_datetime(data.get("start_date"))
            end_date = _parse_datetime(data.get("end_date"))
        except ValueError:
            return False, "Invalid usage limit or date", None

        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            min_purchase_amount=min_purchase,
            start_date=start_date,
            end_date=end_date,
            usage_limit=usage_limit,
            used_count=0,
            is_active=bool(data.get("is_active", True)),
        )
        self.db.add(coupon)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, f"Coupon {code} already exists", None

        publish_change("coupons", "INSERT", coupon.id, {"code": code})
        record_event("coupon_created", {"code": code, "discount_type": discount_type.value})
        return True, "Coupon created successfully", coupon

    def delete_coupon(self, coupon_id: str) -> Tuple[bool, str]:
        deleted = self.db.query(Coupon).filter_by(id=coupon_id).delete(synchronize_session=False)
        self.db.commit()
        if not deleted:
            return False, "Coupon not found"
        publish_change("coupons", "DELETE", coupon_id)
        return True, "Coupon deleted"

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_settings(self) -> Dict[str, Dict[str, Any]]:
        stored = {setting.key: setting.value for setting in self.db.query(SiteSetting).all()}
        site_info = stored.get(SITE_INFO_KEY) or {}
        tax_config = stored.get(TAX_CONFIG_KEY) or {}
        return {
            SITE_INFO_KEY: {
                "name": site_info.get("name") or Config.APP_NAME,
                "description": site_info.get("description", ""),
                "support_email": site_info.get("support_email", ""),
                "logo_url": site_info.get("logo_url", ""),
            },
            TAX_CONFIG_KEY: {
                "rate": tax_config.get("rate", Config.TAX_RATE),
                "shipping_rate": tax_config.get("shipping_rate", Config.SHIPPING_FLAT_RATE),
                "free_shipping_threshold": tax_config.get(
                    "free_shipping_threshold", Config.FREE_SHIPPING_THRESHOLD
                ),
            },
        }

    def save_settings(self, payload: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Dict[str, Any]]]:
        """Upsert ``site_info`` and/or ``tax_config`` from a settings form."""
        updates: Dict[str, Dict[str, Any]] = {}
        if isinstance(payload.get(SITE_INFO_KEY), dict):
            updates[SITE_INFO_KEY] = {
                key: str(payload[SITE_INFO_KEY].get(key) or "").strip() for key in _SITE_INFO_FIELDS
            }
        if isinstance(payload.get(TAX_CONFIG_KEY), dict):
            try:
                tax_config = {
                    key: float(payload[TAX_CONFIG_KEY][key])
                    for key in _TAX_CONFIG_FIELDS
                    if payload[TAX_CONFIG_KEY].get(key) not in (None, "")
                }
            except (TypeError, ValueError):
                return False, "Tax and shipping values must be numbers", self.get_settings()
            if not 0 <= tax_config.get("rate", 0) <= 1:
                return False, "Tax rate must be between 0 and 1", self.get_settings()
            if any(value < 0 for value in tax_config.values()):
                return False, "Tax and shipping values cannot be negative", self.get_settings()
            updates[TAX_CONFIG_KEY] = tax_config

        if not updates:
            return False, "Nothing to save", self.get_settings()

        for key, value in updates.items():
            setting = self.db.query(SiteSetting).filter_by(key=key).first()
            if setting:
                setting.value = value
            else:
                self.db.add(SiteSetting(key=key, value=value, description=SETTING_DESCRIPTIONS[key]))
        self.db.commit()

        publish_change("site_settings", "UPDATE", None, {"keys": sorted(updates)})
        self.logger.info("Store settings saved", extra={"setting_keys": sorted(updates)})
        return True, "Settings saved successfully", self.get_settings()


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
