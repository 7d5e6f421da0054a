from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Coupon, DiscountType, SiteSetting
from storefront.observability import increment_counter
from storefront.observability.business_metrics import as_utc

TAX_CONFIG_KEY = "tax_config"

# Launch codes honoured regardless of the coupons table
BUILTIN_COUPONS: Dict[str, Tuple[DiscountType, float]] = {
    "FIRST10": (DiscountType.PERCENTAGE, 10.0),
    "LUXE500": (DiscountType.FIXED, 500.0),
}


def format_price(amount: float) -> str:
    return f"{Config.CURRENCY_SYMBOL}{float(amount or 0):.2f}"


@dataclass(frozen=True)
class PricingRules:
    tax_rate: float
    shipping_flat_rate: float
    free_shipping_threshold: float
    cod_handling_fee: float


@dataclass(frozen=True)
class PriceQuote:
    subtotal: float
    shipping: float
    tax: float
    handling_fee: float
    discount: float
    total: float
    coupon_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PricingService:
    """Checkout totals and coupon validation."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def rules(self) -> PricingRules:
        """Config defaults, overridden by the admin ``tax_config`` setting."""
        setting = self.db.query(SiteSetting).filter_by(key=TAX_CONFIG_KEY).first()
        overrides = setting.value if setting and isinstance(setting.value, dict) else {}

        def _pick(key: str, default: float) -> float:
            value = overrides.get(key)
            if value is None or value == "":
                return default
            try:
                return float(value)
            except (TypeError, ValueError):
                self.logger.warning("Ignoring invalid %s override %r", key, value)
                return default

        return PricingRules(
            tax_rate=_pick("rate", Config.TAX_RATE),
            shipping_flat_rate=_pick("shipping_rate", Config.SHIPPING_FLAT_RATE),
            free_shipping_threshold=_pick("free_shipping_threshold", Config.FREE_SHIPPING_THRESHOLD),
            cod_handling_fee=Config.COD_HANDLING_FEE,
        )

    def quote(
        self,
        cart_total: float,
        payment_method: Optional[str] = None,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, PriceQuote]:
        """
        Price a cart for checkout.

        An invalid coupon does not block the quote: it is priced without a
        discount and the failure message is returned alongside it.
        """
        rules = self.rules()
        cart_total = round(float(cart_total or 0), 2)
        shipping = 0.0 if cart_total > rules.free_shipping_threshold else rules.shipping_flat_rate
        handling_fee = rules.cod_handling_fee if payment_method == "cod" else 0.0
        tax = round(cart_total * rules.tax_rate, 2)

        discount = 0.0
        applied_code = None
        success, message = True, "Quote ready"
        if coupon_code:
            success, message, discount = self.apply_coupon(coupon_code, cart_total, now=now)
            if success:
                applied_code = coupon_code.strip().upper()

        total = round(cart_total + shipping + tax + handling_fee - discount, 2)
        return success, message, PriceQuote(
            subtotal=cart_total,
            shipping=round(shipping, 2),
            tax=tax,
            handling_fee=round(handling_fee, 2),
            discount=discount,
            total=total,
            coupon_code=applied_code,
        )

    def apply_coupon(
        self,
        code: Optional[str],
        cart_total: float,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, float]:
        normalized = (code or "").strip().upper()
        if not normalized:
            return False, "Please enter a coupon code", 0.0

        cart_total = float(cart_total or 0)
        builtin = BUILTIN_COUPONS.get(normalized)
        if builtin:
            discount = self._discount_for(builtin[0], builtin[1], cart_total)
            increment_counter("coupon_applications_total", labels={"code": normalized})
            return True, self._applied_message(builtin[0], builtin[1]), discount

        coupon = (
            self.db.query(Coupon)
            .filter(func.upper(Coupon.code) == normalized)
            .first()
        )
        if not coupon or not coupon.is_active:
            increment_counter("coupon_rejections_total", labels={"reason": "invalid"})
            return False, "Invalid coupon code", 0.0

        now = as_utc(now or datetime.now(timezone.utc))
        if coupon.start_date and as_utc(coupon.start_date) > now:
            return False, "This coupon is not active yet", 0.0
        if coupon.end_date and as_utc(coupon.end_date) < now:
            return False, "This coupon has expired", 0.0
        minimum = float(coupon.min_purchase_amount or 0)
        if cart_total < minimum:
            return False, f"Minimum purchase of {format_price(minimum)} required", 0.0
        if coupon.usage_limit is not None and (coupon.used_count or 0) >= coupon.usage_limit:
            return False, "This coupon has reached its usage limit", 0.0

        discount_type = DiscountType(coupon.discount_type)
        value = float(coupon.discount_value)
        increment_counter("coupon_applications_total", labels={"code": normalized})
        return True, self._applied_message(discount_type, value), self._discount_for(discount_type, value, cart_total)

    def record_coupon_use(self, code: Optional[str]) -> None:
        """Bump ``used_count`` for a table coupon. The caller commits."""
        normalized = (code or "").strip().upper()
        if not normalized or normalized in BUILTIN_COUPONS:
            return
        coupon = self.db.query(Coupon).filter(func.upper(Coupon.code) == normalized).first()
        if coupon:
            coupon.used_count = (coupon.used_count or 0) + 1

    @staticmethod
    def _discount_for(discount_type: DiscountType, value: float, cart_total: float) -> float:
        if discount_type == DiscountType.PERCENTAGE:
            discount = cart_total * value / 100
        else:
            discount = value
        # Never discount below zero
        return round(max(min(discount, cart_total), 0.0), 2)

    @staticmethod
    def _applied_message(discount_type: DiscountType, value: float) -> str:
        if discount_type == DiscountType.PERCENTAGE:
            return f"Coupon applied: {value:g}% OFF!"
        return f"Coupon applied: {format_price(value)} OFF!"
