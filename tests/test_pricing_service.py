from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.models import Coupon, DiscountType, SiteSetting
from storefront.services.pricing_service import TAX_CONFIG_KEY, PricingService, format_price

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pricing(db_session):
    return PricingService(db_session)


def _coupon(db_session, **overrides):
    fields = {
        "code": "SUMMER20",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("20"),
        "min_purchase_amount": Decimal("0"),
        "is_active": True,
        "used_count": 0,
    }
    fields.update(overrides)
    coupon = Coupon(**fields)
    db_session.add(coupon)
    db_session.commit()
    return coupon


def test_format_price_uses_rupee_symbol():
    assert format_price(1234.5) == "₹1234.50"
    assert format_price(None) == "₹0.00"


def test_quote_below_threshold_charges_flat_shipping(pricing):
    ok, _, quote = pricing.quote(500)
    assert ok
    assert quote.subtotal == 500
    assert quote.shipping == 99
    assert quote.tax == 90
    assert quote.handling_fee == 0
    assert quote.total == 689


def test_quote_above_threshold_ships_free(pricing):
    _, _, quote = pricing.quote(1500)
    assert quote.shipping == 0
    assert quote.total == 1770


def test_threshold_itself_still_pays_shipping(pricing):
    _, _, quote = pricing.quote(1000)
    assert quote.shipping == 99


def test_cod_adds_handling_fee(pricing):
    _, _, quote = pricing.quote(1500, payment_method="cod")
    assert quote.handling_fee == 5
    assert quote.total == 1775


def test_builtin_percentage_coupon(pricing):
    ok, message, quote = pricing.quote(2000, coupon_code="first10")
    assert ok
    assert message == "Coupon applied: 10% OFF!"
    assert quote.discount == 200
    assert quote.coupon_code == "FIRST10"
    assert quote.total == 2000 + 360 - 200


def test_fixed_coupon_never_exceeds_cart_total(pricing):
    ok, message, quote = pricing.quote(300, coupon_code="LUXE500")
    assert ok
    assert message == "Coupon applied: ₹500.00 OFF!"
    assert quote.discount == 300
    assert quote.total >= 0


def test_invalid_coupon_prices_without_discount(pricing):
    ok, message, quote = pricing.quote(500, coupon_code="NOPE")
    assert not ok
    assert message == "Invalid coupon code"
    assert quote.discount == 0
    assert quote.coupon_code is None
    assert quote.total == 689


def test_blank_coupon_code_is_rejected(pricing):
    assert pricing.apply_coupon("  ", 500) == (False, "Please enter a coupon code", 0.0)


def test_table_coupon_rules(db_session, pricing):
    _coupon(db_session, code="EARLY", start_date=NOW + timedelta(days=1))
    _coupon(db_session, code="OLD", end_date=NOW - timedelta(days=1))
    _coupon(db_session, code="BIGSPEND", min_purchase_amount=Decimal("5000"))
    _coupon(db_session, code="USEDUP", usage_limit=2, used_count=2)
    _coupon(db_session, code="PAUSED", is_active=False)

    assert pricing.apply_coupon("EARLY", 1000, now=NOW)[1] == "This coupon is not active yet"
    assert pricing.apply_coupon("OLD", 1000, now=NOW)[1] == "This coupon has expired"
    assert pricing.apply_coupon("BIGSPEND", 1000, now=NOW)[1] == "Minimum purchase of ₹5000.00 required"
    assert pricing.apply_coupon("USEDUP", 1000, now=NOW)[1] == "This coupon has reached its usage limit"
    assert pricing.apply_coupon("PAUSED", 1000, now=NOW)[1] == "Invalid coupon code"


def test_table_coupon_applies_and_counts_use(db_session, pricing):
    coupon = _coupon(db_session, code="FLAT150", discount_type=DiscountType.FIXED, discount_value=Decimal("150"))
    ok, message, discount = pricing.apply_coupon("flat150", 800, now=NOW)
    assert ok
    assert discount == 150
    assert message == "Coupon applied: ₹150.00 OFF!"

    pricing.record_coupon_use("FLAT150")
    db_session.commit()
    db_session.refresh(coupon)
    assert coupon.used_count == 1


def test_builtin_coupons_are_not_tracked(db_session, pricing):
    pricing.record_coupon_use("FIRST10")
    db_session.commit()
    assert db_session.query(Coupon).count() == 0


def test_tax_config_setting_overrides_defaults(db_session, pricing):
    db_session.add(
        SiteSetting(
            key=TAX_CONFIG_KEY,
            value={"rate": 0.05, "shipping_rate": 49, "free_shipping_threshold": 300},
        )
    )
    db_session.commit()

    _, _, small = pricing.quote(200)
    assert small.tax == 10
    assert small.shipping == 49

    _, _, large = pricing.quote(400)
    assert large.shipping == 0
