from datetime import datetime, timedelta, timezone

import pytest

from storefront.models import Coupon, Order
from storefront.services.admin_service import AdminService
from storefront.services.change_feed import ChangeFeed
from storefront.services.order_service import OrderService
from storefront.services.pricing_service import PricingService


@pytest.fixture
def admin_service(db_session):
    return AdminService(db_session)


def test_dashboard_counts(db_session, admin_service, customer, admin, products, place_order):
    first = place_order(customer, [(products[0], 1)])
    place_order(customer, [(products[1], 1)])
    OrderService(db_session).update_status(first.id, "delivered")

    dashboard = admin_service.dashboard()
    assert dashboard["total_orders"] == 2
    assert dashboard["active_orders"] == 1
    assert dashboard["total_customers"] == 2
    assert dashboard["total_revenue"] == pytest.approx(635 + 15343.82)
    assert len(dashboard["recent_orders"]) == 2


def test_analytics_skip_cancelled_orders(db_session, admin_service, customer, products, place_order):
    kept = place_order(customer, [(products[0], 1)])
    dropped = place_order(customer, [(products[1], 1)])
    OrderService(db_session).cancel_order(customer.id, dropped.id)

    summary = admin_service.analytics()
    assert summary["total_orders"] == 1
    assert summary["total_revenue"] == float(kept.total)
    assert summary["average_order_value"] == float(kept.total)
    assert summary["total_customers"] == 1
    assert len(summary["series"]) == 7
    assert summary["series"][-1]["orders"] == 1


def test_analytics_window_excludes_old_orders(db_session, admin_service, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    db_session.query(Order).filter_by(id=order.id).update(
        {Order.created_at: datetime.now(timezone.utc) - timedelta(days=120)}
    )
    db_session.commit()
    assert admin_service.analytics()["total_orders"] == 0


def test_create_coupon_normalises_and_publishes(db_session, admin_service):
    ok, message, coupon = admin_service.create_coupon(
        {
            "code": " spring15 ",
            "discount_type": "PERCENTAGE",
            "discount_value": "15",
            "min_purchase_amount": "500",
            "usage_limit": "100",
            "end_date": "2030-01-01T00:00:00",
        }
    )
    assert ok, message
    assert coupon.code == "SPRING15"
    assert coupon.usage_limit == 100
    assert coupon.end_date == datetime(2030, 1, 1)
    assert [e.table for e in ChangeFeed().since(0)] == ["coupons"]

    applied, _, discount = PricingService(db_session).apply_coupon("SPRING15", 1000)
    assert applied
    assert discount == 150


def test_coupon_validation(admin_service):
    assert admin_service.create_coupon({})[1] == "Coupon code is required"
    assert admin_service.create_coupon({"code": "first10", "discount_value": 5})[1] == "FIRST10 is reserved"
    assert admin_service.create_coupon({"code": "X", "discount_type": "bogo", "discount_value": 5})[1] == (
        "Discount type must be percentage or fixed"
    )
    assert admin_service.create_coupon({"code": "X", "discount_value": "lots"})[1] == "Discount values must be numbers"
    assert admin_service.create_coupon({"code": "X", "discount_value": 0})[1] == "Discount value must be positive"
    assert admin_service.create_coupon({"code": "X", "discount_value": 120})[1] == (
        "Percentage discounts cannot exceed 100"
    )
    assert admin_service.create_coupon({"code": "X", "discount_value": 5, "end_date": "soon"})[1] == (
        "Invalid usage limit or date"
    )


def test_duplicate_coupon_code(db_session, admin_service):
    assert admin_service.create_coupon({"code": "TWICE", "discount_value": 5})[0]
    assert admin_service.create_coupon({"code": "twice", "discount_value": 5})[:2] == (
        False,
        "Coupon TWICE already exists",
    )
    assert db_session.query(Coupon).count() == 1


def test_delete_coupon(admin_service):
    _, _, coupon = admin_service.create_coupon({"code": "GONE", "discount_value": 5})
    coupon_id = coupon.id
    assert admin_service.delete_coupon(coupon_id) == (True, "Coupon deleted")
    assert admin_service.delete_coupon(coupon_id) == (False, "Coupon not found")


def test_settings_defaults_and_save(admin_service):
    settings = admin_service.get_settings()
    assert settings["site_info"]["name"] == "Luxe Storefront"
    assert settings["tax_config"] == {"rate": 0.18, "shipping_rate": 99.0, "free_shipping_threshold": 1000.0}

    ok, message, saved = admin_service.save_settings(
        {
            "site_info": {"name": "Luxe", "support_email": "help@luxe.test"},
            "tax_config": {"rate": "0.12", "shipping_rate": "49"},
        }
    )
    assert ok
    assert message == "Settings saved successfully"
    assert saved["site_info"]["support_email"] == "help@luxe.test"
    assert saved["tax_config"]["rate"] == 0.12
    assert saved["tax_config"]["free_shipping_threshold"] == 1000.0


def test_settings_validation(admin_service):
    assert admin_service.save_settings({})[1] == "Nothing to save"
    assert admin_service.save_settings({"tax_config": {"rate": "high"}})[1] == (
        "Tax and shipping values must be numbers"
    )
    assert admin_service.save_settings({"tax_config": {"rate": 18}})[1] == "Tax rate must be between 0 and 1"
    assert admin_service.save_settings({"tax_config": {"shipping_rate": -1}})[1] == (
        "Tax and shipping values cannot be negative"
    )


def test_saved_tax_config_changes_quotes(db_session, admin_service):
    admin_service.save_settings({"tax_config": {"rate": 0.1, "shipping_rate": 0}})
    _, _, quote = PricingService(db_session).quote(500)
    assert quote.tax == 50
    assert quote.shipping == 0
    assert quote.total == 550
