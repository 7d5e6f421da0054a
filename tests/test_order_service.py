from datetime import datetime, timezone

import pytest

from storefront.models import Notification, OrderStatus, Transaction, TransactionStatus
from storefront.services.cart_service import CartService
from storefront.services.order_service import (
    OrderService,
    advance_tracking,
    generate_tracking_steps,
)


@pytest.fixture
def orders(db_session):
    return OrderService(db_session)


def _titles(db_session, user_id):
    return [n.title for n in db_session.query(Notification).filter_by(user_id=user_id).all()]


def test_tracking_timeline_advances_in_order():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    steps = generate_tracking_steps(now)
    assert [s["status"] for s in steps] == [
        "confirmed",
        "processing",
        "shipped",
        "out_for_delivery",
        "delivered",
    ]
    shipped = advance_tracking(steps, OrderStatus.SHIPPED, now)
    assert [s["completed"] for s in shipped] == [True, True, True, False, False]
    assert shipped[0]["timestamp"] == now.isoformat()

    # cancelling does not touch the timeline
    assert advance_tracking(shipped, OrderStatus.CANCELLED, now) == shipped


def test_list_and_get_are_scoped_to_owner(orders, customer, other_customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    assert [o.id for o in orders.list_orders(customer.id)] == [order.id]
    assert orders.list_orders(other_customer.id) == []
    assert orders.get_order(order.id, user_id=other_customer.id) is None
    assert orders.get_order(order.id).id == order.id


def test_cancel_paid_order_refunds_transaction(db_session, orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)], payment_method="credit_card")
    ok, message, cancelled = orders.cancel_order(customer.id, order.id)
    assert ok
    assert message == "Order cancelled successfully"
    assert cancelled.status == OrderStatus.CANCELLED

    transaction = db_session.query(Transaction).filter_by(order_id=order.id).one()
    assert transaction.status == TransactionStatus.REFUNDED
    assert "Order Cancelled" in _titles(db_session, customer.id)


def test_cancel_cod_order_leaves_pending_transaction(db_session, orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    assert orders.cancel_order(customer.id, order.id)[0]
    transaction = db_session.query(Transaction).filter_by(order_id=order.id).one()
    assert transaction.status == TransactionStatus.PENDING


def test_shipped_orders_cannot_be_cancelled(orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    orders.update_status(order.id, "shipped")
    ok, message, _ = orders.cancel_order(customer.id, order.id)
    assert not ok
    assert message == "Orders that are shipped cannot be cancelled"


def test_returns_need_a_delivered_order(db_session, orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    assert orders.request_return(customer.id, order.id)[:2] == (False, "Only delivered orders can be returned")

    orders.update_status(order.id, OrderStatus.DELIVERED)
    ok, message, _ = orders.request_return(customer.id, order.id)
    assert ok
    assert message == "Return request submitted! Our executive will contact you."
    assert "Return Requested" in _titles(db_session, customer.id)


def test_reorder_puts_items_back_in_cart(db_session, orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 2), (products[2], 1)])
    assert CartService(db_session).get_cart(customer.id).is_empty

    ok, message, added = orders.reorder(customer.id, order.id)
    assert ok
    assert message == "All items added to cart for reorder!"
    assert added == 2
    assert CartService(db_session).get_cart(customer.id).cart_count == 3


def test_update_status_records_tracking_and_notifies(db_session, orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    ok, message, updated = orders.update_status(order.id, "OUT_FOR_DELIVERY")
    assert ok
    assert message == "Order status updated to out_for_delivery"
    completed = [s["status"] for s in updated.tracking_steps if s["completed"]]
    assert completed == ["confirmed", "processing", "shipped", "out_for_delivery"]

    notification = (
        db_session.query(Notification)
        .filter_by(user_id=customer.id, title="Order Update")
        .one()
    )
    assert notification.body == f"Your order #{order.id[:8]} status has been updated to: out_for_delivery"


def test_update_status_rejects_unknown_values(orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    assert orders.update_status(order.id, "lost")[:2] == (False, "Unknown order status lost")
    assert orders.update_status("missing", "shipped")[:2] == (False, "Order not found")


def test_search_orders_by_name_and_status(orders, customer, products, place_order):
    first = place_order(customer, [(products[0], 1)])
    second = place_order(customer, [(products[1], 1)])
    orders.update_status(second.id, "delivered")

    assert {o.id for o in orders.search_orders("test shopper")} == {first.id, second.id}
    assert [o.id for o in orders.search_orders(status="DELIVERED")] == [second.id]
    assert [o.id for o in orders.search_orders(first.id[:8])] == [first.id]
    assert orders.search_orders("nobody") == []


def test_invoice_lists_items_and_totals(orders, customer, products, place_order):
    order = place_order(customer, [(products[0], 2)])
    text = orders.invoice_text(orders.get_order(order.id))
    assert f"Order: #{order.id[:8]}" in text
    assert "Silk Scarf x2 @ ₹450.00 = ₹900.00" in text
    assert "Shipping: ₹99.00" in text
    assert "Handling fee: ₹5.00" in text
    assert "Payment: COD" in text
    assert "Bengaluru, Karnataka - 560025" in text
