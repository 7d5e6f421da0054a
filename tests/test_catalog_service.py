from datetime import datetime, timedelta, timezone

import pytest

from storefront.models import CartItem, OrderItem, Product
from storefront.services.cart_service import CartService
from storefront.services.catalog_service import CatalogService, deal_time_left, sanitize_text

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def catalog(db_session):
    return CatalogService(db_session)


def test_deal_countdown_label():
    assert deal_time_left(NOW + timedelta(hours=5, minutes=4, seconds=3), now=NOW) == "05h 04m 03s"
    assert deal_time_left(NOW + timedelta(days=2, hours=1), now=NOW) == "49h 00m 00s"
    assert deal_time_left(NOW - timedelta(seconds=1), now=NOW) == "00h 00m 00s"
    assert deal_time_left(None) == "00h 00m 00s"
    # naive values from SQLite are read as UTC
    assert deal_time_left(datetime(2024, 6, 1, 13, 0), now=NOW) == "01h 00m 00s"


def test_sanitize_strips_markup():
    assert sanitize_text("<script>alert(1)</script>Lovely <b>fit</b>") == "alert(1)Lovely fit"
    assert sanitize_text(None) == ""


def test_filters_and_sorting(catalog, products):
    names = lambda items: [p.name for p in items]  # noqa: E731

    assert names(catalog.list_products(category="electronics")) == ["Noise Cancelling Headphones"]
    assert names(catalog.list_products(category="accessories")) == ["Silk Scarf"]
    assert names(catalog.list_products(subcategory="Coffee")) == ["Espresso Machine"]
    assert names(catalog.list_products(min_price=1000, max_price=10000)) == ["Espresso Machine"]
    assert names(catalog.list_products(search="silk")) == ["Silk Scarf"]
    assert names(catalog.list_products(search="barista")) == ["Espresso Machine"]
    assert catalog.list_products(search="cashmere") == []
    assert names(catalog.list_products(sort_by="price_asc")) == [
        "Silk Scarf",
        "Espresso Machine",
        "Noise Cancelling Headphones",
    ]
    assert names(catalog.list_products(sort_by="rating"))[0] == "Noise Cancelling Headphones"


def test_homepage_shelves(catalog, products):
    assert [p.name for p in catalog.featured()] == ["Noise Cancelling Headphones"]
    assert [p.name for p in catalog.bestsellers()] == ["Espresso Machine"]
    assert [p.name for p in catalog.deals_of_the_day()] == ["Espresso Machine"]
    assert [p.name for p in catalog.by_category("kitchen")] == ["Espresso Machine"]
    assert {c["name"] for c in catalog.categories()} >= {"Electronics", "Fashion", "Kitchen"}


def test_reviews_update_the_cached_rating(db_session, catalog, customer, other_customer, make_product):
    product = make_product(rating=0)
    ok, message, review = catalog.submit_review(product.id, customer, 5, "Beautiful <i>quality</i>")
    assert ok
    assert message == "Review submitted"
    assert review.comment == "Beautiful quality"
    assert review.user_name == "Test Shopper"

    catalog.submit_review(product.id, other_customer, "2", "Colour faded")
    db_session.refresh(product)
    assert float(product.rating) == 3.5
    assert product.review_count == 2
    assert [r.rating for r in catalog.list_reviews(product.id)] == [2, 5]

    assert catalog.delete_review(review.id) == (True, "Review deleted")
    db_session.refresh(product)
    assert float(product.rating) == 2
    assert product.review_count == 1


def test_review_validation(catalog, customer, products):
    product_id = products[0].id
    assert catalog.submit_review("missing", customer, 5, "x")[1] == "Product not found"
    assert catalog.submit_review(product_id, customer, 6, "x")[1] == "Rating must be a number between 1 and 5"
    assert catalog.submit_review(product_id, customer, "five", "x")[1] == "Rating must be a number between 1 and 5"
    assert catalog.submit_review(product_id, customer, 4, "<p></p>")[1] == "Please write a comment"
    assert catalog.submit_review(product_id, None, 4, "Nice")[2].user_name == "Anonymous"


def test_create_and_update_product(catalog):
    ok, message, product = catalog.create_product(
        {"name": " Leather Tote ", "category": "Fashion", "price": "2499", "stock": "-3", "images": None}
    )
    assert ok, message
    assert product.name == "Leather Tote"
    assert float(product.price) == 2499
    assert product.stock == 0
    assert product.images == []

    ok, _, updated = catalog.update_product(product.id, {"price": 1999, "deal_expires_at": "2024-07-01T00:00:00"})
    assert ok
    assert float(updated.price) == 1999
    assert updated.deal_expires_at == datetime(2024, 7, 1)


def test_product_validation(catalog, products):
    assert catalog.create_product({"category": "Fashion", "price": 10})[1] == "Product name is required"
    assert catalog.create_product({"name": "Tote", "price": 10})[1] == "Category is required"
    assert catalog.create_product({"name": "Tote", "category": "Fashion", "price": "free"})[1] == "Invalid price"
    assert catalog.create_product({"name": "Tote", "category": "Fashion", "price": 0})[1] == "Price must be positive"
    assert catalog.update_product(products[0].id, {"stock": "lots"})[1] == "Stock must be a whole number"
    assert catalog.update_product("missing", {"stock": 1})[1] == "Product not found"


def test_delete_product_keeps_order_history(db_session, catalog, customer, products, place_order):
    order = place_order(customer, [(products[0], 1)])
    CartService(db_session).add_to_cart(customer.id, products[0].id, 1)

    assert catalog.delete_product(products[0].id) == (True, "Product deleted")
    assert db_session.query(Product).filter_by(name="Silk Scarf").count() == 0
    assert db_session.query(CartItem).count() == 0

    [line] = db_session.query(OrderItem).filter_by(order_id=order.id).all()
    assert line.product_id is None
    assert float(line.price_at_purchase) == 450


def test_low_stock(catalog, make_product):
    make_product(name="Almost Gone", stock=2)
    make_product(name="Plenty", stock=50)
    assert [p.name for p in catalog.low_stock(5)] == ["Almost Gone"]
