import pytest

from storefront.models import BrowsingHistory
from storefront.services.recommendation_service import (
    RecommendationService,
    gift_quiz_category,
    push_recent,
)


@pytest.fixture
def recommendations(db_session):
    return RecommendationService(db_session)


@pytest.mark.parametrize(
    "answers, category",
    [
        ({1: "partner", 2: "birthday", 3: "tech"}, "Electronics"),
        ({"1": "kids", "2": "birthday", "3": "sports"}, "Toys"),
        ({1: "parents", 2: "housewarming"}, "Decor"),
        ({1: "parents", 2: "festival"}, "Appliances"),
        ({1: "friend", 2: "anniversary"}, "Jewelry"),
        ({1: "friend", 2: "housewarming"}, "Home"),
        ({}, "Fashion"),
    ],
)
def test_gift_quiz_category(answers, category):
    assert gift_quiz_category(answers) == category


def test_push_recent_moves_to_front_and_trims():
    assert push_recent(["a", "b", "c"], "b") == ["b", "a", "c"]
    assert push_recent(["a", "b", "c"], "d", limit=3) == ["d", "a", "b"]


def test_related_products_share_a_category(recommendations, make_product, products):
    match = make_product(name="Cashmere Shawl")
    assert [p.id for p in recommendations.related_products(products[0].id)] == [match.id]
    assert recommendations.related_products("missing") == []


def test_frequently_bought_together_uses_complementary_categories(recommendations, make_product, products):
    case = make_product(name="Headphone Case", category="Accessories")
    assert [p.id for p in recommendations.frequently_bought_together(products[1].id)] == [case.id]
    # Kitchen has no complementary category
    assert recommendations.frequently_bought_together(products[2].id) == []


def test_personalized_without_history_is_featured(recommendations, products):
    assert [p.name for p in recommendations.personalized([])] == ["Noise Cancelling Headphones"]


def test_personalized_follows_recent_categories(recommendations, make_product, products):
    shawl = make_product(name="Cashmere Shawl")
    picks = recommendations.personalized([products[0].id])
    assert [p.id for p in picks] == [shawl.id]


def test_trending_is_by_rating(recommendations, products):
    assert [p.name for p in recommendations.trending(2)] == ["Noise Cancelling Headphones", "Espresso Machine"]


def test_track_view_deduplicates(db_session, recommendations, customer, products):
    recommendations.track_view(customer.id, products[0].id)
    recommendations.track_view(customer.id, products[1].id)
    recommendations.track_view(customer.id, products[0].id)
    recommendations.track_view(customer.id, "missing")

    assert db_session.query(BrowsingHistory).filter_by(user_id=customer.id).count() == 2
    assert set(recommendations.history_ids(customer.id)) == {products[0].id, products[1].id}

    assert recommendations.clear_history(customer.id) == 2
    assert recommendations.history_ids(customer.id) == []


def test_recently_viewed_keeps_history_order(recommendations, products):
    history = [products[2].id, "gone", products[0].id]
    assert [p.name for p in recommendations.recently_viewed(history)] == ["Espresso Machine", "Silk Scarf"]


def test_wishlist(recommendations, customer, products):
    assert recommendations.add_to_wishlist(customer.id, products[0].id) == (True, "Added to wishlist")
    assert recommendations.add_to_wishlist(customer.id, products[0].id) == (True, "Added to wishlist")
    assert recommendations.add_to_wishlist(customer.id, "missing") == (False, "Product not found")
    assert [p.id for p in recommendations.get_wishlist(customer.id)] == [products[0].id]

    assert recommendations.remove_from_wishlist(customer.id, products[0].id) == (True, "Removed from wishlist")
    assert recommendations.remove_from_wishlist(customer.id, products[0].id) == (
        False,
        "Item is not in your wishlist",
    )
