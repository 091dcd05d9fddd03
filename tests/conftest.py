import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from schemas import Cart, CartItem, Promotion

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_promotion():
    def _make(**overrides):
        data = {
            "id": "promo1",
            "code": "SAVE20",
            "name": "Save 20",
            "type": "percentage",
            "value": 20,
            "active": True,
            "start_date": NOW - timedelta(days=1),
            "end_date": NOW + timedelta(days=1),
            "min_order_value": 0,
            "max_discount_amount": 0,
            "usage_limit": 0,
            "used_count": 0,
            "user_usage_limit": 0,
            "applies_to": "all",
            "applicable_products": [],
            "applicable_categories": [],
        }
        data.update(overrides)
        return Promotion(**data)
    return _make


@pytest.fixture
def cart():
    """Two lines: product1 2 x 50 in category1, product2 1 x 100 in category2."""
    return Cart(
        items=[
            CartItem(product="product1", category="category1", name="Test Product 1", price=50, quantity=2),
            CartItem(product="product2", category="category2", name="Test Product 2", price=100, quantity=1),
        ],
        items_price=200,
        shipping_price=10,
        tax_price=20,
        total_price=230,
    )


@pytest.fixture
def mock_db():
    """Database double whose collections are created on first access."""
    collections = {}

    def _collection(name):
        return collections.setdefault(name, MagicMock(name=name))

    database = MagicMock()
    database.__getitem__.side_effect = _collection
    return database
