import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

from main import app, get_evaluator, get_store
from promotions import PromotionEvaluator
from schemas import RedemptionResult, UsageStats
from tests.helpers import FakeLookup

CART = {
    "items": [
        {"product": "product1", "category": "category1", "price": 50, "quantity": 2},
        {"product": "product2", "category": "category2", "price": 100, "quantity": 1},
    ],
    "items_price": 200,
}


@pytest.fixture
def store():
    return MagicMock()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def use_promotion(make_promotion, now):
    def _use(**overrides):
        lookup = FakeLookup(make_promotion(**overrides))
        app.dependency_overrides[get_evaluator] = lambda: PromotionEvaluator(lookup, clock=lambda: now)
        return lookup
    return _use


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"message": "Promotions Backend Running"}


def test_database_status_without_database(client, monkeypatch):
    monkeypatch.setattr("main.db", None)
    r = client.get("/test")
    assert r.status_code == 200
    assert r.json()["backend"] == "✅ Running"


def test_validate_success(client, use_promotion):
    use_promotion(value=20)

    r = client.post("/api/promotions/validate", json={"code": "save20", "cart": CART, "user_id": "user1"})

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["discount"] == 40
    assert data["free_shipping"] is False
    assert data["promotion"]["code"] == "SAVE20"
    assert "error" not in data


def test_validate_failure_is_not_an_http_error(client, use_promotion):
    use_promotion(applies_to="products", applicable_products=["product9"])

    r = client.post("/api/promotions/validate", json={"code": "SAVE20", "cart": CART})

    assert r.status_code == 200
    assert r.json() == {
        "success": False,
        "error": "Promotion not applicable to items in your cart",
        "error_code": "NOT_APPLICABLE",
    }


def test_validate_rejects_malformed_cart(client, use_promotion):
    use_promotion()
    bad_cart = {"items": [{"product": "p", "category": "c", "price": -1, "quantity": 0}]}

    r = client.post("/api/promotions/validate", json={"code": "SAVE20", "cart": bad_cart})

    assert r.status_code == 422


def test_validate_uses_store_lookup(client, store):
    store.find_promotion_by_code.return_value = None

    r = client.post("/api/promotions/validate", json={"code": "NOPE", "cart": CART})

    assert r.json()["error"] == "Invalid or inactive promotion code"
    store.find_promotion_by_code.assert_called_once_with("NOPE")


def test_record_redemption(client, store):
    store.record_redemption.return_value = RedemptionResult(success=True, message="Promotion usage recorded")
    payload = {
        "promotion": "promo1",
        "user": "user1",
        "order": "order1",
        "discount_amount": 40,
        "original_total": 200,
        "final_total": 160,
    }

    r = client.post("/api/promotions/redemptions", json=payload)

    assert r.status_code == 200
    assert r.json()["success"] is True
    usage = store.record_redemption.call_args.args[0]
    assert usage.order == "order1"


def test_record_redemption_conflict(client, store):
    store.record_redemption.return_value = RedemptionResult(success=False, message="Promotion is no longer available")
    payload = {
        "promotion": "promo1",
        "user": "user1",
        "order": "order2",
        "discount_amount": 40,
        "original_total": 200,
        "final_total": 160,
    }

    r = client.post("/api/promotions/redemptions", json=payload)

    assert r.status_code == 409
    assert r.json()["detail"] == "Promotion is no longer available"


def test_active_promotions(client, store, make_promotion):
    store.get_active_promotions.return_value = [make_promotion(), make_promotion(id="promo2", code="FREESHIP", type="free_shipping")]

    r = client.get("/api/promotions/active")

    assert r.status_code == 200
    assert [p["code"] for p in r.json()] == ["SAVE20", "FREESHIP"]


def test_usage_stats(client, store):
    store.get_usage_stats.return_value = UsageStats(total_usage=2, total_discount_given=80, average_discount=40, unique_user_count=1)

    r = client.get("/api/promotions/promo1/stats")

    assert r.status_code == 200
    assert r.json()["total_usage"] == 2
    store.get_usage_stats.assert_called_once_with("promo1")


def test_unconfigured_database_returns_503(monkeypatch):
    monkeypatch.setattr("main.db", None)
    app.dependency_overrides.clear()
    with TestClient(app) as test_client:
        r = test_client.get("/api/promotions/active")
    assert r.status_code == 503
