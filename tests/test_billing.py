from types import SimpleNamespace

import pytest
import stripe

from app.config import get_settings
from app.services import payment_service, transcript_store
from tests.fakes.factories import auth_headers


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = {"sessions": [], "price_lookups": 0}

    def find_price():
        calls["price_lookups"] += 1
        return "price_123"

    def create_session(**params):
        calls["sessions"].append(params)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")

    def list_promotions(code, active, limit):
        data = [SimpleNamespace(id="promo_1")] if code == "FRIEND" else []
        return SimpleNamespace(data=data)

    def retrieve_session(id):
        return SimpleNamespace(id=id, payment_status="paid" if id == "cs_paid" else "unpaid")

    monkeypatch.setattr(get_settings(), "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(payment_service, "_find_or_create_price", find_price)
    monkeypatch.setattr(stripe.checkout.Session, "create", create_session)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve_session)
    monkeypatch.setattr(stripe.PromotionCode, "list", list_promotions)
    return calls


async def test_checkout_applies_known_promo_code(client, user, stripe_calls):
    response = await client.post("/api/checkout", json={"promo_code": "FRIEND"}, headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.stripe.test/cs_test_1", "sessionId": "cs_test_1"}

    params = stripe_calls["sessions"][0]
    assert params["discounts"] == [{"promotion_code": "promo_1"}]
    assert params["line_items"] == [{"price": "price_123", "quantity": 1}]
    assert params["success_url"].endswith("/success?session_id={CHECKOUT_SESSION_ID}")
    assert params["client_reference_id"] == user.id


async def test_unknown_promo_code_allows_entry_at_checkout(client, user, stripe_calls):
    await client.post("/api/checkout", json={"promo_code": "NOPE"}, headers=auth_headers(user))
    await client.post("/api/checkout", json={}, headers=auth_headers(user))

    assert all(p["allow_promotion_codes"] is True for p in stripe_calls["sessions"])
    # The price is looked up once per process
    assert stripe_calls["price_lookups"] == 1


async def test_verify_session_marks_payment(client, db, user, stripe_calls):
    response = await client.get("/api/verify-session", params={"session_id": "cs_paid"}, headers=auth_headers(user))
    assert response.json() == {"ok": True}

    transcript = await transcript_store.get_transcript_by_user(db, user.id)
    assert transcript.payment_verified
    assert transcript.stripe_session_id == "cs_paid"


async def test_unpaid_session_is_403(client, user, stripe_calls):
    response = await client.get("/api/verify-session", params={"session_id": "cs_open"}, headers=auth_headers(user))
    assert response.status_code == 403


async def test_checkout_without_stripe_is_503(client, user):
    response = await client.post("/api/checkout", json={}, headers=auth_headers(user))
    assert response.status_code == 503
