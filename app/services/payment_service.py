"""
Stripe checkout for the coaching session.

The price id is looked up (or created) once per process and memoized;
promotion codes are resolved against Stripe on each checkout. The Stripe SDK
is synchronous, so calls run in a worker thread through the gateway.
"""
import asyncio
from typing import Any, Dict, Optional

import stripe

from app.config import get_settings
from app.services.gateway import get_gateway
from app.utils.logger import get_logger

logger = get_logger("payments")

PRODUCT_APP_TAG = "serious-people"
PRODUCT_NAME = "Serious People - Career Coaching Session"

_price_id: Optional[str] = None


class PaymentsNotConfigured(Exception):
    pass


def _configure() -> None:
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise PaymentsNotConfigured("STRIPE_SECRET_KEY is not set")
    stripe.api_key = settings.stripe_secret_key


async def _stripe(fn, **params) -> Any:
    return await get_gateway().execute("stripe", asyncio.to_thread, fn, **params)


def _find_or_create_price() -> str:
    products = stripe.Product.list(limit=100)
    product = next((p for p in products.data if (p.metadata or {}).get("app") == PRODUCT_APP_TAG), None)
    if product is not None:
        prices = stripe.Price.list(product=product.id, active=True, limit=1)
        if prices.data:
            return prices.data[0].id

    product = stripe.Product.create(name=PRODUCT_NAME, metadata={"app": PRODUCT_APP_TAG})
    price = stripe.Price.create(
        product=product.id,
        unit_amount=get_settings().stripe_price_amount_cents,
        currency="usd",
    )
    logger.info("stripe.price_created", extra={"operation": price.id})
    return price.id


async def get_price_id() -> str:
    global _price_id
    if _price_id is None:
        _configure()
        _price_id = await get_gateway().execute("stripe", asyncio.to_thread, _find_or_create_price)
    return _price_id


def reset_price_cache() -> None:
    global _price_id
    _price_id = None


async def find_promotion_code(code: str) -> Optional[str]:
    """Stripe id of an active promotion code, or None"""
    _configure()
    result = await _stripe(stripe.PromotionCode.list, code=code, active=True, limit=1)
    return result.data[0].id if result.data else None


async def create_checkout_session(user_id: str, email: Optional[str], promo_code: Optional[str] = None) -> Dict[str, Any]:
    settings = get_settings()
    price_id = await get_price_id()
    base = settings.base_url.rstrip("/")

    params: Dict[str, Any] = {
        "mode": "payment",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base}/interview",
        "client_reference_id": user_id,
        "metadata": {"user_id": user_id},
    }
    if email:
        params["customer_email"] = email

    promotion_id = await find_promotion_code(promo_code) if promo_code else None
    if promotion_id:
        params["discounts"] = [{"promotion_code": promotion_id}]
    else:
        params["allow_promotion_codes"] = True
        if promo_code:
            logger.info("stripe.promo_not_found", extra={"user_id": user_id})

    session = await _stripe(stripe.checkout.Session.create, **params)
    logger.info("stripe.checkout_created", extra={"user_id": user_id})
    return {"url": session.url, "sessionId": session.id}


async def is_session_paid(session_id: str) -> bool:
    _configure()
    session = await _stripe(stripe.checkout.Session.retrieve, id=session_id)
    return session.payment_status == "paid"
