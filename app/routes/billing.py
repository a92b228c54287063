"""Stripe checkout routes"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.database import get_db
from app.models.user import User
from app.middleware.auth import get_current_user
from app.schemas.serious_plan import CheckoutRequest
from app.services import payment_service, transcript_store
from app.services.payment_service import PaymentsNotConfigured
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger("billing")
limiter = Limiter(key_func=get_remote_address)


@router.post("/checkout")
@limiter.limit("10/minute")
async def checkout(
    request: Request,
    data: CheckoutRequest,
    current_user: User = Depends(get_current_user),
):
    """Create a Stripe Checkout session. Returns {url, sessionId}."""
    try:
        return await payment_service.create_checkout_session(
            current_user.id, current_user.email, data.promo_code or current_user.promo_code
        )
    except PaymentsNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("billing.checkout_failed", extra={"user_id": current_user.id, "error": str(e)[:200]},
                     exc_info=True)
        raise HTTPException(status_code=500, detail="Could not start checkout")


@router.get("/verify-session")
async def verify_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark the user's coaching session paid once Stripe reports the checkout as paid"""
    try:
        paid = await payment_service.is_session_paid(session_id)
    except PaymentsNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("billing.verify_failed", extra={"user_id": current_user.id, "error": str(e)[:200]},
                     exc_info=True)
        raise HTTPException(status_code=500, detail="Could not verify payment")

    if not paid:
        raise HTTPException(status_code=403, detail={"ok": False, "error": "Payment not completed"})

    await transcript_store.upsert_transcript(
        db, current_user.id, payment_verified=True, stripe_session_id=session_id
    )
    logger.info("billing.payment_verified", extra={"user_id": current_user.id})
    return {"ok": True}
