"""Magic-link authentication routes"""

from datetime import timedelta
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import get_settings
from app.database import get_db, utcnow
from app.models.user import User, MagicLinkToken
from app.middleware.auth import get_current_user, create_session_token
from app.schemas.serious_plan import MagicLinkRequest
from app.services.email_service import send_magic_link_email
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger("auth")
limiter = Limiter(key_func=get_remote_address)


@router.post("/magic-link")
@limiter.limit("5/15minutes")
async def request_magic_link(
    request: Request,
    data: MagicLinkRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Email a one-time login link. The token is only stored hashed and
    expires after MAGIC_LINK_TTL_MINUTES.
    """
    settings = get_settings()
    token = MagicLinkToken.generate_token()
    db.add(MagicLinkToken(
        email=data.email,
        token_hash=MagicLinkToken.hash_token(token),
        expires_at=utcnow() + timedelta(minutes=settings.magic_link_ttl_minutes),
    ))
    await db.commit()

    link = f"{settings.base_url.rstrip('/')}/api/auth/magic-link/verify?{urlencode({'token': token})}"
    result = await send_magic_link_email(data.email, link)
    if not result["success"]:
        raise HTTPException(status_code=502, detail="Could not send login email. Please try again.")

    response = {"success": True}
    if settings.test_mode:
        response["devLink"] = link
    return response


@router.get("/magic-link/verify")
async def verify_magic_link(token: str, db: AsyncSession = Depends(get_db)):
    """Consume a login link, creating the account on first login"""
    result = await db.execute(
        select(MagicLinkToken).where(MagicLinkToken.token_hash == MagicLinkToken.hash_token(token))
    )
    link = result.scalar_one_or_none()
    if not link or not link.is_usable():
        raise HTTPException(status_code=400, detail="This login link is invalid or has expired")

    # Conditional on used_at so a link can only be consumed once
    consumed = await db.execute(
        update(MagicLinkToken)
        .where(MagicLinkToken.id == link.id, MagicLinkToken.used_at.is_(None))
        .values(used_at=utcnow())
    )
    if consumed.rowcount != 1:
        await db.rollback()
        raise HTTPException(status_code=400, detail="This login link has already been used")

    result = await db.execute(select(User).where(User.email == link.email))
    user = result.scalar_one_or_none()
    if not user:
        user = User(email=link.email)
        db.add(user)
        logger.info("auth.user_created", extra={"email_domain": link.email.rpartition("@")[2]})
    await db.commit()
    await db.refresh(user)

    return {"token": create_session_token(user), "user": user.to_dict()}


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    return {"user": current_user.to_dict()}
