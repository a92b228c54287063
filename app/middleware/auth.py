from fastapi import Header, HTTPException, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.config import get_settings
from app.database import get_db, utcnow
from app.middleware.correlation import bind_user
from app.models.user import User
from datetime import timedelta
from typing import Optional
import jwt
from app.utils.logger import logger

SESSION_ALGORITHM = "HS256"
SESSION_ISSUER = "serious-people"


def create_session_token(user: User) -> str:
    """Signed session token handed out after magic-link or OAuth login"""
    settings = get_settings()
    now = utcnow()
    payload = {
        "sub": user.id,
        "email": user.email,
        "iss": SESSION_ISSUER,
        "iat": now,
        "exp": now + timedelta(hours=settings.session_ttl_hours),
    }
    return jwt.encode(payload, settings.session_secret, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str) -> dict:
    return jwt.decode(
        token,
        get_settings().session_secret,
        algorithms=[SESSION_ALGORITHM],
        issuer=SESSION_ISSUER,
        options={"require": ["sub", "exp"]},
    )


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return parts[1]


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Dependency resolving the session user from `Authorization: Bearer <token>`

    Usage:
        @router.get("/endpoint")
        async def protected_endpoint(current_user: User = Depends(get_current_user)):
            ...
    """
    token = _bearer_token(authorization)
    try:
        payload = decode_session_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=401,
            detail="Session expired. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except jwt.InvalidTokenError as e:
        logger.info("auth.invalid_token", extra={"error": str(e)})
        raise HTTPException(
            status_code=401,
            detail="Invalid session token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Unknown user",
            headers={"WWW-Authenticate": "Bearer"}
        )

    bind_user(request, user.id)
    return user


def check_ownership(record_user_id: Optional[str], request_user_id: str) -> bool:
    """True if a record belongs to the requesting user"""
    return bool(record_user_id) and record_user_id == request_user_id


def require_owner(record_user_id: Optional[str], user: User) -> None:
    """Raise 403 unless `user` owns the record"""
    if not check_ownership(record_user_id, user.id):
        logger.warning("auth.ownership_denied", extra={"user_id": user.id})
        raise HTTPException(status_code=403, detail="Access denied")
