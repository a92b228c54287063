from sqlalchemy import Column, String, DateTime
from app.database import Base, utcnow
import hashlib
import secrets
import uuid


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)  # Captured from the interview when not given at signup

    # OAuth linkage (null for magic-link accounts)
    oauth_provider = Column(String(50), nullable=True)
    oauth_id = Column(String(255), nullable=True, index=True)

    promo_code = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "oauthProvider": self.oauth_provider,
            "promoCode": self.promo_code,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class MagicLinkToken(Base):
    """One-time login link. Only the sha256 of the token is stored."""
    __tablename__ = "magic_link_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    @staticmethod
    def generate_token() -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def is_usable(self) -> bool:
        return self.used_at is None and self.expires_at > utcnow()
