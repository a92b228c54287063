from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional
import os

class Settings(BaseSettings):
    # LLM providers - Anthropic is preferred when its key is present
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_fast_model: str = "claude-haiku-4-5"
    openai_model: str = "gpt-4.1-mini"
    artifacts_max_tokens: int = 8192
    coach_letter_max_tokens: int = 1024
    chat_max_tokens: int = 1024

    # Test Mode
    test_mode: bool = False

    # Database - Railway provides DATABASE_URL, fallback to SQLite for local
    database_url: Optional[str] = None

    # Sessions
    session_secret: str = "change-me-session-secret"
    session_ttl_hours: int = 24 * 30
    magic_link_ttl_minutes: int = 15

    # Object storage for rendered PDFs (Supabase Storage)
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    pdf_storage_bucket: str = "serious-plan-pdfs"

    # Email (Resend). Connector credentials are fetched per send.
    resend_api_key: str = ""
    resend_connector_hostname: str = ""
    resend_connector_token: str = ""
    resend_fallback_from: str = "onboarding@resend.dev"
    support_email: str = "hello@seriouspeople.app"

    # Payments
    stripe_secret_key: str = ""
    stripe_price_amount_cents: int = 1900

    # Redis (optional, enables the shared generation lock)
    redis_url: str = ""

    # Serious Plan pipeline tunables
    auto_start_delays: List[float] = [5, 15, 30, 60, 120, 300]
    transcript_read_attempts: int = 3
    transcript_read_delay_seconds: float = 0.5
    dossier_lock_stale_seconds: float = 60.0
    artifact_not_generated_text: str = (
        "This artifact was not generated. The coach focused on other materials "
        "more relevant to your situation."
    )

    # App Settings
    app_name: str = "SeriousPeople"
    app_version: str = "1.0.0"
    debug: bool = True
    # Mounts /api/dev, whose reset deletes the session user's data
    enable_dev_routes: bool = False
    base_url: str = "http://localhost:5000"
    allowed_origins: str = "http://localhost:5000,http://localhost:5173"

    # API Settings
    backend_host: str = "0.0.0.0"
    backend_port: int = int(os.getenv("PORT", "8000"))

    class Config:
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Auto-detect database URL, fallback to local SQLite
        if not self.database_url:
            self.database_url = os.getenv("DATABASE_URL") or "sqlite+aiosqlite:///./database/serious_people.db"

        # Platforms hand out postgres:// or postgresql://, but SQLAlchemy async needs postgresql+asyncpg://
        if self.database_url.startswith("postgres://"):
            self.database_url = self.database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif self.database_url.startswith("postgresql://"):
            self.database_url = self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    @property
    def llm_provider(self) -> str:
        """Which provider the generation workers talk to."""
        if self.anthropic_api_key:
            return "anthropic"
        return "openai"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
