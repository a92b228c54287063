from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import get_settings
from app.utils.logger import logger

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": False, "future": True}
    return {
        "echo": settings.debug,
        "future": True,
        "pool_pre_ping": True,  # Detect and recycle stale/broken connections
        "pool_recycle": 300,  # Recycle connections every 5 minutes
    }


# Create async engine
engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

# Create session factory
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def session_scope() -> AsyncSession:
    """
    Open a standalone session for code that runs outside a request
    (background generation tasks, auto-start loop).

    Usage:
        async with session_scope() as db:
            ...
    """
    return AsyncSessionLocal()


# Dependency for FastAPI routes
async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def is_postgres() -> bool:
    return engine.dialect.name == "postgresql"


# Initialize database (create tables)
async def init_db():
    """Create all database tables and run migrations"""
    # Import models to register them with Base
    from app.models import user, interview_transcript, serious_plan, coach_chat_message  # noqa: F401

    if engine.dialect.name == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("db.tables_created")

    await run_migrations()


async def run_migrations():
    """Run schema migrations for tables created by earlier releases"""
    from sqlalchemy import text

    if not is_postgres():
        return

    plan_columns = {
        "coach_letter_status": "VARCHAR(20) DEFAULT 'pending'",
        "coach_letter_generated_at": "TIMESTAMP",
        "bundle_pdf_status": "VARCHAR(20) DEFAULT 'not_started'",
        "bundle_pdf_url": "TEXT",
        "emailed_at": "TIMESTAMP",
    }

    async with engine.begin() as conn:
        for col, col_type in plan_columns.items():
            try:
                await conn.execute(text(f"ALTER TABLE serious_plans ADD COLUMN IF NOT EXISTS {col} {col_type}"))
            except Exception as e:
                logger.warning("db.migration_failed", extra={"column": col, "error": str(e)[:200]})

        try:
            await conn.execute(text(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_artifact_plan_key "
                "ON serious_plan_artifacts (plan_id, artifact_key)"
            ))
        except Exception as e:
            logger.warning("db.migration_failed", extra={"index": "uq_artifact_plan_key", "error": str(e)[:200]})

    logger.info("db.migrations_completed")
