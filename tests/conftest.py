"""
Shared fixtures: an in-memory SQLite database per test, a scripted LLM,
authenticated HTTP client helpers and fresh process-wide singletons.
"""
import os

os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("AUTO_START_DELAYS", "[0, 0, 0]")
os.environ.setdefault("TRANSCRIPT_READ_DELAY_SECONDS", "0")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.database as database
from app.database import Base
from app.services import generation_lock, payment_service
from app.services.gateway import reset_gateway
from app.services.llm_client import set_llm_client
from app.utils import metrics
from app.worker import get_supervisor, reset_supervisor
from tests.fakes.factories import make_user
from tests.fakes.fake_llm import FakeLLM


@pytest.fixture
async def engine(monkeypatch):
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    monkeypatch.setattr(database, "engine", test_engine)
    monkeypatch.setattr(
        database,
        "AsyncSessionLocal",
        sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False),
    )
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def db(engine):
    async with database.AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def fake_llm():
    llm = FakeLLM()
    set_llm_client(llm)
    yield llm
    set_llm_client(None)


@pytest.fixture(autouse=True)
async def fresh_singletons(monkeypatch):
    reset_gateway()
    reset_supervisor()
    metrics.reset()
    payment_service.reset_price_cache()
    monkeypatch.setattr(generation_lock, "_dossier_lock", None)
    yield
    await get_supervisor().shutdown(timeout=5)


@pytest.fixture
def app_under_test(engine, monkeypatch):
    from app import main
    from app.routes import auth, billing, coach_chat, interview, serious_plan

    monkeypatch.setattr(main, "engine", engine)
    for module in (main, auth, billing, coach_chat, interview, serious_plan):
        monkeypatch.setattr(module.limiter, "enabled", False)
    return main.app


@pytest.fixture
async def client(app_under_test):
    async with AsyncClient(transport=ASGITransport(app=app_under_test), base_url="http://test") as c:
        yield c


@pytest.fixture
async def user(db):
    return await make_user(db)
