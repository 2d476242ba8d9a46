"""
Shared test fixtures for the dongne weather pipeline.

Provides:
- in-memory SQLite session factory (aiosqlite + StaticPool), fresh per test
- fake clock / embedder / AccuWeather client (no network)
- a fully assembled pipeline and an ASGI client with app.state injection
"""

import os

# Ensure test env vars before any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dongne.core.database import Base
from dongne.core.pipeline import build_pipeline
from dongne.domains.search.rag_engine import RAGEngine

from fakes import FakeClock, FakeEmbedder, FakeWeatherClient, no_sleep

# create_all 에 테이블이 잡히도록 모델 로드
import dongne.domains.weather.models  # noqa: F401
import dongne.domains.search.models  # noqa: F401


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_weather_client():
    return FakeWeatherClient()


@pytest.fixture
def pipeline(session_factory, fake_weather_client, fake_embedder):
    return build_pipeline(
        session_factory,
        weather_client=fake_weather_client,
        embedder=fake_embedder,
        rag_engine=RAGEngine(model=None),
        use_llm=False,
        collector_sleep=no_sleep,
    )


@pytest_asyncio.fixture
async def client(pipeline):
    """ASGI test client. lifespan 은 돌지 않으므로 app.state 에 파이프라인을 직접 주입."""
    from dongne.main import app

    app.state.pipeline = pipeline
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
