"""Shared pytest fixtures for decision memory tests."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings
from db.sqlite import create_engine_for_url, create_schema, get_db
from models.errors import ProviderUnavailable
from services.tier import TierDetector, get_tier_detector
from tests.mocks.embedding_mock import MockEmbeddingService
from utils.circuit_breaker import reset_circuit_breakers

IN_MEMORY_URL = "sqlite+aiosqlite:///:memory:"


# ============================================================================
# Settings and circuit breakers
# ============================================================================


@pytest.fixture(autouse=True)
def clean_circuit_breakers():
    """Every test starts with no registered circuit breakers."""
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=IN_MEMORY_URL,
        redis_url="",
        embedding_api_key="test-key",
        memory_disabled=False,
        embeddings_disabled=False,
    )


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite engine with the schema created."""
    test_engine = create_engine_for_url(IN_MEMORY_URL)
    await create_schema(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as db_session:
        yield db_session


# ============================================================================
# Providers and tiers
# ============================================================================


@pytest.fixture
def mock_embeddings():
    return MockEmbeddingService()


@pytest.fixture
def failing_embeddings():
    return MockEmbeddingService(failure=ProviderUnavailable("mock", "connection refused"))


@pytest.fixture
def tier_detector(mock_embeddings, settings):
    """Tier 1 detector backed by the mock provider."""
    return TierDetector(embedding_service=mock_embeddings, settings=settings)


@pytest.fixture
def degraded_detector(failing_embeddings, settings):
    """Tier 2 detector whose provider fails every call."""
    return TierDetector(embedding_service=failing_embeddings, settings=settings)


# ============================================================================
# Sample data
# ============================================================================


@pytest.fixture
def sample_decision():
    return {
        "topic": "database_choice",
        "decision": "Use PostgreSQL for the primary store",
        "reasoning": "Need relational integrity and mature tooling",
        "confidence": 0.8,
        "evidence": ["Team knows SQL well"],
        "alternatives": ["MongoDB"],
    }


# ============================================================================
# API client
# ============================================================================


@pytest.fixture
async def client(session_maker, tier_detector):
    """HTTP client bound to the app, the test store and the mock provider."""
    from main import app

    async def override_get_db():
        async with session_maker() as db_session:
            try:
                yield db_session
                await db_session.commit()
            except Exception:
                await db_session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tier_detector] = lambda: tier_detector

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
