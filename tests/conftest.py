"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- Mocked database sessions for unit tests
- A real SQLite ledger (file-backed, BEGIN IMMEDIATE) for concurrency tests
- API clients with dependency overrides

Mock rows and seed helpers live in tests/factories.py.
"""

import os
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Set required environment variables BEFORE importing marketplace modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_marketplace.db")
os.environ.setdefault("ASSET_SIGNING_SECRET", "test-asset-signing-secret-at-least-32-chars")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("STORAGE_UPLOAD_URL", "http://storage.test/upload")

from marketplace.db.models import Base
from marketplace.db.session import create_engine_for_url, get_db
from marketplace.models.domain import UploadedAsset
from marketplace.services.upload import UploadPipeline
from tests.factories import seed_image, seed_profile

# ============================================================================
# Mock Database Session Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> AsyncMock:
    """Create a mock database session with sensible defaults."""
    session = AsyncMock(spec=AsyncSession)

    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)

    # Default execute returns empty result
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    mock_result.rowcount = 0
    session.execute = AsyncMock(return_value=mock_result)

    return session


# ============================================================================
# SQLite Ledger Fixtures
# ============================================================================


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the full schema."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the SQLite ledger."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A single session on the SQLite ledger."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def marketplace(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, UUID]:
    """A seller with one 1599-minor-unit image and a separate buyer."""
    seller_id = await seed_profile(session_factory, "Sidhartha")
    buyer_id = await seed_profile(session_factory, "Alice Johnson")
    image_id = await seed_image(session_factory, seller_id, price_minor=1599)
    return {"seller_id": seller_id, "buyer_id": buyer_id, "image_id": image_id}


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
def app() -> FastAPI:
    """Get FastAPI application instance."""
    from marketplace.main import app

    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Create test client with a mocked database dependency."""

    async def mock_get_db() -> AsyncGenerator[AsyncMock, None]:
        yield AsyncMock(spec=AsyncSession)

    app.dependency_overrides[get_db] = mock_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_pipeline() -> MagicMock:
    """Upload pipeline double returning a successful upload."""
    pipeline = MagicMock(spec=UploadPipeline)
    pipeline.upload = AsyncMock(
        return_value=UploadedAsset(
            asset_url="https://storage.test/assets/new.jpg",
            thumbnail_url="https://storage.test/thumbs/new.jpg",
            attempts=1,
        )
    )
    return pipeline


@pytest.fixture
async def ledger_client(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    mock_pipeline: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Async client whose requests run against the SQLite ledger."""
    from marketplace.api.dependencies import get_upload_pipeline

    async def ledger_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = ledger_get_db
    app.dependency_overrides[get_upload_pipeline] = lambda: mock_pipeline

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
