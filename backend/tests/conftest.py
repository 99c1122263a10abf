"""
Shared pytest fixtures for the custody ledger tests.

Provides:
  - per-test SQLite database file and content directory
  - registry, ledger, verifier and custody service wired to them
  - FastAPI app and async HTTP client over ASGI
"""
from __future__ import annotations

import io
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config.settings import Environment, Settings
from app.db.session import build_engine, build_session_factory, create_all
from app.main import create_app
from app.services.audit.ledger import AuditLedger
from app.services.custody import CustodyService, SubmissionReceipt
from app.services.registry.store import FingerprintRegistry
from app.services.storage.content_store import ContentStore


CLEARANCE_TABLE = {"alice": "SECRET", "bob": "CONFIDENTIAL"}


# ─── Settings ─────────────────────────────────────────────────────────────────

@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        environment=Environment.TESTING,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'custody.db'}",
        storage_dir=tmp_path / "storage",
        run_migrations_on_startup=False,
        max_upload_size_mb=1,
        content_read_timeout_seconds=5,
        clearance_table=CLEARANCE_TABLE,
        rate_limit_default="1000/minute",
        log_json=False,
    )


# ─── Database ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create the schema in a fresh SQLite file per test function."""
    engine = build_engine(settings)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


# ─── Components ───────────────────────────────────────────────────────────────

@pytest.fixture
def registry(session_factory, settings: Settings) -> FingerprintRegistry:
    return FingerprintRegistry(session_factory, settings.fingerprint_algorithm)


@pytest.fixture
def ledger(session_factory) -> AuditLedger:
    return AuditLedger(session_factory)


@pytest.fixture
def content_store(settings: Settings) -> ContentStore:
    return ContentStore(settings.storage_dir, settings.max_upload_size_bytes)


@pytest.fixture
def custody(settings: Settings, session_factory) -> CustodyService:
    return CustodyService(settings, session_factory)


@pytest.fixture
def submit(custody: CustodyService):
    """Register a document with the given content through the custody service."""

    async def _submit(filename: str, content: bytes) -> SubmissionReceipt:
        return await custody.submit_document(filename, io.BytesIO(content))

    return _submit


# ─── App & HTTP client ────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def app(settings: Settings, db_engine: AsyncEngine):
    """FastAPI app bound to the per-test database; tables already exist."""
    app_ = create_app(settings=settings)
    yield app_
    await app_.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c
