"""
Custody Ledger — FastAPI application factory.

Application lifecycle:
  startup  → configure logging, apply migrations (or create tables)
  shutdown → dispose DB engine pool
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncEngine

from app.api.v1.router import router as v1_router
from app.config.logging_config import configure_logging
from app.config.settings import Environment, Settings, get_settings
from app.core.errors import AppError
from app.core.middleware import (
    CorrelationIDMiddleware,
    SecurityHeadersMiddleware,
    app_error_handler,
    rate_limit_handler,
    unhandled_exception_handler,
)
from app.db.session import build_engine, build_session_factory, create_all
from app.services.custody import CustodyService

_log = structlog.get_logger(__name__)


def _create_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_default],
    )


def _run_migrations(settings: Settings) -> None:
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", str(settings.database_url))
    # structlog owns the root logger once the app is running
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")


async def _startup(settings: Settings, engine: AsyncEngine) -> None:
    configure_logging(
        log_level=settings.log_level.value,
        json_logs=settings.log_json,
        log_file=settings.log_file,
    )
    _log.info(
        "custody_starting",
        version=settings.app_version,
        environment=settings.environment.value,
        algorithm=settings.fingerprint_algorithm,
    )

    if settings.run_migrations_on_startup:
        _run_migrations(settings)
        _log.info("migrations_applied")
    else:
        await create_all(engine)
        _log.info("tables_created")

    _log.info("custody_ready", host=settings.host, port=settings.port)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory. Returns a configured FastAPI instance."""
    settings = settings or get_settings()
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    exposed_docs = settings.environment != Environment.PRODUCTION

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await _startup(settings, engine)
        yield
        await engine.dispose()
        _log.info("custody_shutdown")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Document custody service: fingerprint registry, hash-chained audit "
            "ledger, integrity verification and clearance recording."
        ),
        docs_url="/docs" if exposed_docs else None,
        redoc_url="/redoc" if exposed_docs else None,
        openapi_url="/openapi.json" if exposed_docs else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.custody = CustodyService(settings, session_factory)

    # ── Rate Limiting ─────────────────────────────────────────────────── #
    app.state.limiter = _create_limiter(settings)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)  # type: ignore[arg-type]
    app.add_middleware(SlowAPIMiddleware)

    # ── CORS ──────────────────────────────────────────────────────────── #
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID"],
    )

    # ── Custom Middleware (applied in reverse order) ───────────────────── #
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIDMiddleware)

    # ── Exception Handlers ────────────────────────────────────────────── #
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routes ────────────────────────────────────────────────────────── #
    app.include_router(v1_router)

    # ── Health ────────────────────────────────────────────────────────── #
    @app.get("/health", tags=["health"], summary="Health check")
    async def health() -> dict[str, object]:
        """Returns service health including database and storage reachability."""
        import sqlalchemy as sa

        db_ok = False
        try:
            async with engine.connect() as conn:
                await conn.execute(sa.text("SELECT 1"))
            db_ok = True
        except Exception as exc:
            _log.warning("health_database_unavailable", error=str(exc))

        storage_ok = settings.storage_dir.is_dir()

        return {
            "status": "healthy" if (db_ok and storage_ok) else "degraded",
            "database": "ok" if db_ok else "unavailable",
            "storage": "ok" if storage_ok else "unavailable",
            "version": settings.app_version,
        }

    # ── Metrics (Prometheus) ──────────────────────────────────────────── #
    @app.get("/metrics", tags=["observability"], summary="Prometheus metrics")
    async def metrics() -> Response:
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


# Entry point for uvicorn
app = create_app()
