"""FastAPI application entry point for the Trade Settlement engine.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, wire the services and
       optionally start the in-process sweep loop.
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Stop the sweep loop, close database and Redis connections.

Run with:
    uv run uvicorn trade_settlement.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from trade_settlement.config import get_settings
from trade_settlement.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        payment_provider=settings.payment_provider,
    )

    # 2. Initialize database
    from trade_settlement.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis (optional: idempotency keys, notification queue, sweep ticks)
    from trade_settlement.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Wire services
    from trade_settlement.infrastructure.notifications import build_notification_dispatcher
    from trade_settlement.infrastructure.payments import build_payment_provider
    from trade_settlement.services import build_services

    app.state.session_factory = get_session_factory()
    app.state.services = build_services(
        app.state.session_factory,
        settings,
        build_payment_provider(settings),
        build_notification_dispatcher(settings),
    )

    # 5. Scheduled sweeps
    sweep_task: asyncio.Task | None = None
    if settings.sweep_interval_seconds > 0:
        from trade_settlement.orchestration import sweep_forever

        sweep_task = asyncio.create_task(
            sweep_forever(app.state.services, settings.sweep_interval_seconds)
        )

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Trade Settlement Engine",
        description=(
            "Escrow holds, custody handoffs, dispute arbitration and "
            "dual-confirmation releases for peer-to-peer trades."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from trade_settlement.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from trade_settlement.api.routes.disputes import router as disputes_router
    from trade_settlement.api.routes.health import router as health_router
    from trade_settlement.api.routes.hub import router as hub_router
    from trade_settlement.api.routes.payouts import router as payouts_router
    from trade_settlement.api.routes.releases import router as releases_router
    from trade_settlement.api.routes.sessions import router as sessions_router
    from trade_settlement.api.routes.transactions import router as transactions_router
    from trade_settlement.api.routes.vault import router as vault_router

    app.include_router(health_router)
    app.include_router(transactions_router)
    app.include_router(hub_router)
    app.include_router(sessions_router)
    app.include_router(disputes_router)
    app.include_router(releases_router)
    app.include_router(vault_router)
    app.include_router(payouts_router)

    return app


# The app instance used by Uvicorn
app = create_app()
