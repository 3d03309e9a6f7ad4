"""
FastAPI application factory.

Assembles the app, registers routers and error handlers, and wires up
lifecycle events.  Database schema is managed by Alembic — NOT create_all.

Per-application state (created here, torn down on shutdown):
- `app.state.login_rate_limiter` — in-memory login throttle
- `app.state.scheduler`          — background sweep jobs
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.controllers.admin_controller import router as admin_router
from app.controllers.auth_controller import router as auth_router
from app.core.config import settings
from app.core.database import async_session_factory, engine
from app.core.errors import register_exception_handlers
from app.models import Base  # noqa: F401 — ensures all models are registered
from app.services.rate_limiter import LoginRateLimiter
from app.services.scheduler import build_scheduler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list({settings.FRONTEND_URL, *settings.CORS_ORIGINS}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(admin_router)

    app.state.login_rate_limiter = LoginRateLimiter(
        max_attempts=settings.LOGIN_RATE_LIMIT_MAX_ATTEMPTS,
        window_seconds=settings.LOGIN_RATE_LIMIT_WINDOW_MINUTES * 60,
    )
    app.state.scheduler = None

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Start the background sweeps.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        scheduler = build_scheduler(app.state.login_rate_limiter, async_session_factory)
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info("Background scheduler started.")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        scheduler = app.state.scheduler
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        app.state.scheduler = None
        app.state.login_rate_limiter.clear()
        await engine.dispose()
        logger.info("Scheduler stopped, database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
