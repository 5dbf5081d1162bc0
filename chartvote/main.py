"""
SMX Chart Votes - Main Application

Single-process FastAPI application that serves:
- The chart list from the SMX API with corrected difficulty labels
- Vote tallies and vote submission
- Account registration and login (used when IDENTITY_MODE=user)
- Health check endpoint

Chart data is cached in memory; votes and accounts live in SQLite.
"""

import asyncio
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from loguru import logger

from chartvote.auth import session_middleware
from chartvote.config import (
    APP_ENV,
    APP_HOST,
    APP_PORT,
    APP_VERSION,
    CHART_PREFETCH_ON_STARTUP,
    CHART_REFRESH_INTERVAL,
    DEBUG,
    IDENTITY_MODE,
    LOG_LEVEL,
    SMX_API_URL,
    ensure_directories,
)
from chartvote.database import init_db
from chartvote.errors import UpstreamError
from chartvote.routes.api import router as api_router
from chartvote.services.chart_catalog import close_catalog, get_catalog

# ---------------------------------------------------------------------------
# Logging setup (stdout only)
# ---------------------------------------------------------------------------
logger.remove()

logger.add(
    sys.stdout,
    level="DEBUG" if DEBUG else LOG_LEVEL,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    colorize=True,
)

# ---------------------------------------------------------------------------
# Chart cache background refresh
# ---------------------------------------------------------------------------
_refresh_task: asyncio.Task[None] | None = None
_prefetch_task: asyncio.Task[None] | None = None


async def _prefetch_charts() -> None:
    """Warm the chart cache so the first visitor doesn't wait on the SMX API."""
    try:
        charts = await get_catalog().refresh()
        logger.info("🔄 Startup prefetch complete: {} charts", len(charts))
    except UpstreamError as e:
        logger.warning("⚠️  Startup prefetch failed: {}", e)


async def _periodic_chart_refresh():
    """Background task that refreshes the chart cache every N seconds."""
    if CHART_REFRESH_INTERVAL <= 0:
        logger.info("ℹ️  Background chart refresh is disabled (interval=0)")
        return

    while True:
        try:
            await asyncio.sleep(CHART_REFRESH_INTERVAL)
            await get_catalog().refresh()
        except asyncio.CancelledError:
            logger.debug("🔄 Periodic chart refresh task cancelled")
            break
        except UpstreamError as e:
            # refresh() already logged it; try again next interval
            logger.debug("Periodic chart refresh failed: {}", e)


def _on_background_task_done(task: asyncio.Task) -> None:
    """Log errors from fire-and-forget background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("❌ Background task failed: {}", exc)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    On startup:
        1. Create the data directory
        2. Initialize / migrate the SQLite database
        3. Prefetch the chart list (if enabled, in the background)
        4. Start the periodic chart refresh task

    On shutdown:
        5. Cancel background tasks
        6. Close the SMX API client
    """
    global _refresh_task, _prefetch_task

    # --- Startup ---
    logger.info("🚀 Starting SMX Chart Votes v{}", APP_VERSION)
    logger.info(
        "📋 Environment: {} | Debug: {} | Identity: {}", APP_ENV, DEBUG, IDENTITY_MODE
    )
    logger.info("🌐 Chart source: {}", SMX_API_URL)

    ensure_directories()

    try:
        init_db()
    except Exception as e:
        logger.critical("❌ Database initialization failed: {}", e)
        raise

    if CHART_PREFETCH_ON_STARTUP:
        _prefetch_task = asyncio.create_task(_prefetch_charts())
        _prefetch_task.add_done_callback(_on_background_task_done)
        logger.info("🔄 Startup chart prefetch triggered (runs in background)")

    _refresh_task = asyncio.create_task(_periodic_chart_refresh())
    _refresh_task.add_done_callback(_on_background_task_done)
    if CHART_REFRESH_INTERVAL > 0:
        logger.info(
            "🔄 Periodic chart refresh started (every {}s)", CHART_REFRESH_INTERVAL
        )

    logger.success("✅ Application ready — listening on {}:{}", APP_HOST, APP_PORT)

    yield

    # --- Shutdown ---
    logger.info("🛑 Shutting down SMX Chart Votes …")

    for task, name in [
        (_prefetch_task, "Chart prefetch"),
        (_refresh_task, "Chart refresh"),
    ]:
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.debug("🔄 {} task cancelled", name)

    await close_catalog()

    logger.info("👋 Shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="SMX Chart Votes",
        description=(
            "Browse StepManiaX charts and vote on whether each chart's "
            "difficulty rating is accurate."
        ),
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
    )

    # ------------------------------------------------------------------
    # Session middleware (issues / refreshes the identity cookie)
    # ------------------------------------------------------------------
    app.middleware("http")(session_middleware)

    # ------------------------------------------------------------------
    # Request logging middleware
    # ------------------------------------------------------------------
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every incoming HTTP request with timing information."""
        start = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = round(time.time() - start, 3)
            logger.error(
                "❌ {method} {path} — unhandled error after {duration}s: {exc}",
                method=request.method,
                path=request.url.path,
                duration=duration,
                exc=exc,
            )
            raise

        duration = round(time.time() - start, 3)
        status = response.status_code

        if status >= 500:
            log = logger.error
        elif status >= 400:
            log = logger.warning
        else:
            log = logger.info

        log(
            "📤 {method} {path} — {status} [{duration}s]",
            method=request.method,
            path=request.url.path,
            status=status,
            duration=duration,
        )
        return response

    app.include_router(api_router)  # /api/*  JSON endpoints

    return app


# ---------------------------------------------------------------------------
# Create the app instance (used by Uvicorn)
# ---------------------------------------------------------------------------
app = create_app()


# ---------------------------------------------------------------------------
# Direct execution (development)
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chartvote.main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=DEBUG,
        log_level="debug" if DEBUG else "info",
    )
