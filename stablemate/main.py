"""FastAPI application entry point for Stablemate."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from stablemate.config import settings
from stablemate.auth import AuthMiddleware, CSRFMiddleware, router as auth_router
from stablemate.rate_limit import RateLimitMiddleware, RateLimiters
from stablemate.models.database import TARGET_LOCAL, DatabaseRouter, init_db
from stablemate.scrapers.tjk import TJKClient
from stablemate.sync.service import SyncService
from stablemate.api import admin, dashboard, horses, tjk

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - builds the per-process services and tears them down."""
    logger.info("Starting Stablemate...")

    # Ensure data directory exists for the SQLite default
    if not settings.database_url:
        settings.db_path.parent.mkdir(parents=True, exist_ok=True)

    limiters = RateLimiters()
    db_router = DatabaseRouter.from_settings()
    await init_db(db_router, TARGET_LOCAL)
    logger.info(f"Database initialized ({db_router.url_for(TARGET_LOCAL).split('://')[0]})")

    client = TJKClient()
    sync_service = SyncService(limiters.tjk, client)

    app.state.rate_limiters = limiters
    app.state.db_router = db_router
    app.state.tjk_client = client
    app.state.sync_service = sync_service
    app.state.scheduler = None

    if not settings.disable_background:
        from stablemate.scheduler.manager import SchedulerManager

        scheduler = SchedulerManager()
        await scheduler.start()
        scheduler.setup_sync_jobs(limiters, db_router, sync_service)
        app.state.scheduler = scheduler
        logger.info(f"Scheduler started - limiter sweep every 10 min, nightly refresh at {settings.nightly_refresh_hour:02d}:00")
    else:
        logger.info("Background services disabled (STABLEMATE_DISABLE_BACKGROUND=true)")

    yield

    # Shutdown
    logger.info("Shutting down Stablemate...")
    if app.state.scheduler:
        await app.state.scheduler.stop()
    await client.close()
    await db_router.clear()

    # Close Playwright browser if it was started
    from stablemate.scrapers.playwright_base import close_browser

    try:
        await close_browser()
    except Exception as e:
        logger.warning(f"Error closing browser: {e}")


# Create FastAPI app
app = FastAPI(
    title="Stablemate",
    description="Racehorse ownership dashboard backed by TJK data",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware stack (added in reverse, outermost first):
# SessionMiddleware → RateLimit → AuthMiddleware → CSRFMiddleware
app.add_middleware(CSRFMiddleware)
app.add_middleware(AuthMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    same_site="lax",
    https_only=not settings.debug,
)

app.include_router(auth_router)
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
app.include_router(tjk.router, prefix="/api/tjk", tags=["tjk"])
app.include_router(horses.router, prefix="/api/horses", tags=["horses"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


def run() -> None:
    import uvicorn

    uvicorn.run(
        "stablemate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
