"""Creator Sync - FastAPI application entry point."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from config import get_settings
from database import async_session, engine
from middleware.rate_limit import limiter, rate_limit_exceeded_handler
from models import Base
from routers import social_accounts_router
from services.events import LoggingNotificationSink, dispatch_events
from services.runtime import build_runtime
from services.scheduler import create_job_scheduler, start_scheduler, stop_scheduler

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - create tables and start jobs on startup, stop them on shutdown."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    runtime = build_runtime(settings, async_session)
    app.state.runtime = runtime

    dispatcher = asyncio.create_task(dispatch_events(runtime.events, LoggingNotificationSink()))

    scheduler = create_job_scheduler(runtime, settings)
    if settings.scheduler_enabled:
        start_scheduler(scheduler)
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    stop_scheduler(scheduler, runtime)
    dispatcher.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await dispatcher
    await engine.dispose()


app = FastAPI(
    title="Creator Sync API",
    description="Social account sync and credential lifecycle",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(social_accounts_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    runtime = getattr(app.state, "runtime", None)
    return {
        "status": "healthy",
        "service": "creator-sync",
        "data_sync_running": bool(runtime and runtime.sync_scheduler.is_running),
        "credential_refresh_running": bool(runtime and runtime.credential_manager.is_running),
    }
