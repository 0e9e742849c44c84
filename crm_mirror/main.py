from contextlib import asynccontextmanager
from fastapi import FastAPI

from crm_mirror.core.config import settings
from crm_mirror.core.logging import get_logger, setup_logging
from crm_mirror.api.router import api
from crm_mirror.db.session import engine, AsyncSessionLocal
from crm_mirror.db.base import Base
from crm_mirror.services.background import BackgroundDispatcher
from crm_mirror.services.locks import get_redis
from crm_mirror.services.rate_limit import RateLimiterRegistry
from crm_mirror.services.scheduler import SweepScheduler
from crm_mirror.services.sweeper import Sweeper

# Import models so Base knows them
from crm_mirror.db import models  # noqa: F401

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    # No migrations yet; tables are created on startup.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.rate_limiters = RateLimiterRegistry(cleanup_interval=settings.RATE_LIMIT_CLEANUP_SECONDS)
    app.state.dispatcher = BackgroundDispatcher()
    await app.state.rate_limiters.start()
    await app.state.dispatcher.start()

    scheduler = None
    if settings.SWEEP_ENABLED:
        scheduler = SweepScheduler(
            Sweeper(AsyncSessionLocal, get_redis()),
            full_interval_minutes=settings.SWEEP_INTERVAL_MINUTES,
            assignment_interval_minutes=settings.ASSIGNMENT_SWEEP_INTERVAL_MINUTES,
        )
        await scheduler.start()
    logger.info("app_started", env=settings.ENV, sweep_enabled=settings.SWEEP_ENABLED)

    yield

    if scheduler:
        await scheduler.stop()
    await app.state.dispatcher.stop()
    await app.state.rate_limiters.stop()
    await engine.dispose()

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
app.include_router(api)

@app.get("/health")
def health():
    return {"ok": True}
