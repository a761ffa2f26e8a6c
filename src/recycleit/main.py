"""Process lifecycle for hosts embedding the recycling core."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog

from recycleit.config import get_settings
from recycleit.database import close_db, init_db
from recycleit.log_config import setup_logging
from recycleit.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan() -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    await init_redis(settings)
    logger.info("recycleit_started", version=settings.app_version, environment=settings.environment)

    try:
        yield
    finally:
        await close_db()
        await close_redis()
        logger.info("recycleit_stopped")
