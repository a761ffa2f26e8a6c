"""Redis client for publishing domain events."""

import redis.asyncio as redis

from recycleit.config import Settings

_client: redis.Redis | None = None


async def init_redis(settings: Settings) -> None:
    """Create the shared client, sizing its pool from settings."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        health_check_interval=settings.redis_health_check_interval,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The shared client. Raises RuntimeError before ``init_redis``."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client
