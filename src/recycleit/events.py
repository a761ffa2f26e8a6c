"""Redis pub/sub broadcast of domain events."""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

CHANNEL_POINTS_UPDATED = "pubsub:points_updated"
CHANNEL_SESSION_CLOSED = "pubsub:league_session_closed"
CHANNEL_LEAGUE_MOVE = "pubsub:league_move"
CHANNEL_GOAL_COMPLETED = "pubsub:goal_completed"


async def publish_event(redis: object | None, channel: str, payload: dict[str, Any]) -> bool:
    """Publish a JSON payload. Returns False when skipped or failed.

    Broadcast is best effort: a Redis outage never fails the operation
    that produced the event.
    """
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)
        return False
    return True
