"""Clock collaborator shared by the services."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time in UTC. Default clock for every service."""
    return datetime.now(timezone.utc)


def today(clock: Clock) -> date:
    """Calendar date of the clock's current instant (UTC)."""
    return clock().astimezone(timezone.utc).date()
