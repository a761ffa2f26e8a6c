"""User directory: resolve users by id or email."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from recycleit.clock import Clock, utcnow
from recycleit.db.models import User
from recycleit.exceptions import ConflictError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def normalize_email(email: str) -> str:
    """Lower-case and strip an email address. Raises ValidationError if blank or malformed."""
    normalized = email.strip().lower()
    if not normalized or "@" not in normalized:
        msg = f"Invalid email address: {email!r}"
        raise ValidationError(msg)
    return normalized


class UserDirectory:
    """Lookup collaborator used by the points, league and goal services."""

    def __init__(self, db: AsyncSession, clock: Clock = utcnow) -> None:
        self.db = db
        self.clock = clock

    async def create_user(self, email: str, display_name: str | None = None) -> User:
        """Register a user. Raises ConflictError if the email is taken."""
        normalized = normalize_email(email)
        existing = await self.db.execute(select(User.id).where(User.email == normalized))
        if existing.scalar_one_or_none() is not None:
            msg = f"Email already registered: {normalized}"
            raise ConflictError(msg)

        user = User(email=normalized, display_name=display_name, created_at=self.clock())
        self.db.add(user)
        await self.db.flush()
        logger.info("user_created", user_id=user.id)
        return user

    async def get_by_id(self, user_id: int) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def get_by_email(self, email: str) -> User:
        result = await self.db.execute(select(User).where(User.email == email.strip().lower()))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", email)
        return user

    async def ensure_exists(self, user_id: int) -> None:
        """Raise NotFoundError unless the user exists."""
        result = await self.db.execute(select(User.id).where(User.id == user_id))
        if result.scalar_one_or_none() is None:
            raise NotFoundError("User", user_id)
