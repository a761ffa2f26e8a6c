"""Points ledger: per-user category accumulators with atomic mutations.

Every mutation is a single UPDATE statement that rewrites one category,
recomputes total_points from the new value plus the other three columns,
and stamps last_updated. Racing increments on the same row serialize in
the database instead of overwriting each other.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, case, literal, select, update

from recycleit.clock import Clock, utcnow
from recycleit.db.models import PointCategory, PointsPunctuation
from recycleit.events import CHANNEL_POINTS_UPDATED, publish_event
from recycleit.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from recycleit.users.service import UserDirectory

logger = logging.getLogger(__name__)

CATEGORY_COLUMNS: dict[PointCategory, str] = {
    PointCategory.RECYCLE: "recycle_points",
    PointCategory.REUSE: "reuse_points",
    PointCategory.REDUCE: "reduce_points",
    PointCategory.KNOWLEDGE: "knowledge_points",
}


def parse_category(category: PointCategory | str) -> PointCategory:
    """Coerce a category name. Raises ValidationError for unknown names."""
    try:
        return PointCategory(category)
    except ValueError:
        msg = f"Unknown point category: {category!r}"
        raise ValidationError(msg) from None


def _total_with(column_name: str, new_value: ColumnElement[int]) -> ColumnElement[int]:
    """Sum expression of all categories with one of them replaced."""
    first, *rest = (
        new_value if name == column_name else getattr(PointsPunctuation, name)
        for name in CATEGORY_COLUMNS.values()
    )
    total: ColumnElement[int] = first
    for part in rest:
        total = total + part
    return total


class PointsLedger:
    """Increment, decrement and edit the four point categories of a user."""

    def __init__(
        self,
        db: AsyncSession,
        users: UserDirectory,
        clock: Clock = utcnow,
        redis: object | None = None,
    ) -> None:
        self.db = db
        self.users = users
        self.clock = clock
        self.redis = redis

    # --- Lookup ---

    async def _most_recent(self, user_id: int) -> PointsPunctuation | None:
        result = await self.db.execute(
            select(PointsPunctuation)
            .where(PointsPunctuation.user_id == user_id)
            .order_by(PointsPunctuation.last_updated.desc(), PointsPunctuation.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_most_recent_by_user_id(self, user_id: int) -> PointsPunctuation:
        """The user's most recently updated ledger entry."""
        await self.users.ensure_exists(user_id)
        entry = await self._most_recent(user_id)
        if entry is None:
            raise NotFoundError("PointsPunctuation for user", user_id)
        return entry

    async def get_most_recent_by_email(self, email: str) -> PointsPunctuation:
        user = await self.users.get_by_email(email)
        entry = await self._most_recent(user.id)
        if entry is None:
            raise NotFoundError("PointsPunctuation for user", email)
        return entry

    async def get_by_id(self, entry_id: int) -> PointsPunctuation:
        result = await self.db.execute(select(PointsPunctuation).where(PointsPunctuation.id == entry_id))
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError("PointsPunctuation", entry_id)
        return entry

    async def list_by_user_id(self, user_id: int) -> list[PointsPunctuation]:
        """All ledger entries of a user, newest first."""
        await self.users.ensure_exists(user_id)
        result = await self.db.execute(
            select(PointsPunctuation)
            .where(PointsPunctuation.user_id == user_id)
            .order_by(PointsPunctuation.last_updated.desc(), PointsPunctuation.id.desc())
        )
        return list(result.scalars().all())

    # --- Creation ---

    async def create(self, user_id: int) -> PointsPunctuation:
        """Open a zeroed ledger entry for a user."""
        await self.users.ensure_exists(user_id)
        now = self.clock()
        entry = PointsPunctuation(
            user_id=user_id,
            recycle_points=0,
            reuse_points=0,
            reduce_points=0,
            knowledge_points=0,
            total_points=0,
            last_updated=now,
            created_at=now,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def get_or_create(self, user_id: int) -> PointsPunctuation:
        """Most recent ledger entry, created on first use."""
        await self.users.ensure_exists(user_id)
        entry = await self._most_recent(user_id)
        if entry is None:
            entry = await self.create(user_id)
        return entry

    # --- Mutations ---

    async def increment(self, user_id: int, category: PointCategory | str, amount: int) -> PointsPunctuation:
        """Add ``amount`` (>= 0) to one category."""
        if amount < 0:
            msg = f"Increment amount must be non-negative, got {amount}"
            raise ValidationError(msg)
        column_name = CATEGORY_COLUMNS[parse_category(category)]
        column = getattr(PointsPunctuation, column_name)
        return await self._apply(user_id, column_name, column + amount)

    async def decrement(self, user_id: int, category: PointCategory | str, amount: int) -> PointsPunctuation:
        """Subtract ``amount`` (>= 0) from one category, flooring at zero."""
        if amount < 0:
            msg = f"Decrement amount must be non-negative, got {amount}"
            raise ValidationError(msg)
        column_name = CATEGORY_COLUMNS[parse_category(category)]
        column = getattr(PointsPunctuation, column_name)
        floored = case((column >= amount, column - amount), else_=literal(0))
        return await self._apply(user_id, column_name, floored)

    async def edit(self, user_id: int, category: PointCategory | str, value: int) -> PointsPunctuation:
        """Set one category to an absolute value. Negative values are rejected, not clamped."""
        category = parse_category(category)
        if value < 0:
            msg = f"{category.value} points cannot be negative, got {value}"
            raise ValidationError(msg)
        return await self._apply(user_id, CATEGORY_COLUMNS[category], literal(value))

    async def increment_by_email(self, email: str, category: PointCategory | str, amount: int) -> PointsPunctuation:
        user = await self.users.get_by_email(email)
        return await self.increment(user.id, category, amount)

    async def decrement_by_email(self, email: str, category: PointCategory | str, amount: int) -> PointsPunctuation:
        user = await self.users.get_by_email(email)
        return await self.decrement(user.id, category, amount)

    async def edit_by_email(self, email: str, category: PointCategory | str, value: int) -> PointsPunctuation:
        user = await self.users.get_by_email(email)
        return await self.edit(user.id, category, value)

    async def delete(self, entry_id: int) -> None:
        entry = await self.get_by_id(entry_id)
        await self.db.delete(entry)
        await self.db.flush()

    async def _apply(
        self, user_id: int, column_name: str, new_value: ColumnElement[int],
    ) -> PointsPunctuation:
        entry = await self.get_or_create(user_id)
        stmt = (
            update(PointsPunctuation)
            .where(PointsPunctuation.id == entry.id)
            .values({
                column_name: new_value,
                "total_points": _total_with(column_name, new_value),
                "last_updated": self.clock(),
            })
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        await self.db.refresh(entry)

        logger.debug(
            "Ledger %d (user %d) %s -> %d, total %d",
            entry.id, user_id, column_name, getattr(entry, column_name), entry.total_points,
        )
        await publish_event(self.redis, CHANNEL_POINTS_UPDATED, {
            "user_id": user_id,
            "ledger_id": entry.id,
            "category": column_name.removesuffix("_points"),
            "value": getattr(entry, column_name),
            "total_points": entry.total_points,
        })
        return entry
