"""Goal tracker: progress, reduce items, project credits and due-date rollover.

A goal instance covers one period of its frequency, ending on ``next_check``.
Each check either renews the instance in place or retires it (INACTIVE)
and opens the next one, linked through ``previous_goal_id``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, select

from recycleit.clock import Clock, today, utcnow
from recycleit.config import Settings, get_settings
from recycleit.db.models import (
    FinishedProject,
    Goal,
    GoalDifficulty,
    GoalFrequency,
    GoalStatus,
    Material,
    PointCategory,
    RecycleGoal,
    ReduceGoal,
    ReduceItem,
)
from recycleit.events import CHANNEL_GOAL_COMPLETED, publish_event
from recycleit.exceptions import ConflictError, NotFoundError, ValidationError
from recycleit.goals.rules import (
    MAX_PROGRESS,
    boosted_multiplier,
    clamp_progress,
    completion_points,
    decayed_multiplier,
    initial_status,
    interval_for,
    is_complete,
    period_start,
    recycle_progress,
    reduce_progress,
    validate_transition,
)
from recycleit.goals.schemas import GoalCheckResult, ProjectCompletionResult

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from recycleit.points.ledger import PointsLedger

logger = structlog.get_logger()

GOAL_KINDS: dict[str, type[Goal]] = {
    "recycle": RecycleGoal,
    "reduce": ReduceGoal,
}


def _parse_material(material: Material | str) -> Material:
    try:
        return Material(material)
    except ValueError:
        raise ValidationError(f"Unknown material: {material!r}") from None


class GoalTracker:
    """Recurring recycle and reduce goals of users, feeding the points ledger."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: PointsLedger,
        clock: Clock = utcnow,
        settings: Settings | None = None,
        redis: object | None = None,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.users = ledger.users
        self.clock = clock
        self.settings = settings or get_settings()
        self.redis = redis

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _resolve_next_check(self, frequency: GoalFrequency, next_check: date | None) -> date:
        day = today(self.clock)
        if next_check is None:
            return day + interval_for(frequency)
        if next_check < day:
            raise ValidationError(f"next_check {next_check} is in the past")
        return next_check

    async def create_recycle_goal(
        self,
        user_id: int,
        difficulty: GoalDifficulty,
        frequency: GoalFrequency,
        next_check: date | None = None,
        multiplier: float = 1.0,
    ) -> RecycleGoal:
        """Open a recycle goal. Defaults to a period starting today."""
        await self.users.ensure_exists(user_id)
        if multiplier < 0:
            raise ValidationError(f"Multiplier cannot be negative, got {multiplier}")
        next_check = self._resolve_next_check(frequency, next_check)

        goal = RecycleGoal(
            user_id=user_id,
            progress=0.0,
            difficulty=difficulty,
            frequency=frequency,
            next_check=next_check,
            status=initial_status(next_check, frequency, today(self.clock)),
            completed=False,
            multiplier=multiplier,
            finished_projects=0,
            created_at=self.clock(),
        )
        self.db.add(goal)
        await self.db.flush()
        logger.info("goal_created", goal_id=goal.id, user_id=user_id, kind="recycle", status=goal.status.value)
        return goal

    async def create_reduce_goal(
        self,
        user_id: int,
        difficulty: GoalDifficulty,
        frequency: GoalFrequency,
        next_check: date | None = None,
        multiplier: float = 1.0,
        skip_days: int | None = None,
        items: Iterable[tuple[Material | str, int]] = (),
    ) -> ReduceGoal:
        """Open a reduce goal with per-material targets."""
        await self.users.ensure_exists(user_id)
        if multiplier < 0:
            raise ValidationError(f"Multiplier cannot be negative, got {multiplier}")
        if skip_days is None:
            skip_days = self.settings.goal_default_skip_days
        if skip_days < 0:
            raise ValidationError(f"Skip days cannot be negative, got {skip_days}")
        next_check = self._resolve_next_check(frequency, next_check)

        targets: dict[Material, int] = {}
        for material, target in items:
            material = _parse_material(material)
            if target <= 0:
                raise ValidationError(f"Target quantity for {material.value} must be positive")
            if material in targets:
                raise ConflictError(f"Duplicate target for {material.value}")
            targets[material] = target

        goal = ReduceGoal(
            user_id=user_id,
            progress=0.0,
            difficulty=difficulty,
            frequency=frequency,
            next_check=next_check,
            status=initial_status(next_check, frequency, today(self.clock)),
            completed=False,
            multiplier=multiplier,
            skip_days_left=skip_days,
            skip_days_total=skip_days,
            created_at=self.clock(),
        )
        self.db.add(goal)
        await self.db.flush()
        for material, target in targets.items():
            self.db.add(ReduceItem(goal_id=goal.id, material=material, target_quantity=target, actual_quantity=0))
        await self.db.flush()
        logger.info("goal_created", goal_id=goal.id, user_id=user_id, kind="reduce", status=goal.status.value)
        return goal

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_goal(self, goal_id: int) -> Goal:
        result = await self.db.execute(select(Goal).where(Goal.id == goal_id))
        goal = result.scalar_one_or_none()
        if goal is None:
            raise NotFoundError("Goal", goal_id)
        return goal

    async def _get_reduce_goal(self, goal_id: int) -> ReduceGoal:
        goal = await self.get_goal(goal_id)
        if not isinstance(goal, ReduceGoal):
            raise ValidationError(f"Goal {goal_id} is not a reduce goal")
        return goal

    async def list_goals(self, user_id: int, status: GoalStatus | None = None) -> list[Goal]:
        """Goals of a user, latest due date first."""
        await self.users.ensure_exists(user_id)
        stmt = select(Goal).where(Goal.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Goal.status == status)
        result = await self.db.execute(stmt.order_by(Goal.next_check.desc(), Goal.id.desc()))
        return list(result.scalars().all())

    async def goals_due_today(self, user_id: int) -> list[Goal]:
        """ACTUAL goals whose check date has arrived."""
        await self.users.ensure_exists(user_id)
        result = await self.db.execute(
            select(Goal)
            .where(
                Goal.user_id == user_id,
                Goal.status == GoalStatus.ACTUAL,
                Goal.next_check <= today(self.clock),
            )
            .order_by(Goal.next_check, Goal.id)
        )
        return list(result.scalars().all())

    async def has_active_goal(self, user_id: int, kind: str | None = None) -> bool:
        """Whether the user has an ACTUAL goal, optionally of one kind."""
        if kind is not None and kind not in GOAL_KINDS:
            raise ValidationError(f"Unknown goal kind: {kind!r}")
        await self.users.ensure_exists(user_id)
        model = GOAL_KINDS[kind] if kind is not None else Goal
        result = await self.db.execute(
            select(model.id)
            .where(model.user_id == user_id, model.status == GoalStatus.ACTUAL)
            .limit(1)
        )
        return result.first() is not None

    async def list_items(self, goal_id: int) -> list[ReduceItem]:
        result = await self.db.execute(
            select(ReduceItem).where(ReduceItem.goal_id == goal_id).order_by(ReduceItem.id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    @staticmethod
    def _require_live(goal: Goal) -> None:
        if goal.status is GoalStatus.INACTIVE:
            raise ConflictError(f"Goal {goal.id} is inactive")

    async def edit_progress(self, goal_id: int, progress: float) -> Goal:
        """Set progress absolutely. Values outside [0, 100] are rejected."""
        if not 0 <= progress <= MAX_PROGRESS:
            raise ValidationError(f"Progress must be within [0, 100], got {progress}")
        goal = await self.get_goal(goal_id)
        self._require_live(goal)
        goal.progress = float(progress)
        await self.db.flush()
        return goal

    async def increment_progress(self, goal_id: int, amount: float) -> Goal:
        """Add to progress, clamped to [0, 100]. Reaching 100 completes an ACTUAL goal."""
        goal = await self.get_goal(goal_id)
        self._require_live(goal)
        await self._advance(goal, clamp_progress(goal.progress + amount))
        return goal

    async def _advance(self, goal: Goal, progress: float) -> Goal | None:
        """Store new progress; complete the goal when it hits 100 while ACTUAL."""
        goal.progress = progress
        await self.db.flush()
        if goal.status is GoalStatus.ACTUAL and is_complete(progress):
            next_goal, _ = await self._complete(goal)
            return next_goal
        return None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    async def edit_difficulty(self, goal_id: int, difficulty: GoalDifficulty) -> Goal:
        goal = await self.get_goal(goal_id)
        self._require_live(goal)
        goal.difficulty = difficulty
        if isinstance(goal, RecycleGoal):
            goal.progress = recycle_progress(goal.finished_projects or 0, difficulty)
        await self.db.flush()
        return goal

    async def edit_frequency(self, goal_id: int, frequency: GoalFrequency) -> Goal:
        goal = await self.get_goal(goal_id)
        self._require_live(goal)
        goal.frequency = frequency
        if goal.status is GoalStatus.NEXT:
            goal.status = initial_status(goal.next_check, frequency, today(self.clock))
        await self.db.flush()
        return goal

    async def edit_multiplier(self, goal_id: int, multiplier: float) -> Goal:
        if multiplier < 0:
            raise ValidationError(f"Multiplier cannot be negative, got {multiplier}")
        goal = await self.get_goal(goal_id)
        self._require_live(goal)
        goal.multiplier = multiplier
        await self.db.flush()
        return goal

    async def edit_next_check(self, goal_id: int, next_check: date) -> Goal:
        """Move the due date. It may not be set before today."""
        if next_check < today(self.clock):
            raise ValidationError(f"next_check {next_check} is in the past")
        goal = await self.get_goal(goal_id)
        self._require_live(goal)
        goal.next_check = next_check
        if goal.status is GoalStatus.NEXT:
            goal.status = initial_status(next_check, goal.frequency, today(self.clock))
        await self.db.flush()
        return goal

    async def edit_status(self, goal_id: int, status: GoalStatus | str) -> Goal:
        """Move a goal along NEXT -> ACTUAL -> INACTIVE.

        Deactivating by hand abandons the goal: it stays ``completed=False``
        and no points are awarded.
        """
        try:
            target = GoalStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown goal status: {status!r}") from None
        goal = await self.get_goal(goal_id)
        try:
            validate_transition(goal.status, target)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        previous = goal.status
        goal.status = target
        await self.db.flush()
        if target is not previous:
            logger.info("goal_status_changed", goal_id=goal.id, from_status=previous.value, to_status=target.value)
        return goal

    async def delete_goal(self, goal_id: int) -> None:
        goal = await self.get_goal(goal_id)
        await self.db.execute(delete(ReduceItem).where(ReduceItem.goal_id == goal.id))
        await self.db.delete(goal)
        await self.db.flush()

    # ------------------------------------------------------------------
    # Reduce goals
    # ------------------------------------------------------------------

    async def _get_item(self, goal_id: int, material: Material) -> ReduceItem:
        result = await self.db.execute(
            select(ReduceItem).where(ReduceItem.goal_id == goal_id, ReduceItem.material == material)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError("ReduceItem", f"{goal_id}/{material.value}")
        return item

    async def _reduce_progress(self, goal: ReduceGoal) -> float:
        items = await self.list_items(goal.id)
        return reduce_progress((item.actual_quantity, item.target_quantity) for item in items)

    async def add_reduce_item(self, goal_id: int, material: Material | str, target_quantity: int) -> ReduceItem:
        material = _parse_material(material)
        if target_quantity <= 0:
            raise ValidationError(f"Target quantity must be positive, got {target_quantity}")
        goal = await self._get_reduce_goal(goal_id)
        self._require_live(goal)
        existing = await self.db.execute(
            select(ReduceItem.id).where(ReduceItem.goal_id == goal.id, ReduceItem.material == material)
        )
        if existing.first() is not None:
            raise ConflictError(f"Goal {goal_id} already tracks {material.value}")

        item = ReduceItem(goal_id=goal.id, material=material, target_quantity=target_quantity, actual_quantity=0)
        self.db.add(item)
        await self.db.flush()
        goal.progress = await self._reduce_progress(goal)
        await self.db.flush()
        return item

    async def increment_item(self, goal_id: int, material: Material | str, amount: int) -> ReduceItem:
        if amount < 0:
            raise ValidationError(f"Increment amount must be non-negative, got {amount}")
        goal = await self._get_reduce_goal(goal_id)
        self._require_live(goal)
        item = await self._get_item(goal.id, _parse_material(material))
        item.actual_quantity += amount
        await self.db.flush()
        await self._advance(goal, await self._reduce_progress(goal))
        return item

    async def decrement_item(self, goal_id: int, material: Material | str, amount: int) -> ReduceItem:
        """Subtract from an item's actual quantity, floored at zero."""
        if amount < 0:
            raise ValidationError(f"Decrement amount must be non-negative, got {amount}")
        goal = await self._get_reduce_goal(goal_id)
        self._require_live(goal)
        item = await self._get_item(goal.id, _parse_material(material))
        item.actual_quantity = max(0, item.actual_quantity - amount)
        await self.db.flush()
        goal.progress = await self._reduce_progress(goal)
        await self.db.flush()
        return item

    async def decrement_skip_days(self, goal_id: int, amount: int) -> Goal:
        """Spend skip days, floored at zero. Running out forces a status check."""
        if amount < 0:
            raise ValidationError(f"Decrement amount must be non-negative, got {amount}")
        goal = await self._get_reduce_goal(goal_id)
        self._require_live(goal)
        goal.skip_days_left = max(0, (goal.skip_days_left or 0) - amount)
        await self.db.flush()
        if goal.skip_days_left == 0:
            await self.check_goal(goal.id)
        return goal

    # ------------------------------------------------------------------
    # Recycle projects
    # ------------------------------------------------------------------

    async def _active_recycle_goal(self, user_id: int) -> RecycleGoal | None:
        result = await self.db.execute(
            select(RecycleGoal)
            .where(RecycleGoal.user_id == user_id, RecycleGoal.status == GoalStatus.ACTUAL)
            .order_by(RecycleGoal.next_check, RecycleGoal.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def process_project_completion(self, user_id: int, project_id: int) -> ProjectCompletionResult:
        """Credit a finished recycling project once per user.

        Awards the project bonus to the recycle category and counts the
        project toward the user's active recycle goal, if any.
        """
        await self.users.ensure_exists(user_id)
        result = await self.db.execute(
            select(FinishedProject).where(
                FinishedProject.user_id == user_id,
                FinishedProject.project_id == project_id,
            )
        )
        if result.scalar_one_or_none() is not None:
            return ProjectCompletionResult(
                user_id=user_id, project_id=project_id, points_awarded=0, already_credited=True,
            )

        points = self.settings.project_completion_points
        await self.ledger.increment(user_id, PointCategory.RECYCLE, points)

        goal = await self._active_recycle_goal(user_id)
        completed = False
        if goal is not None:
            goal.finished_projects = (goal.finished_projects or 0) + 1
            progress = recycle_progress(goal.finished_projects, goal.difficulty)
            await self._advance(goal, progress)
            completed = goal.completed

        self.db.add(FinishedProject(
            user_id=user_id,
            project_id=project_id,
            goal_id=goal.id if goal is not None else None,
            points_awarded=points,
            finished_at=self.clock(),
        ))
        await self.db.flush()
        return ProjectCompletionResult(
            user_id=user_id,
            project_id=project_id,
            points_awarded=points,
            goal_id=goal.id if goal is not None else None,
            goal_progress=goal.progress if goal is not None else None,
            goal_completed=completed,
        )

    # ------------------------------------------------------------------
    # Rollover
    # ------------------------------------------------------------------

    async def check_goal(self, goal_id: int) -> GoalCheckResult:
        """Apply the due-date rules to one goal.

        NEXT goals whose period has started become ACTUAL. An ACTUAL goal
        past its check date is completed, carried by a skip day, renewed
        with a decayed multiplier, or abandoned once the multiplier falls
        below the floor.
        """
        goal = await self.get_goal(goal_id)
        day = today(self.clock)
        action = "unchanged"

        if goal.status is GoalStatus.NEXT and period_start(goal.next_check, goal.frequency) <= day:
            validate_transition(goal.status, GoalStatus.ACTUAL)
            goal.status = GoalStatus.ACTUAL
            action = "activated"

        if goal.status is not GoalStatus.ACTUAL or goal.next_check > day:
            await self.db.flush()
            return self._check_result(goal, action)

        if is_complete(goal.progress):
            next_goal, points = await self._complete(goal)
            return self._check_result(goal, "completed", next_goal, points)

        interval = interval_for(goal.frequency)
        if isinstance(goal, ReduceGoal) and (goal.skip_days_left or 0) > 0:
            validate_transition(goal.status, GoalStatus.ACTUAL)
            goal.skip_days_left -= 1
            goal.next_check = goal.next_check + interval
            await self.db.flush()
            logger.info("goal_skip_day_used", goal_id=goal.id, skip_days_left=goal.skip_days_left)
            return self._check_result(goal, "skipped")

        multiplier = decayed_multiplier(goal.multiplier, self.settings)
        if multiplier >= self.settings.goal_multiplier_floor:
            validate_transition(goal.status, GoalStatus.ACTUAL)
            goal.multiplier = multiplier
            goal.next_check = goal.next_check + interval
            await self._reset_period(goal)
            logger.info("goal_renewed", goal_id=goal.id, multiplier=multiplier)
            return self._check_result(goal, "renewed")

        validate_transition(goal.status, GoalStatus.INACTIVE)
        goal.status = GoalStatus.INACTIVE
        goal.completed = False
        await self.db.flush()
        next_goal = await self._spawn(goal, multiplier=1.0, status=GoalStatus.NEXT)
        logger.info("goal_abandoned", goal_id=goal.id, next_goal_id=next_goal.id)
        return self._check_result(goal, "abandoned", next_goal)

    async def run_due_checks(self, user_id: int | None = None) -> list[GoalCheckResult]:
        """Check every NEXT goal and every ACTUAL goal whose check date has arrived."""
        day = today(self.clock)
        stmt = select(Goal.id, Goal.status, Goal.next_check, Goal.frequency).where(
            Goal.status.in_([GoalStatus.NEXT, GoalStatus.ACTUAL]),
        )
        if user_id is not None:
            stmt = stmt.where(Goal.user_id == user_id)
        result = await self.db.execute(stmt.order_by(Goal.next_check, Goal.id))

        due = [
            goal_id
            for goal_id, status, next_check, frequency in result.all()
            if (status is GoalStatus.ACTUAL and next_check <= day)
            or (status is GoalStatus.NEXT and period_start(next_check, frequency) <= day)
        ]
        results = [await self.check_goal(goal_id) for goal_id in due]
        changed = [r for r in results if r.action != "unchanged"]
        if changed:
            logger.info("goal_checks_completed", checked=len(results), changed=len(changed))
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _complete(self, goal: Goal) -> tuple[Goal, int]:
        """Retire a finished goal, award its points and open the next period."""
        validate_transition(goal.status, GoalStatus.INACTIVE)
        goal.status = GoalStatus.INACTIVE
        goal.completed = True
        goal.completed_at = self.clock()
        goal.progress = MAX_PROGRESS
        await self.db.flush()

        points = completion_points(goal.difficulty, goal.multiplier, self.settings)
        category = PointCategory.REDUCE if isinstance(goal, ReduceGoal) else PointCategory.RECYCLE
        await self.ledger.increment(goal.user_id, category, points)

        next_goal = await self._spawn(goal, multiplier=boosted_multiplier(goal.multiplier, self.settings))
        logger.info(
            "goal_completed",
            goal_id=goal.id,
            user_id=goal.user_id,
            points=points,
            next_goal_id=next_goal.id,
        )
        await publish_event(self.redis, CHANNEL_GOAL_COMPLETED, {
            "goal_id": goal.id,
            "user_id": goal.user_id,
            "kind": goal.kind,
            "category": category.value,
            "points": points,
            "multiplier": goal.multiplier,
            "next_goal_id": next_goal.id,
        })
        return next_goal, points

    async def _spawn(self, goal: Goal, multiplier: float, status: GoalStatus | None = None) -> Goal:
        """Next-period instance of ``goal`` with fresh progress."""
        next_check = goal.next_check + interval_for(goal.frequency)
        if status is None:
            status = initial_status(next_check, goal.frequency, today(self.clock))
        fields = {
            "user_id": goal.user_id,
            "progress": 0.0,
            "difficulty": goal.difficulty,
            "frequency": goal.frequency,
            "next_check": next_check,
            "status": status,
            "completed": False,
            "multiplier": multiplier,
            "previous_goal_id": goal.id,
            "created_at": self.clock(),
        }
        if isinstance(goal, ReduceGoal):
            new_goal: Goal = ReduceGoal(
                **fields,
                skip_days_left=goal.skip_days_total or 0,
                skip_days_total=goal.skip_days_total or 0,
            )
        else:
            new_goal = RecycleGoal(**fields, finished_projects=0)
        self.db.add(new_goal)
        await self.db.flush()

        if isinstance(goal, ReduceGoal):
            for item in await self.list_items(goal.id):
                self.db.add(ReduceItem(
                    goal_id=new_goal.id,
                    material=item.material,
                    target_quantity=item.target_quantity,
                    actual_quantity=0,
                ))
            await self.db.flush()
        return new_goal

    async def _reset_period(self, goal: Goal) -> None:
        goal.progress = 0.0
        if isinstance(goal, RecycleGoal):
            goal.finished_projects = 0
        elif isinstance(goal, ReduceGoal):
            for item in await self.list_items(goal.id):
                item.actual_quantity = 0
        await self.db.flush()

    @staticmethod
    def _check_result(
        goal: Goal, action: str, next_goal: Goal | None = None, points: int = 0,
    ) -> GoalCheckResult:
        return GoalCheckResult(
            goal_id=goal.id,
            action=action,
            status=goal.status,
            multiplier=goal.multiplier,
            next_goal_id=next_goal.id if next_goal is not None else None,
            points_awarded=points,
        )
