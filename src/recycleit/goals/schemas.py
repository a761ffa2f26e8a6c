"""Pydantic read models for goals.

``GoalRead`` is a discriminated union keyed by ``kind`` so callers get the
right shape for recycle and reduce goals without isinstance checks.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from sqlalchemy import inspect

from recycleit.db.models import Goal, GoalDifficulty, GoalFrequency, GoalStatus, Material


class ReduceItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    material: Material
    target_quantity: int
    actual_quantity: int


class _GoalBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    progress: float
    difficulty: GoalDifficulty
    frequency: GoalFrequency
    next_check: date
    status: GoalStatus
    completed: bool
    completed_at: datetime | None = None
    multiplier: float
    previous_goal_id: int | None = None


class RecycleGoalRead(_GoalBase):
    kind: Literal["recycle"] = "recycle"
    finished_projects: int = 0


class ReduceGoalRead(_GoalBase):
    kind: Literal["reduce"] = "reduce"
    skip_days_left: int = 0
    skip_days_total: int = 0
    items: list[ReduceItemRead] = []


GoalRead = Annotated[Union[RecycleGoalRead, ReduceGoalRead], Field(discriminator="kind")]

goal_adapter: TypeAdapter[RecycleGoalRead | ReduceGoalRead] = TypeAdapter(GoalRead)


def serialize_goal(goal: Goal, items: list | None = None) -> RecycleGoalRead | ReduceGoalRead:
    """Validate an ORM goal into its read model. Reduce items are passed explicitly."""
    data = {
        column.key: getattr(goal, column.key)
        for column in inspect(goal).mapper.column_attrs
    }
    if goal.kind == "reduce":
        data["items"] = [ReduceItemRead.model_validate(item) for item in items or []]
    for key in ("finished_projects", "skip_days_left", "skip_days_total"):
        if data.get(key) is None:
            data.pop(key, None)
    return goal_adapter.validate_python(data)


class ProjectCompletionResult(BaseModel):
    """Outcome of crediting a finished project."""

    user_id: int
    project_id: int
    points_awarded: int
    goal_id: int | None = None
    goal_progress: float | None = None
    goal_completed: bool = False
    already_credited: bool = False


class GoalCheckResult(BaseModel):
    """What a due-date check did to one goal."""

    goal_id: int
    action: Literal["activated", "completed", "skipped", "renewed", "abandoned", "unchanged"]
    status: GoalStatus
    multiplier: float
    next_goal_id: int | None = None
    points_awarded: int = 0
