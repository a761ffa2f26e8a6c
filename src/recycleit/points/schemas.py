"""Pydantic read models for the points ledger."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PointsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    recycle_points: int
    reuse_points: int
    reduce_points: int
    knowledge_points: int
    total_points: int
    last_updated: datetime
