"""
Activity schemas.

Response models and the query filter for activity endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from tasktrail.models.activity import ActivityAction
from tasktrail.schemas.pagination import PageMeta


class ActivityResponse(BaseModel):
    """
    One audit record.

    ``changes`` maps a field name to ``{"old": ..., "new": ...}``; either
    side may be missing, which is not the same as a ``null`` value.
    """

    id: UUID
    task_id: UUID
    task_title: str
    user_id: UUID
    user_name: str
    action: ActivityAction
    changes: dict[str, dict[str, Any]]
    created_at: datetime

    model_config = {"from_attributes": True}


class ActivityListResponse(BaseModel):
    data: list[ActivityResponse]
    meta: PageMeta


class ActivityFilter(BaseModel):
    """Conjunction of optional predicates; omitted fields are not applied."""

    user_id: UUID | None = None
    action: ActivityAction | None = None
    task_id: UUID | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
