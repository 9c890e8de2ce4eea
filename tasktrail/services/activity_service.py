"""
Activity log business logic.

Writes the append-only audit trail of task changes and serves it back
through the paginated, cached read path.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrail.models.activity import Activity, ActivityAction
from tasktrail.models.task import Task
from tasktrail.models.user import User
from tasktrail.schemas.activity import ActivityFilter, ActivityListResponse, ActivityResponse
from tasktrail.schemas.pagination import PageMeta
from tasktrail.services.pagination_service import PaginationService

logger = logging.getLogger(__name__)

ACTIVITY_COLLECTION = "activity"


def format_activity(activity: Activity | Mapping[str, Any]) -> ActivityResponse:
    """Single response shape for freshly written rows and cached page items."""
    return ActivityResponse.model_validate(activity)


class ActivityService:
    """Handles activity log reads and writes."""

    def __init__(self, db: AsyncSession, pagination: PaginationService) -> None:
        self.db = db
        self.pagination = pagination

    # -----------------------------------------------------------------------
    # Log Activity
    # -----------------------------------------------------------------------

    async def log_activity(
        self,
        task_id: UUID,
        user_id: UUID,
        action: ActivityAction,
        changes: dict[str, dict[str, Any]],
        task_title: str | None = None,
        user_name: str | None = None,
    ) -> ActivityResponse:
        """
        Append an activity record.

        task_title / user_name are looked up when not supplied. Callers
        that already hold the task or user row pass them to skip the query.

        Raises 404 if the task or the user cannot be resolved; nothing is
        written in that case.
        """
        if task_title is None:
            task_title = await self.db.scalar(select(Task.title).where(Task.id == task_id))
            if task_title is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail={"code": "TASK_NOT_FOUND", "message": f"Task with ID {task_id} not found"},
                )

        if user_name is None:
            user_name = await self.db.scalar(select(User.name).where(User.id == user_id))
            if user_name is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail={"code": "USER_NOT_FOUND", "message": f"User with ID {user_id} not found"},
                )

        activity = Activity(
            task_id=task_id,
            user_id=user_id,
            action=ActivityAction(action).value,
            changes=changes,
            task_title=task_title,
            user_name=user_name,
        )
        self.db.add(activity)
        await self.db.flush()

        logger.debug("Logged %s activity %s for task %s", activity.action, activity.id, task_id)
        return format_activity(activity)

    # -----------------------------------------------------------------------
    # Read paths
    # -----------------------------------------------------------------------

    async def get_task_activities(
        self, task_id: UUID, page: int = 1, limit: int = 10
    ) -> ActivityListResponse:
        """Activities of one task, newest first."""
        return await self._paginate({"task_id": task_id}, page, limit)

    async def get_all_activities(
        self, filters: ActivityFilter, page: int = 1, limit: int = 20
    ) -> ActivityListResponse:
        """Activities matching every supplied filter, newest first."""
        where: dict[str, Any] = {}

        if filters.user_id is not None:
            where["user_id"] = filters.user_id
        if filters.action is not None:
            where["action"] = filters.action.value
        if filters.task_id is not None:
            where["task_id"] = filters.task_id
        if filters.start_date is not None or filters.end_date is not None:
            created_at: dict[str, Any] = {}
            if filters.start_date is not None:
                created_at["gte"] = filters.start_date
            if filters.end_date is not None:
                created_at["lte"] = filters.end_date
            where["created_at"] = created_at

        return await self._paginate(where, page, limit)

    # -----------------------------------------------------------------------
    # Denormalization repair
    # -----------------------------------------------------------------------

    async def update_denormalized_fields(
        self,
        task_id: UUID | None = None,
        new_title: str | None = None,
        user_id: UUID | None = None,
        new_user_name: str | None = None,
    ) -> int:
        """
        Rewrite task_title and/or user_name snapshots after a rename.

        A snapshot is only rewritten when both its id and new value are
        given; rows are matched on every id supplied. Returns the number of
        rows touched.
        """
        values: dict[str, str] = {}
        if task_id is not None and new_title:
            values["task_title"] = new_title
        if user_id is not None and new_user_name:
            values["user_name"] = new_user_name

        if not values:
            return 0

        stmt = update(Activity).values(**values)
        if task_id is not None:
            stmt = stmt.where(Activity.task_id == task_id)
        if user_id is not None:
            stmt = stmt.where(Activity.user_id == user_id)

        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        await self.db.flush()
        return result.rowcount

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _paginate(
        self, where: dict[str, Any], page: int, limit: int
    ) -> ActivityListResponse:
        result = await self.pagination.paginate(
            ACTIVITY_COLLECTION,
            where=where,
            order_by={"created_at": "desc"},
            page=page,
            limit=limit,
        )
        return ActivityListResponse(
            data=[format_activity(item) for item in result["data"]],
            meta=PageMeta(**result["meta"]),
        )
