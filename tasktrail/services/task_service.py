"""
Task business logic.

Handles task CRUD, tag attachment, activity logging and assignment
notifications.

Each mutation runs as an ordered sequence of independently committed
steps: mutate, audit, enqueue. There is no transaction spanning them, so a
failure after the mutation commits leaves it un-audited, and a failure
after the audit commits drops the notification.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from kombu.exceptions import OperationalError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tasktrail.models.activity import ActivityAction
from tasktrail.models.project import Project
from tasktrail.models.tag import Tag
from tasktrail.models.task import Task
from tasktrail.models.user import User
from tasktrail.schemas.pagination import PageMeta
from tasktrail.schemas.task import (
    TaskCreateRequest,
    TaskFilter,
    TaskListResponse,
    TaskResponse,
    TaskUpdateRequest,
)
from tasktrail.services.activity_service import ActivityService
from tasktrail.services.pagination_service import PaginationService

logger = logging.getLogger(__name__)

TASK_COLLECTION = "task"

# Fields recorded in the activity log, in display order.
TRACKED_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "due_date",
    "project_id",
    "assignee_id",
    "tag_ids",
)


def _queue_assignment_notification(assignee_email: str, task_title: str) -> None:
    """
    Fire-and-forget: enqueue the task-assigned email.

    A broker failure is logged and swallowed; the task change that
    triggered it is already committed and stays.
    Import is deferred to avoid circular imports at module load.
    """
    from tasktrail.workers.notification_tasks import send_task_assigned_email

    try:
        send_task_assigned_email.apply_async(
            kwargs={"assignee_email": assignee_email, "task_title": task_title},
        )
    except OperationalError as exc:
        logger.error("Could not enqueue task-assigned email to %s: %s", assignee_email, exc)


def _tag_ids(tags: Iterable[Tag] | Iterable[UUID]) -> list[str]:
    """Sorted string ids, so tag sets compare regardless of order."""
    return sorted({str(getattr(tag, "id", tag)) for tag in tags})


def _snapshot(task: Task) -> dict[str, Any]:
    """JSON-safe view of the tracked fields of a task."""
    values = jsonable_encoder({field: getattr(task, field) for field in TRACKED_FIELDS[:-1]})
    values["tag_ids"] = _tag_ids(task.tags)
    return values


def _requested_values(data: TaskUpdateRequest) -> dict[str, Any]:
    """JSON-safe view of the tracked fields present in an update request."""
    present = data.model_dump(include=set(TRACKED_FIELDS), exclude_unset=True)
    values = jsonable_encoder({k: v for k, v in present.items() if k != "tag_ids"})
    if "tag_ids" in present:
        values["tag_ids"] = _tag_ids(data.tag_ids or [])
    return values


def _diff(before: dict[str, Any], requested: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Only fields whose value actually differs end up in the change set."""
    return {
        field: {"old": before[field], "new": requested[field]}
        for field in TRACKED_FIELDS
        if field in requested and requested[field] != before[field]
    }


class TaskService:
    """Handles all task operations."""

    def __init__(
        self,
        db: AsyncSession,
        activities: ActivityService,
        pagination: PaginationService,
    ) -> None:
        self.db = db
        self.activities = activities
        self.pagination = pagination

    # -----------------------------------------------------------------------
    # List Tasks
    # -----------------------------------------------------------------------

    async def list_tasks(
        self, filters: TaskFilter, page: int = 1, limit: int = 25
    ) -> TaskListResponse:
        """List tasks with optional filters, newest first."""
        where: dict[str, Any] = {}

        if filters.status is not None:
            where["status"] = filters.status.value
        if filters.priority is not None:
            where["priority"] = filters.priority.value
        if filters.assignee_id is not None:
            where["assignee_id"] = filters.assignee_id
        if filters.project_id is not None:
            where["project_id"] = filters.project_id
        if filters.search:
            where["title"] = {"contains": filters.search}
        if filters.due_date_from is not None or filters.due_date_to is not None:
            due_date: dict[str, Any] = {}
            if filters.due_date_from is not None:
                due_date["gte"] = filters.due_date_from
            if filters.due_date_to is not None:
                due_date["lte"] = filters.due_date_to
            where["due_date"] = due_date

        result = await self.pagination.paginate(
            TASK_COLLECTION,
            where=where,
            include=["project", "assignee", "tags"],
            order_by={"created_at": "desc"},
            page=page,
            limit=limit,
        )
        return TaskListResponse(
            data=[TaskResponse.model_validate(item) for item in result["data"]],
            meta=PageMeta(**result["meta"]),
        )

    # -----------------------------------------------------------------------
    # Get Task
    # -----------------------------------------------------------------------

    async def get_task(self, task_id: UUID) -> TaskResponse:
        task = await self._get_task(task_id)
        return TaskResponse.model_validate(task)

    # -----------------------------------------------------------------------
    # Create Task
    # -----------------------------------------------------------------------

    async def create_task(
        self, data: TaskCreateRequest, actor_id: UUID | None = None
    ) -> TaskResponse:
        """
        Create a task and log a ``created`` activity.

        Every tracked field is recorded with only its new value. Enqueues
        the assignment email when the task is created with an assignee.
        """
        await self._get_project(data.project_id)
        assignee = None
        if data.assignee_id is not None:
            assignee = await self._get_assignee(data.assignee_id)
        tags = await self._get_tags(data.tag_ids)
        actor = await self._resolve_actor(actor_id)

        task = Task(
            title=data.title,
            description=data.description,
            status=data.status,
            priority=data.priority,
            due_date=data.due_date,
            project_id=data.project_id,
            assignee_id=data.assignee_id,
            tags=tags,
        )
        self.db.add(task)
        await self.db.commit()

        changes = {field: {"new": value} for field, value in _snapshot(task).items()}
        await self.activities.log_activity(
            task_id=task.id,
            user_id=actor.id,
            action=ActivityAction.created,
            changes=changes,
            task_title=task.title,
            user_name=actor.name,
        )
        await self.db.commit()

        if assignee is not None:
            _queue_assignment_notification(assignee.email, task.title)

        logger.info("Task %s created by %s", task.id, actor.id)
        return await self.get_task(task.id)

    # -----------------------------------------------------------------------
    # Update Task
    # -----------------------------------------------------------------------

    async def update_task(
        self, task_id: UUID, data: TaskUpdateRequest, actor_id: UUID | None = None
    ) -> TaskResponse:
        """
        Partially update a task.

        Fields absent from the request are neither changed nor diffed. An
        update that changes nothing writes no activity.
        """
        task = await self._get_task(task_id)

        if data.project_id is not None:
            await self._get_project(data.project_id)
        assignee = None
        if data.assignee_id is not None:
            assignee = await self._get_assignee(data.assignee_id)
        tags = None
        if data.tag_ids is not None:
            tags = await self._get_tags(data.tag_ids)
        actor = await self._resolve_actor(actor_id)

        changes = _diff(_snapshot(task), _requested_values(data))

        for field in data.model_fields_set & set(TRACKED_FIELDS[:-1]):
            setattr(task, field, getattr(data, field))
        if tags is not None:
            task.tags = tags
        await self.db.commit()

        if not changes:
            return await self.get_task(task.id)

        await self.activities.log_activity(
            task_id=task.id,
            user_id=actor.id,
            action=ActivityAction.updated,
            changes=changes,
            task_title=task.title,
            user_name=actor.name,
        )
        await self.db.commit()

        if "title" in changes:
            await self._repair_task_title(task.id, task.title)

        if assignee is not None and "assignee_id" in changes:
            _queue_assignment_notification(assignee.email, task.title)

        return await self.get_task(task.id)

    # -----------------------------------------------------------------------
    # Delete Task
    # -----------------------------------------------------------------------

    async def delete_task(self, task_id: UUID, actor_id: UUID | None = None) -> None:
        """Delete a task and log a ``deleted`` activity with its final state."""
        task = await self._get_task(task_id)
        actor = await self._resolve_actor(actor_id)
        before = _snapshot(task)

        await self.db.delete(task)
        await self.db.commit()

        await self.activities.log_activity(
            task_id=task_id,
            user_id=actor.id,
            action=ActivityAction.deleted,
            changes={field: {"old": value} for field, value in before.items()},
            task_title=before["title"],
            user_name=actor.name,
        )
        await self.db.commit()

        logger.info("Task %s deleted by %s", task_id, actor.id)

    # -----------------------------------------------------------------------
    # Tags
    # -----------------------------------------------------------------------

    async def add_tag(
        self, task_id: UUID, tag_id: UUID, actor_id: UUID | None = None
    ) -> TaskResponse:
        """Attach one tag. Attaching a tag already present is a silent no-op."""
        task = await self._get_task(task_id)
        tag = await self._get_tag(tag_id)
        actor = await self._resolve_actor(actor_id)

        old_ids = _tag_ids(task.tags)
        if str(tag.id) in old_ids:
            return TaskResponse.model_validate(task)

        task.tags.append(tag)
        await self.db.commit()

        await self._log_tag_change(task, actor, ActivityAction.tag_added, old_ids)
        return await self.get_task(task.id)

    async def remove_tag(
        self, task_id: UUID, tag_id: UUID, actor_id: UUID | None = None
    ) -> TaskResponse:
        """Detach one tag. Detaching a tag that is not present is a silent no-op."""
        task = await self._get_task(task_id)
        tag = await self._get_tag(tag_id)
        actor = await self._resolve_actor(actor_id)

        old_ids = _tag_ids(task.tags)
        if str(tag.id) not in old_ids:
            return TaskResponse.model_validate(task)

        task.tags = [t for t in task.tags if t.id != tag.id]
        await self.db.commit()

        await self._log_tag_change(task, actor, ActivityAction.tag_removed, old_ids)
        return await self.get_task(task.id)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _log_tag_change(
        self, task: Task, actor: User, action: ActivityAction, old_ids: list[str]
    ) -> None:
        await self.activities.log_activity(
            task_id=task.id,
            user_id=actor.id,
            action=action,
            changes={"tag_ids": {"old": old_ids, "new": _tag_ids(task.tags)}},
            task_title=task.title,
            user_name=actor.name,
        )
        await self.db.commit()

    async def _repair_task_title(self, task_id: UUID, title: str) -> None:
        """Best effort: earlier activities keep the old title if this fails."""
        try:
            await self.activities.update_denormalized_fields(task_id=task_id, new_title=title)
            await self.db.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not refresh activity titles for task %s: %s", task_id, exc)
            await self.db.rollback()

    async def _resolve_actor(self, actor_id: UUID | None) -> User:
        """
        Return the acting user, falling back to the system user.

        The system user is the earliest-created user; if there is none the
        request cannot be attributed and fails.
        """
        if actor_id is not None:
            return await self._get_user(actor_id)

        user = await self.db.scalar(
            select(User).order_by(User.created_at.asc(), User.id.asc()).limit(1)
        )
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={
                    "code": "SYSTEM_USER_MISSING",
                    "message": "No users exist to attribute this change to",
                },
            )
        return user

    async def _get_task(self, task_id: UUID) -> Task:
        result = await self.db.execute(
            select(Task)
            .where(Task.id == task_id)
            .options(
                selectinload(Task.project),
                selectinload(Task.assignee),
                selectinload(Task.tags),
            )
            .execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "TASK_NOT_FOUND", "message": f"Task with ID {task_id} not found"},
            )
        return task

    async def _get_project(self, project_id: UUID) -> Project:
        project = await self.db.get(Project, project_id)
        if project is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "code": "PROJECT_NOT_FOUND",
                    "message": f"Project with ID {project_id} not found",
                },
            )
        return project

    async def _get_user(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "USER_NOT_FOUND", "message": f"User with ID {user_id} not found"},
            )
        return user

    async def _get_assignee(self, assignee_id: UUID) -> User:
        user = await self.db.get(User, assignee_id)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "code": "ASSIGNEE_NOT_FOUND",
                    "message": f"Assignee with ID {assignee_id} not found",
                },
            )
        return user

    async def _get_tag(self, tag_id: UUID) -> Tag:
        tag = await self.db.get(Tag, tag_id)
        if tag is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "TAG_NOT_FOUND", "message": f"Tag with ID {tag_id} not found"},
            )
        return tag

    async def _get_tags(self, tag_ids: list[UUID]) -> list[Tag]:
        """Load every tag, failing on the first id that does not resolve."""
        if not tag_ids:
            return []

        result = await self.db.execute(select(Tag).where(Tag.id.in_(tag_ids)))
        found = {tag.id: tag for tag in result.scalars().all()}

        for tag_id in tag_ids:
            if tag_id not in found:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail={"code": "TAG_NOT_FOUND", "message": f"Tag with ID {tag_id} not found"},
                )
        return list(dict.fromkeys(found[tag_id] for tag_id in tag_ids))
