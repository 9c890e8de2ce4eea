"""
Task management endpoints.

CRUD operations for tasks and their tags.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrail.core.database import get_db
from tasktrail.core.dependencies import get_actor_id, get_pagination_service
from tasktrail.routers.activities import get_activity_service
from tasktrail.schemas.task import (
    TaskCreateRequest,
    TaskFilter,
    TaskListResponse,
    TaskResponse,
    TaskUpdateRequest,
)
from tasktrail.services.activity_service import ActivityService
from tasktrail.services.pagination_service import PaginationService
from tasktrail.services.task_service import TaskService

router = APIRouter()


def get_task_service(
    db: AsyncSession = Depends(get_db),
    activities: ActivityService = Depends(get_activity_service),
    pagination: PaginationService = Depends(get_pagination_service),
) -> TaskService:
    return TaskService(db=db, activities=activities, pagination=pagination)


# ---------------------------------------------------------------------------
# List Tasks
# ---------------------------------------------------------------------------

@router.get(
    "/tasks",
    response_model=TaskListResponse,
    summary="List tasks",
)
async def list_tasks(
    filters: TaskFilter = Depends(),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=25, ge=1, description="Clamped to the configured maximum"),
    service: TaskService = Depends(get_task_service),
) -> TaskListResponse:
    return await service.list_tasks(filters, page=page, limit=limit)


# ---------------------------------------------------------------------------
# Create Task
# ---------------------------------------------------------------------------

@router.post(
    "/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new task",
)
async def create_task(
    data: TaskCreateRequest,
    actor_id: UUID | None = Depends(get_actor_id),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.create_task(data, actor_id=actor_id)


# ---------------------------------------------------------------------------
# Get Task Detail
# ---------------------------------------------------------------------------

@router.get(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    summary="Get task detail",
)
async def get_task(
    task_id: UUID,
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.get_task(task_id)


# ---------------------------------------------------------------------------
# Update Task
# ---------------------------------------------------------------------------

@router.patch(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    summary="Update a task",
)
async def update_task(
    task_id: UUID,
    data: TaskUpdateRequest,
    actor_id: UUID | None = Depends(get_actor_id),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.update_task(task_id, data, actor_id=actor_id)


# ---------------------------------------------------------------------------
# Delete Task
# ---------------------------------------------------------------------------

@router.delete(
    "/tasks/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a task",
)
async def delete_task(
    task_id: UUID,
    actor_id: UUID | None = Depends(get_actor_id),
    service: TaskService = Depends(get_task_service),
) -> Response:
    await service.delete_task(task_id, actor_id=actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

@router.post(
    "/tasks/{task_id}/tags/{tag_id}",
    response_model=TaskResponse,
    summary="Attach a tag to a task",
)
async def add_tag(
    task_id: UUID,
    tag_id: UUID,
    actor_id: UUID | None = Depends(get_actor_id),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.add_tag(task_id, tag_id, actor_id=actor_id)


@router.delete(
    "/tasks/{task_id}/tags/{tag_id}",
    response_model=TaskResponse,
    summary="Detach a tag from a task",
)
async def remove_tag(
    task_id: UUID,
    tag_id: UUID,
    actor_id: UUID | None = Depends(get_actor_id),
    service: TaskService = Depends(get_task_service),
) -> TaskResponse:
    return await service.remove_tag(task_id, tag_id, actor_id=actor_id)
