"""
Activity log endpoints.

GET  /activities/task/{task_id}  : one task's history (paginated)
GET  /activities                 : filtered history across tasks (paginated)
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tasktrail.core.database import get_db
from tasktrail.core.dependencies import get_pagination_service
from tasktrail.schemas.activity import ActivityFilter, ActivityListResponse
from tasktrail.services.activity_service import ActivityService
from tasktrail.services.pagination_service import PaginationService

router = APIRouter()


def get_activity_service(
    db: AsyncSession = Depends(get_db),
    pagination: PaginationService = Depends(get_pagination_service),
) -> ActivityService:
    return ActivityService(db=db, pagination=pagination)


@router.get(
    "/activities/task/{task_id}",
    response_model=ActivityListResponse,
    summary="List a task's activity, newest first",
)
async def get_task_activities(
    task_id: UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    service: ActivityService = Depends(get_activity_service),
) -> ActivityListResponse:
    return await service.get_task_activities(task_id, page=page, limit=limit)


@router.get(
    "/activities",
    response_model=ActivityListResponse,
    summary="List activity across tasks, newest first",
)
async def get_all_activities(
    filters: ActivityFilter = Depends(),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    service: ActivityService = Depends(get_activity_service),
) -> ActivityListResponse:
    return await service.get_all_activities(filters, page=page, limit=limit)
