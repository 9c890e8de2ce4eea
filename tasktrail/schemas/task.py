"""
Task schemas.

Request/response models for task CRUD and tag endpoints.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from tasktrail.models.task import TaskPriority, TaskStatus
from tasktrail.schemas.pagination import PageMeta


# ---------------------------------------------------------------------------
# Task Create
# ---------------------------------------------------------------------------

class TaskCreateRequest(BaseModel):
    """Request body for POST /tasks."""

    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    due_date: date | None = None
    project_id: UUID
    assignee_id: UUID | None = None
    tag_ids: list[UUID] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Task Update
# ---------------------------------------------------------------------------

class TaskUpdateRequest(BaseModel):
    """
    Request body for PATCH /tasks/{task_id}.

    Only fields present in the body are applied; send ``null`` to clear a
    nullable field.
    """

    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    project_id: UUID | None = None
    assignee_id: UUID | None = None
    tag_ids: list[UUID] | None = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> TaskUpdateRequest:
        for field in ("title", "status", "priority", "project_id", "tag_ids"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


# ---------------------------------------------------------------------------
# List filters
# ---------------------------------------------------------------------------

class TaskFilter(BaseModel):
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assignee_id: UUID | None = None
    project_id: UUID | None = None
    search: str | None = None
    due_date_from: date | None = None
    due_date_to: date | None = None


# ---------------------------------------------------------------------------
# Nested response objects
# ---------------------------------------------------------------------------

class TagResponse(BaseModel):
    id: UUID
    name: str
    color: str

    model_config = {"from_attributes": True}


class UserSummaryResponse(BaseModel):
    """Compact user info embedded in task responses."""

    id: UUID
    name: str
    email: str

    model_config = {"from_attributes": True}


class ProjectSummaryResponse(BaseModel):
    id: UUID
    name: str

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Task detail
# ---------------------------------------------------------------------------

class TaskResponse(BaseModel):
    """Task with its project, assignee and tags."""

    id: UUID
    title: str
    description: str | None
    status: TaskStatus
    priority: TaskPriority
    due_date: date | None
    project_id: UUID
    assignee_id: UUID | None
    created_at: datetime
    updated_at: datetime
    project: ProjectSummaryResponse | None = None
    assignee: UserSummaryResponse | None = None
    tags: list[TagResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class TaskListResponse(BaseModel):
    """Response for GET /tasks."""

    data: list[TaskResponse]
    meta: PageMeta
