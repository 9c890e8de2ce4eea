"""
Task ORM model.
"""

from __future__ import annotations

import enum
from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tasktrail.models.base import Base, TimestampMixin, UUIDMixin
from tasktrail.models.tag import task_tags

if TYPE_CHECKING:
    from tasktrail.models.project import Project
    from tasktrail.models.tag import Tag
    from tasktrail.models.user import User


class TaskStatus(str, enum.Enum):
    todo = "todo"
    in_progress = "in_progress"
    review = "review"
    done = "done"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class Task(Base, UUIDMixin, TimestampMixin):
    """Represents a work item within a project."""

    __tablename__ = "tasks"

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status"),
        nullable=False,
        default=TaskStatus.todo,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority, name="task_priority"),
        nullable=False,
        default=TaskPriority.medium,
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignee_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Relationships
    project: Mapped[Project] = relationship("Project", back_populates="tasks")
    assignee: Mapped[User | None] = relationship(
        "User", foreign_keys=[assignee_id], back_populates="assigned_tasks"
    )
    tags: Mapped[list[Tag]] = relationship(
        "Tag", secondary=task_tags, back_populates="tasks", order_by="Tag.name"
    )

    def __repr__(self) -> str:
        return f"<Task id={self.id} title={self.title!r} project_id={self.project_id}>"
