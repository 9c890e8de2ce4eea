"""
SQLAlchemy ORM models.

All models imported here to ensure they are registered with Base.metadata.
Import order matters: base models before dependent models.
"""

from tasktrail.models.base import Base, TimestampMixin, UUIDMixin
from tasktrail.models.user import User
from tasktrail.models.project import Project
from tasktrail.models.tag import Tag, task_tags
from tasktrail.models.task import Task, TaskPriority, TaskStatus
from tasktrail.models.activity import Activity, ActivityAction

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "User",
    "Project",
    "Tag",
    "task_tags",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "Activity",
    "ActivityAction",
]
