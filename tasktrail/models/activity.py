"""
Activity ORM model.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tasktrail.models.base import Base, UUIDMixin, utcnow


class ActivityAction(str, enum.Enum):
    created = "created"
    updated = "updated"
    deleted = "deleted"
    tag_added = "tag_added"
    tag_removed = "tag_removed"


class Activity(Base, UUIDMixin):
    """
    Append-only audit record of one change set applied to one task.

    task_title and user_name are snapshots taken at write time so reads
    never join. task_id carries no foreign key: the record of a deletion
    must outlive the task it describes.
    """

    __tablename__ = "activities"

    task_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    changes: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )
    task_title: Mapped[str] = mapped_column(String(500), nullable=False)
    user_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Activity id={self.id} action={self.action!r} task_id={self.task_id}>"
