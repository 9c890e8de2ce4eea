"""
User ORM model.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tasktrail.models.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from tasktrail.models.task import Task


class User(Base, UUIDMixin, TimestampMixin):
    """A person who can be assigned tasks and who acts on them."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Relationships
    assigned_tasks: Mapped[list[Task]] = relationship(
        "Task", foreign_keys="Task.assignee_id", back_populates="assignee"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"
