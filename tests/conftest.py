"""
Pytest configuration for TaskTrail backend tests.

Every test gets its own SQLite file database (so the concurrent count and
fetch of the page reader run on real, separate connections), an in-memory
Redis fake and a recorder in place of the Celery broker.
"""

from __future__ import annotations

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-at-least-32-characters")

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tasktrail.core.cache import RedisCache
from tasktrail.models import Base, Project, Tag, User
from tasktrail.services.activity_service import ActivityService
from tasktrail.services.pagination_service import PaginationService
from tasktrail.services.task_service import TaskService
from tests.fakes import FakeRedis


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tasktrail.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def pagination(session_factory, fake_redis) -> PaginationService:
    return PaginationService(
        session_factory=session_factory,
        cache=RedisCache(fake_redis),
        default_limit=25,
        max_limit=100,
        cache_ttl_ms=60_000,
    )


@pytest.fixture
def activity_service(db, pagination) -> ActivityService:
    return ActivityService(db=db, pagination=pagination)


@pytest.fixture
def task_service(db, activity_service, pagination) -> TaskService:
    return TaskService(db=db, activities=activity_service, pagination=pagination)


@pytest.fixture
async def seed(db) -> SimpleNamespace:
    """
    Users, projects and tags to point tasks at.

    ``system`` is the earliest-created user, so it is the fallback actor.
    """
    system = User(email="system@tasktrail.dev", name="System", created_at=datetime(2020, 1, 1, tzinfo=UTC))
    alice = User(email="alice@example.com", name="Alice", created_at=datetime(2021, 1, 1, tzinfo=UTC))
    bob = User(email="bob@example.com", name="Bob", created_at=datetime(2022, 1, 1, tzinfo=UTC))
    website = Project(name="Website")
    mobile = Project(name="Mobile")
    bug = Tag(name="bug", color="#ef4444")
    feature = Tag(name="feature", color="#22c55e")
    backend = Tag(name="backend", color="#3b82f6")

    db.add_all([system, alice, bob, website, mobile, bug, feature, backend])
    await db.commit()

    return SimpleNamespace(
        system=system,
        alice=alice,
        bob=bob,
        website=website,
        mobile=mobile,
        bug=bug,
        feature=feature,
        backend=backend,
    )


@pytest.fixture(autouse=True)
def enqueued(monkeypatch) -> list[dict[str, Any]]:
    """Capture task-assigned jobs instead of publishing them to the broker."""
    from tasktrail.workers.notification_tasks import send_task_assigned_email

    calls: list[dict[str, Any]] = []

    def fake_apply_async(args: Any = None, kwargs: dict[str, Any] | None = None, **options: Any) -> None:
        calls.append(kwargs or {})

    monkeypatch.setattr(send_task_assigned_email, "apply_async", fake_apply_async)
    return calls


@pytest.fixture
async def client(session_factory, pagination) -> AsyncGenerator[Any, None]:
    """HTTP client against the app, wired to the test database and cache."""
    import httpx

    from tasktrail.core.database import get_db
    from tasktrail.core.dependencies import get_pagination_service
    from tasktrail.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pagination_service] = lambda: pagination

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
