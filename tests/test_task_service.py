"""
Task service tests.

Verifies that:
- Every mutation writes exactly one activity describing what changed
- No-op updates and reordered tag sets write nothing
- Assignment changes enqueue one email to the new assignee
- The system user stands in when no actor is given
- Mutate, audit and enqueue are separate steps (no rollback across them)
"""

import uuid
from datetime import date

import pytest
from fastapi import HTTPException
from kombu.exceptions import OperationalError
from sqlalchemy import func, select

from tasktrail.models import Activity, ActivityAction, Task
from tasktrail.schemas.task import TaskCreateRequest, TaskFilter, TaskUpdateRequest
from tasktrail.services.activity_service import ActivityService
from tasktrail.services.task_service import TaskService


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def create(task_service, seed, **fields):
    fields.setdefault("title", "T1")
    fields.setdefault("project_id", seed.website.id)
    return await task_service.create_task(TaskCreateRequest(**fields))


async def activities_for(db, task_id):
    result = await db.execute(
        select(Activity)
        .where(Activity.task_id == task_id)
        .order_by(Activity.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def count(db, model):
    return await db.scalar(select(func.count()).select_from(model))


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_logs_new_values_only(db, seed, task_service, enqueued):
    task = await create(task_service, seed, tag_ids=[seed.feature.id, seed.bug.id])

    [activity] = await activities_for(db, task.id)
    assert activity.action == "created"
    assert activity.task_title == "T1"
    assert activity.changes["title"] == {"new": "T1"}
    assert activity.changes["status"] == {"new": "todo"}
    assert activity.changes["assignee_id"] == {"new": None}
    assert activity.changes["tag_ids"] == {"new": sorted([str(seed.feature.id), str(seed.bug.id)])}
    assert all(set(entry) == {"new"} for entry in activity.changes.values())
    assert enqueued == []
    assert [tag.name for tag in task.tags] == ["bug", "feature"]


@pytest.mark.asyncio
async def test_create_with_assignee_enqueues_email(db, seed, task_service, enqueued):
    task = await create(task_service, seed, assignee_id=seed.bob.id)

    assert task.assignee.email == "bob@example.com"
    assert enqueued == [{"assignee_email": "bob@example.com", "task_title": "T1"}]


@pytest.mark.asyncio
async def test_create_with_unknown_project_writes_nothing(db, seed, task_service, enqueued):
    with pytest.raises(HTTPException) as exc_info:
        await create(task_service, seed, project_id=uuid.uuid4())

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail["code"] == "PROJECT_NOT_FOUND"
    assert await count(db, Task) == 0
    assert await count(db, Activity) == 0


@pytest.mark.asyncio
async def test_create_with_unknown_assignee(db, seed, task_service):
    with pytest.raises(HTTPException) as exc_info:
        await create(task_service, seed, assignee_id=uuid.uuid4())

    assert exc_info.value.detail["code"] == "ASSIGNEE_NOT_FOUND"
    assert await count(db, Task) == 0


@pytest.mark.asyncio
async def test_create_with_unknown_tag_names_it(db, seed, task_service):
    missing = uuid.uuid4()

    with pytest.raises(HTTPException) as exc_info:
        await create(task_service, seed, tag_ids=[seed.bug.id, missing])

    assert exc_info.value.detail["code"] == "TAG_NOT_FOUND"
    assert str(missing) in exc_info.value.detail["message"]
    assert await count(db, Task) == 0


# ---------------------------------------------------------------------------
# Actor resolution
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_actor_falls_back_to_system_user(db, seed, task_service):
    task = await create(task_service, seed)

    [activity] = await activities_for(db, task.id)
    assert activity.user_id == seed.system.id
    assert activity.user_name == "System"


@pytest.mark.asyncio
async def test_explicit_actor_is_recorded(db, seed, task_service):
    task = await task_service.create_task(
        TaskCreateRequest(title="T1", project_id=seed.website.id), actor_id=seed.alice.id
    )

    [activity] = await activities_for(db, task.id)
    assert activity.user_id == seed.alice.id
    assert activity.user_name == "Alice"


@pytest.mark.asyncio
async def test_unknown_actor_is_rejected_before_mutation(db, seed, task_service):
    with pytest.raises(HTTPException) as exc_info:
        await task_service.create_task(
            TaskCreateRequest(title="T1", project_id=seed.website.id), actor_id=uuid.uuid4()
        )

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail["code"] == "USER_NOT_FOUND"
    assert await count(db, Task) == 0


@pytest.mark.asyncio
async def test_no_users_at_all_is_a_server_error(db, task_service):
    from tasktrail.models import Project

    project = Project(name="Orphan")
    db.add(project)
    await db.commit()

    with pytest.raises(HTTPException) as exc_info:
        await task_service.create_task(TaskCreateRequest(title="T1", project_id=project.id))

    assert exc_info.value.status_code == 500
    assert exc_info.value.detail["code"] == "SYSTEM_USER_MISSING"
    assert await count(db, Task) == 0


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_assigning_logs_one_change_and_one_email(db, seed, task_service, enqueued):
    task = await create(task_service, seed)

    updated = await task_service.update_task(task.id, TaskUpdateRequest(assignee_id=seed.bob.id))

    activities = await activities_for(db, task.id)
    assert [a.action for a in activities] == ["created", "updated"]
    assert activities[1].changes == {"assignee_id": {"old": None, "new": str(seed.bob.id)}}
    assert enqueued == [{"assignee_email": "bob@example.com", "task_title": "T1"}]
    assert updated.assignee_id == seed.bob.id


@pytest.mark.asyncio
async def test_unassigning_sends_no_email(db, seed, task_service, enqueued):
    task = await create(task_service, seed, assignee_id=seed.bob.id)
    enqueued.clear()

    await task_service.update_task(task.id, TaskUpdateRequest(assignee_id=None))

    activities = await activities_for(db, task.id)
    assert activities[-1].changes == {"assignee_id": {"old": str(seed.bob.id), "new": None}}
    assert enqueued == []


@pytest.mark.asyncio
async def test_reassigning_same_user_is_noop(db, seed, task_service, enqueued):
    task = await create(task_service, seed, assignee_id=seed.bob.id)
    enqueued.clear()

    await task_service.update_task(task.id, TaskUpdateRequest(assignee_id=seed.bob.id))

    assert len(await activities_for(db, task.id)) == 1
    assert enqueued == []


@pytest.mark.asyncio
async def test_identical_update_writes_no_activity(db, seed, task_service):
    task = await create(task_service, seed, priority="high")

    await task_service.update_task(task.id, TaskUpdateRequest(title="T1", priority="high"))

    assert len(await activities_for(db, task.id)) == 1


@pytest.mark.asyncio
async def test_only_present_fields_are_diffed(db, seed, task_service):
    task = await create(task_service, seed, description="first draft")

    await task_service.update_task(task.id, TaskUpdateRequest(status="in_progress"))

    activities = await activities_for(db, task.id)
    assert activities[-1].changes == {"status": {"old": "todo", "new": "in_progress"}}


@pytest.mark.asyncio
async def test_clearing_a_field_records_null(db, seed, task_service):
    task = await create(task_service, seed, due_date=date(2026, 11, 1))

    updated = await task_service.update_task(task.id, TaskUpdateRequest(due_date=None))

    activities = await activities_for(db, task.id)
    assert activities[-1].changes == {"due_date": {"old": "2026-11-01", "new": None}}
    assert updated.due_date is None


@pytest.mark.asyncio
async def test_reordered_tag_set_is_not_a_change(db, seed, task_service):
    task = await create(task_service, seed, tag_ids=[seed.bug.id, seed.feature.id])

    await task_service.update_task(task.id, TaskUpdateRequest(tag_ids=[seed.feature.id, seed.bug.id]))
    assert len(await activities_for(db, task.id)) == 1

    await task_service.update_task(
        task.id, TaskUpdateRequest(title="T2", tag_ids=[seed.feature.id, seed.bug.id])
    )
    activities = await activities_for(db, task.id)
    assert activities[-1].changes == {"title": {"old": "T1", "new": "T2"}}


@pytest.mark.asyncio
async def test_changed_tag_set_is_logged_sorted(db, seed, task_service):
    task = await create(task_service, seed, tag_ids=[seed.bug.id])

    updated = await task_service.update_task(
        task.id, TaskUpdateRequest(tag_ids=[seed.feature.id, seed.backend.id])
    )

    activities = await activities_for(db, task.id)
    assert activities[-1].changes == {
        "tag_ids": {
            "old": [str(seed.bug.id)],
            "new": sorted([str(seed.feature.id), str(seed.backend.id)]),
        }
    }
    assert [tag.name for tag in updated.tags] == ["backend", "feature"]


@pytest.mark.asyncio
async def test_rename_refreshes_earlier_titles(db, seed, task_service):
    task = await create(task_service, seed)

    await task_service.update_task(task.id, TaskUpdateRequest(title="T1 renamed"))

    titles = {a.task_title for a in await activities_for(db, task.id)}
    assert titles == {"T1 renamed"}


@pytest.mark.asyncio
async def test_update_unknown_task(db, seed, task_service):
    with pytest.raises(HTTPException) as exc_info:
        await task_service.update_task(uuid.uuid4(), TaskUpdateRequest(title="x"))

    assert exc_info.value.detail["code"] == "TASK_NOT_FOUND"


def test_update_request_rejects_null_title():
    with pytest.raises(ValueError):
        TaskUpdateRequest(title=None)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_logs_final_state(db, seed, task_service):
    task = await create(task_service, seed, assignee_id=seed.bob.id, tag_ids=[seed.bug.id])

    await task_service.delete_task(task.id, actor_id=seed.alice.id)

    assert await count(db, Task) == 0
    activities = await activities_for(db, task.id)
    assert [a.action for a in activities] == ["created", "deleted"]
    deleted = activities[-1]
    assert deleted.user_name == "Alice"
    assert deleted.task_title == "T1"
    assert all(set(entry) == {"old"} for entry in deleted.changes.values())
    assert deleted.changes["assignee_id"] == {"old": str(seed.bob.id)}
    assert deleted.changes["tag_ids"] == {"old": [str(seed.bug.id)]}


@pytest.mark.asyncio
async def test_history_readable_after_delete(db, seed, task_service, activity_service):
    task = await create(task_service, seed)
    await task_service.update_task(task.id, TaskUpdateRequest(status="done"))
    await task_service.delete_task(task.id)

    history = await activity_service.get_task_activities(task.id)

    assert [a.action for a in history.data] == [
        ActivityAction.deleted,
        ActivityAction.updated,
        ActivityAction.created,
    ]


@pytest.mark.asyncio
async def test_delete_unknown_task(db, seed, task_service):
    with pytest.raises(HTTPException) as exc_info:
        await task_service.delete_task(uuid.uuid4())

    assert exc_info.value.status_code == 404
    assert await count(db, Activity) == 0


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_and_remove_tag(db, seed, task_service):
    task = await create(task_service, seed, tag_ids=[seed.bug.id])

    added = await task_service.add_tag(task.id, seed.feature.id)
    removed = await task_service.remove_tag(task.id, seed.bug.id)

    activities = await activities_for(db, task.id)
    assert [a.action for a in activities] == ["created", "tag_added", "tag_removed"]
    assert activities[1].changes == {
        "tag_ids": {
            "old": [str(seed.bug.id)],
            "new": sorted([str(seed.bug.id), str(seed.feature.id)]),
        }
    }
    assert activities[2].changes == {
        "tag_ids": {
            "old": sorted([str(seed.bug.id), str(seed.feature.id)]),
            "new": [str(seed.feature.id)],
        }
    }
    assert [t.name for t in added.tags] == ["bug", "feature"]
    assert [t.name for t in removed.tags] == ["feature"]


@pytest.mark.asyncio
async def test_tag_noops_write_nothing(db, seed, task_service):
    task = await create(task_service, seed, tag_ids=[seed.bug.id])

    await task_service.add_tag(task.id, seed.bug.id)
    await task_service.remove_tag(task.id, seed.feature.id)

    assert len(await activities_for(db, task.id)) == 1


@pytest.mark.asyncio
async def test_add_unknown_tag(db, seed, task_service):
    task = await create(task_service, seed)

    with pytest.raises(HTTPException) as exc_info:
        await task_service.add_tag(task.id, uuid.uuid4())

    assert exc_info.value.detail["code"] == "TAG_NOT_FOUND"


# ---------------------------------------------------------------------------
# List / get
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_tasks_filters_and_includes(db, seed, task_service):
    await create(task_service, seed, title="Fix login bug", assignee_id=seed.bob.id, tag_ids=[seed.bug.id])
    await create(task_service, seed, title="Landing page", priority="high")
    await create(task_service, seed, title="Ship app", project_id=seed.mobile.id)

    everything = await task_service.list_tasks(TaskFilter())
    website = await task_service.list_tasks(TaskFilter(project_id=seed.website.id))
    search = await task_service.list_tasks(TaskFilter(search="LOGIN"))
    high = await task_service.list_tasks(TaskFilter(priority="high"))

    assert everything.meta.total == 3
    assert [t.title for t in everything.data] == ["Ship app", "Landing page", "Fix login bug"]
    assert website.meta.total == 2
    assert [t.title for t in search.data] == ["Fix login bug"]
    assert search.data[0].assignee.name == "Bob"
    assert search.data[0].project.name == "Website"
    assert [t.name for t in search.data[0].tags] == ["bug"]
    assert [t.title for t in high.data] == ["Landing page"]


@pytest.mark.asyncio
async def test_list_tasks_due_date_range(db, seed, task_service):
    await create(task_service, seed, title="A", due_date=date(2026, 11, 1))
    await create(task_service, seed, title="B", due_date=date(2026, 11, 15))
    await create(task_service, seed, title="C")

    result = await task_service.list_tasks(
        TaskFilter(due_date_from=date(2026, 11, 1), due_date_to=date(2026, 11, 10))
    )

    assert [t.title for t in result.data] == ["A"]


@pytest.mark.asyncio
async def test_get_task_unknown(db, seed, task_service):
    with pytest.raises(HTTPException) as exc_info:
        await task_service.get_task(uuid.uuid4())

    assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# Step boundaries
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_enqueue_failure_keeps_change_and_audit(db, seed, task_service, monkeypatch):
    from tasktrail.workers.notification_tasks import send_task_assigned_email

    def broker_down(*args, **kwargs):
        raise OperationalError("broker unreachable")

    monkeypatch.setattr(send_task_assigned_email, "apply_async", broker_down)

    task = await create(task_service, seed)
    updated = await task_service.update_task(task.id, TaskUpdateRequest(assignee_id=seed.bob.id))

    assert updated.assignee_id == seed.bob.id
    assert [a.action for a in await activities_for(db, task.id)] == ["created", "updated"]


@pytest.mark.asyncio
async def test_audit_failure_leaves_change_unaudited(db, seed, pagination):
    class BrokenActivityService(ActivityService):
        async def log_activity(self, *args, **kwargs):
            raise RuntimeError("audit store down")

    service = TaskService(db=db, activities=BrokenActivityService(db, pagination), pagination=pagination)

    with pytest.raises(RuntimeError):
        await service.create_task(TaskCreateRequest(title="T1", project_id=seed.website.id))

    # The insert committed before the audit step and is not rolled back.
    assert await count(db, Task) == 1
    assert await count(db, Activity) == 0
