"""
Task state store - completion invariant, partial updates, cascade delete
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, func

from taskboard.exceptions import NotFoundError, ValidationError
from taskboard.models import Notification, Task, TaskFile, TaskStatus, TaskUpdate
from taskboard.services import task_store
from taskboard.services.file_storage import StoredFile
from taskboard.utils.helpers import utcnow


async def _count(session, model, **where):
    query = select(func.count()).select_from(model)
    for key, value in where.items():
        query = query.where(getattr(model, key) == value)
    return (await session.execute(query)).scalar()


async def _new_task(session, seed, **fields):
    values = {"title": "Repair street lights", "assigned_to": seed["u1"].id}
    values.update(fields)
    task = await task_store.create_task(session, values, created_by=seed["creator"].id)
    await session.commit()
    return task


def assert_completion_invariant(task):
    assert (task.completed_at is not None) == (task.status == TaskStatus.DONE)


async def test_create_defaults(db_session, seed_data):
    task = await _new_task(db_session, seed_data)
    assert task.id is not None
    assert task.status == TaskStatus.PENDING
    assert task.completed_at is None
    assert task.is_urgent is False


async def test_create_done_sets_completion(db_session, seed_data):
    task = await _new_task(db_session, seed_data, status="done")
    assert_completion_invariant(task)


async def test_create_requires_existing_assignee(db_session, seed_data):
    with pytest.raises(NotFoundError):
        await task_store.create_task(
            db_session, {"title": "x", "assigned_to": 9999}, created_by=seed_data["creator"].id
        )


async def test_create_requires_title(db_session, seed_data):
    with pytest.raises(ValidationError):
        await task_store.create_task(
            db_session, {"title": "  ", "assigned_to": seed_data["u1"].id}, created_by=seed_data["creator"].id
        )


async def test_create_rejects_unknown_fields(db_session, seed_data):
    with pytest.raises(ValidationError, match="Unknown task fields"):
        await task_store.create_task(
            db_session,
            {"title": "x", "assigned_to": seed_data["u1"].id, "completed_at": utcnow()},
            created_by=seed_data["creator"].id,
        )


async def test_set_status_done_then_reopen(db_session, seed_data):
    task = await _new_task(db_session, seed_data)

    before = utcnow()
    await task_store.set_status(db_session, task.id, "done")
    assert task.status == TaskStatus.DONE
    assert before - timedelta(seconds=1) <= task.completed_at <= utcnow() + timedelta(seconds=1)

    await task_store.set_status(db_session, task.id, "in_progress")
    assert task.completed_at is None
    assert_completion_invariant(task)


async def test_set_status_manual_completion_time(db_session, seed_data):
    task = await _new_task(db_session, seed_data)
    await task_store.set_status(db_session, task.id, "done", completed_at="2025-03-01T09:30:00")
    assert task.completed_at == datetime(2025, 3, 1, 9, 30)


async def test_set_status_invalid_manual_time_falls_back_to_now(db_session, seed_data):
    task = await _new_task(db_session, seed_data)
    await task_store.set_status(db_session, task.id, "done", completed_at="not a date")
    assert task.completed_at is not None
    assert abs((utcnow() - task.completed_at).total_seconds()) < 5


async def test_important_is_not_done(db_session, seed_data):
    task = await _new_task(db_session, seed_data, status="done")
    await task_store.set_status(db_session, task.id, "important")
    assert task.status == TaskStatus.IMPORTANT
    assert task.completed_at is None


async def test_set_status_rejects_unknown_status(db_session, seed_data):
    task = await _new_task(db_session, seed_data)
    with pytest.raises(ValidationError):
        await task_store.set_status(db_session, task.id, "archived")
    assert task.status == TaskStatus.PENDING


async def test_set_status_missing_task(db_session, seed_data):
    with pytest.raises(NotFoundError):
        await task_store.set_status(db_session, 4242, "done")


async def test_update_fields_keeps_omitted_values(db_session, seed_data):
    task = await _new_task(
        db_session, seed_data,
        description="Three poles on main road",
        secondary_responsible=seed_data["u2"].id,
        region="Marmara",
    )

    await task_store.update_task_fields(db_session, task.id, {"title": "Repair lights", "region": None})

    assert task.title == "Repair lights"
    assert task.description == "Three poles on main road"
    assert task.secondary_responsible == seed_data["u2"].id
    assert task.region == "Marmara"


async def test_update_fields_empty_string_clears_optional(db_session, seed_data):
    task = await _new_task(db_session, seed_data, secondary_responsible=seed_data["u2"].id, city="Bursa")
    await task_store.update_task_fields(db_session, task.id, {"secondary_responsible": "", "city": ""})
    assert task.secondary_responsible is None
    assert task.city is None


async def test_update_fields_status_keeps_invariant(db_session, seed_data):
    task = await _new_task(db_session, seed_data)
    await task_store.update_task_fields(db_session, task.id, {"status": "done"})
    assert_completion_invariant(task)
    await task_store.update_task_fields(db_session, task.id, {"status": "pending"})
    assert_completion_invariant(task)


async def test_update_fields_missing_task(db_session, seed_data):
    with pytest.raises(NotFoundError):
        await task_store.update_task_fields(db_session, 4242, {"title": "x"})


async def test_list_tasks_visibility(db_session, seed_data):
    mine = await _new_task(db_session, seed_data, title="mine")
    by_subject = await _new_task(
        db_session, seed_data, title="subject", assigned_to=seed_data["u2"].id,
        subject_owner=str(seed_data["u1"].id),
    )
    await _new_task(db_session, seed_data, title="other", assigned_to=seed_data["u2"].id)

    visible = await task_store.list_tasks_for(db_session, seed_data["u1"])
    assert {t.id for t in visible} == {mine.id, by_subject.id}

    everything = await task_store.list_tasks_for(db_session, seed_data["admin"])
    assert len(everything) == 3

    created = await task_store.list_tasks_for(db_session, seed_data["creator"])
    assert len(created) == 3


async def test_delete_cascades(db_session, seed_data):
    task = await _new_task(db_session, seed_data)
    update = await task_store.append_update(db_session, task.id, seed_data["u1"].id, "in_progress", "started")
    await task_store.attach_files(
        db_session, task.id, seed_data["u1"].id,
        [StoredFile("abc.pdf", "report.pdf", "application/pdf", 10)],
        update_id=update.id,
    )
    db_session.add(Notification(user_id=seed_data["u2"].id, message="hi", related_task_id=task.id))
    await db_session.commit()

    filenames = await task_store.delete_task(db_session, task.id)
    await db_session.commit()

    assert filenames == ["abc.pdf"]
    assert await _count(db_session, Task, id=task.id) == 0
    assert await _count(db_session, TaskUpdate, task_id=task.id) == 0
    assert await _count(db_session, TaskFile, task_id=task.id) == 0
    assert await _count(db_session, Notification, related_task_id=task.id) == 0


async def test_delete_missing_task(db_session, seed_data):
    with pytest.raises(NotFoundError):
        await task_store.delete_task(db_session, 4242)


async def test_subject_owner_is_stored_normalized(db_session, seed_data):
    u2 = seed_data["u2"]
    padded = await _new_task(db_session, seed_data, subject_owner=f" 00{u2.id} ")
    named = await _new_task(db_session, seed_data, subject_owner="  Ali Veli ")

    assert padded.subject_owner == str(u2.id)
    assert named.subject_owner == "Ali Veli"

    visible = await task_store.list_tasks_for(db_session, u2)
    assert [t.id for t in visible] == [padded.id]


async def test_list_tasks_urgent_filter(db_session, seed_data):
    urgent = await _new_task(db_session, seed_data, is_urgent=True)
    calm = await _new_task(db_session, seed_data)
    admin = seed_data["admin"]

    assert [t.id for t in await task_store.list_tasks_for(db_session, admin, urgent=True)] == [urgent.id]
    assert [t.id for t in await task_store.list_tasks_for(db_session, admin, urgent=False)] == [calm.id]
    assert len(await task_store.list_tasks_for(db_session, admin)) == 2


async def test_task_stats(db_session, seed_data):
    u1, u2 = seed_data["u1"], seed_data["u2"]
    await _new_task(db_session, seed_data, is_urgent=True)
    await _new_task(db_session, seed_data, status="important")
    await _new_task(db_session, seed_data, assigned_to=u2.id, status="done", is_urgent=True)

    stats = await task_store.task_stats(db_session, seed_data["admin"])
    assert stats["total"] == 3
    assert stats["pending"] == 1
    assert stats["important"] == 1
    assert stats["done"] == 1
    assert stats["in_progress"] == 0
    assert stats["urgent"] == 2
    assert stats["most_assigned_user"] == {"username": "ayse", "task_count": 2}

    # Staff only count what they can see
    stats = await task_store.task_stats(db_session, u2)
    assert stats["total"] == 1
    assert stats["done"] == 1
    assert stats["most_assigned_user"] == {"username": "mehmet", "task_count": 1}


async def test_task_stats_empty(db_session, seed_data):
    stats = await task_store.task_stats(db_session, seed_data["admin"])
    assert stats["total"] == 0
    assert stats["urgent"] == 0
    assert stats["most_assigned_user"] is None
