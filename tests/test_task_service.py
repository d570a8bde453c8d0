# tests/test_task_service.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from tasktracker.cache.keys import AllTasks, ById, ByStatus, CacheKey, Region, Stats
from tasktracker.errors import Forbidden, NotFound, StorageFailure
from tasktracker.models import (
    Principal,
    Task,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
)
from tasktracker.services.task_service import (
    TaskService,
    average_completion_hours,
    completion_time,
)

from .fakes import T0


async def _create(service: TaskService, principal: Principal, title: str = "write tests", **fields):
    return await service.create(principal, TaskCreate(title=title, **fields))


# ---- completed_at rule ----


def test_entering_done_stamps_now() -> None:
    assert completion_time(TaskStatus.TODO, TaskStatus.DONE, None, T0) == T0


def test_leaving_done_clears_completion() -> None:
    assert completion_time(TaskStatus.DONE, TaskStatus.IN_PROGRESS, T0, T0) is None


def test_staying_done_keeps_original_stamp() -> None:
    later = T0 + timedelta(days=1)
    assert completion_time(TaskStatus.DONE, TaskStatus.DONE, T0, later) == T0


async def test_update_to_done_then_back_to_todo(service, alice, clock) -> None:
    task = await _create(service, alice)
    assert task.completed_at is None

    clock.advance(hours=2)
    await service.update(alice, task.id, TaskUpdate(status=TaskStatus.DONE))
    done = await service.get_by_id(alice, task.id)
    assert done.completed_at is not None
    assert done.completed_at == clock()

    await service.update(alice, task.id, TaskUpdate(status=TaskStatus.TODO))
    reopened = await service.get_by_id(alice, task.id)
    assert reopened.completed_at is None
    assert reopened.status is TaskStatus.TODO


async def test_create_directly_as_done_is_stamped(service, alice, clock) -> None:
    task = await _create(service, alice, status=TaskStatus.DONE)

    assert task.completed_at == clock()


async def test_update_overwrites_other_fields(service, alice) -> None:
    task = await _create(service, alice, description="old")

    updated = await service.update(
        alice,
        task.id,
        TaskUpdate(title="renamed", description=None, priority=TaskPriority.HIGH),
    )

    assert updated.title == "renamed"
    assert updated.description is None
    assert updated.priority is TaskPriority.HIGH
    assert updated.status is TaskStatus.TODO


async def test_explicit_null_for_required_field_is_ignored(service, alice) -> None:
    task = await _create(service, alice, title="keep me")

    updated = await service.update(alice, task.id, TaskUpdate(title=None))

    assert updated.title == "keep me"


async def test_complete_marks_done(service, alice) -> None:
    task = await _create(service, alice)

    done = await service.complete(alice, task.id)

    assert done.status is TaskStatus.DONE
    assert done.completed_at is not None


# ---- read-through and invalidation ----


async def test_list_all_is_served_from_cache_on_second_call(service, store, alice) -> None:
    await _create(service, alice)
    await service.list_all(alice)
    reads = store.calls.count("find_by_owner")

    await service.list_all(alice)

    assert store.calls.count("find_by_owner") == reads


async def test_create_after_list_is_visible_on_next_list(service, alice) -> None:
    first = await _create(service, alice, title="first")
    assert [t.id for t in await service.list_all(alice)] == [first.id]

    second = await _create(service, alice, title="second")

    assert {t.id for t in await service.list_all(alice)} == {first.id, second.id}


async def test_principals_never_share_cached_lists(service, alice, bob) -> None:
    await _create(service, alice, title="alice's")
    alice_view = await service.list_all(alice)

    bob_view = await service.list_all(bob)

    assert [t.title for t in alice_view] == ["alice's"]
    assert bob_view == []


async def test_status_change_invalidates_old_and_new_status_lists(service, alice) -> None:
    task = await _create(service, alice)
    assert len(await service.list_by_status(alice, TaskStatus.TODO)) == 1
    assert await service.list_by_status(alice, TaskStatus.DONE) == []

    await service.update(alice, task.id, TaskUpdate(status=TaskStatus.DONE))

    assert await service.list_by_status(alice, TaskStatus.TODO) == []
    assert [t.id for t in await service.list_by_status(alice, TaskStatus.DONE)] == [task.id]


async def test_priority_change_invalidates_both_priority_lists(service, alice) -> None:
    task = await _create(service, alice, priority=TaskPriority.LOW)
    assert len(await service.list_by_priority(alice, TaskPriority.LOW)) == 1
    assert await service.list_by_priority(alice, TaskPriority.HIGH) == []

    await service.update(alice, task.id, TaskUpdate(priority=TaskPriority.HIGH))

    assert await service.list_by_priority(alice, TaskPriority.LOW) == []
    assert len(await service.list_by_priority(alice, TaskPriority.HIGH)) == 1


async def test_update_refreshes_cached_entity(service, alice) -> None:
    task = await _create(service, alice, title="before")
    await service.get_by_id(alice, task.id)

    await service.update(alice, task.id, TaskUpdate(title="after"))

    assert (await service.get_by_id(alice, task.id)).title == "after"


async def test_mutation_leaves_other_principals_entries_alone(service, cache, alice, bob) -> None:
    await _create(service, bob, title="bob's")
    await service.list_all(bob)
    await service.get_stats(bob)

    await _create(service, alice)

    assert await cache.get(Region.COLLECTION, CacheKey("bob", AllTasks())) is not None
    assert await cache.get(Region.STATS, CacheKey("bob", Stats())) is not None


async def test_stats_refresh_after_mutation(service, alice) -> None:
    task = await _create(service, alice)
    assert (await service.get_stats(alice)).total_tasks == 1

    await service.update(alice, task.id, TaskUpdate(status=TaskStatus.DONE))

    stats = await service.get_stats(alice)
    assert stats.completed_tasks == 1
    assert stats.pending_tasks == 0


# ---- ownership and failures ----


async def test_get_by_id_on_foreign_task_is_forbidden(service, alice, bob) -> None:
    task = await _create(service, alice)

    with pytest.raises(Forbidden):
        await service.get_by_id(bob, task.id)


async def test_get_by_id_on_missing_task_is_not_found(service, alice) -> None:
    with pytest.raises(NotFound):
        await service.get_by_id(alice, 999)


async def test_forbidden_is_not_cached_for_anyone(service, cache, alice, bob) -> None:
    task = await _create(service, alice)

    with pytest.raises(Forbidden):
        await service.get_by_id(bob, task.id)

    assert await cache.get(Region.ENTITY, CacheKey("bob", ById(task.id))) is None
    assert (await service.get_by_id(alice, task.id)).id == task.id
    with pytest.raises(Forbidden):
        await service.get_by_id(bob, task.id)


async def test_foreign_update_and_delete_are_forbidden(service, store, alice, bob) -> None:
    task = await _create(service, alice)

    with pytest.raises(Forbidden):
        await service.update(bob, task.id, TaskUpdate(title="hijack"))
    with pytest.raises(Forbidden):
        await service.delete(bob, task.id)

    assert store.rows[task.id].title == "write tests"


async def test_delete_evicts_entity_so_next_read_is_not_found(service, alice) -> None:
    task = await _create(service, alice)
    await service.get_by_id(alice, task.id)

    await service.delete(alice, task.id)

    with pytest.raises(NotFound):
        await service.get_by_id(alice, task.id)
    assert await service.list_all(alice) == []


async def test_delete_of_missing_task_is_not_found(service, alice) -> None:
    with pytest.raises(NotFound):
        await service.delete(alice, 42)


async def test_storage_failure_propagates_and_keeps_cache(service, store, cache, alice) -> None:
    await _create(service, alice)
    await service.list_all(alice)
    store.fail_writes = True

    with pytest.raises(StorageFailure):
        await _create(service, alice, title="lost")

    assert await cache.get(Region.COLLECTION, CacheKey("alice", AllTasks())) is not None


async def test_concurrent_updates_to_same_task_both_invalidate(service, cache, alice) -> None:
    task = await _create(service, alice)
    await service.list_by_status(alice, TaskStatus.TODO)

    await asyncio.gather(
        service.update(alice, task.id, TaskUpdate(status=TaskStatus.IN_PROGRESS)),
        service.update(alice, task.id, TaskUpdate(status=TaskStatus.DONE)),
    )

    assert await cache.get(Region.COLLECTION, CacheKey("alice", ByStatus(TaskStatus.TODO))) is None
    final = await service.get_by_id(alice, task.id)
    assert final.status in (TaskStatus.IN_PROGRESS, TaskStatus.DONE)


# ---- statistics ----


async def test_stats_on_zero_tasks(service, alice) -> None:
    stats = await service.get_stats(alice)

    assert stats.total_tasks == 0
    assert stats.average_completion_time_hours == 0.0


async def test_average_completion_of_ninety_minutes(service, alice, clock) -> None:
    task = await _create(service, alice)
    clock.advance(minutes=90)
    await service.update(alice, task.id, TaskUpdate(status=TaskStatus.DONE))

    stats = await service.get_stats(alice)

    assert stats.average_completion_time_hours == 1.5


async def test_stats_counts_by_status(service, alice, bob) -> None:
    await _create(service, alice, status=TaskStatus.TODO)
    await _create(service, alice, status=TaskStatus.TODO)
    await _create(service, alice, status=TaskStatus.IN_PROGRESS)
    await _create(service, alice, status=TaskStatus.DONE)
    await _create(service, bob, status=TaskStatus.DONE)

    stats = await service.get_stats(alice)

    assert stats.total_tasks == 4
    assert stats.todo_tasks == 2
    assert stats.in_progress_tasks == 1
    assert stats.completed_tasks == 1
    assert stats.pending_tasks == 3


def test_average_keeps_sub_hour_precision() -> None:
    tasks = [
        Task(title="a", owner_id=1, created_at=T0, completed_at=T0 + timedelta(minutes=30)),
        Task(title="b", owner_id=1, created_at=T0, completed_at=T0 + timedelta(minutes=45)),
    ]

    assert average_completion_hours(tasks) == pytest.approx(0.625)


def test_average_ignores_tasks_without_both_timestamps() -> None:
    tasks = [
        Task(title="a", owner_id=1, created_at=T0, completed_at=None),
        Task(title="b", owner_id=1, created_at=T0, completed_at=T0 + timedelta(hours=3)),
    ]

    assert average_completion_hours(tasks) == 3.0


def test_average_handles_naive_timestamps() -> None:
    naive = T0.replace(tzinfo=None)
    tasks = [Task(title="a", owner_id=1, created_at=naive, completed_at=T0 + timedelta(hours=1))]

    assert average_completion_hours(tasks) == 1.0
