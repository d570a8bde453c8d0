# tests/test_sql_stores.py

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel.ext.asyncio.session import AsyncSession

from tasktracker.database import create_db_and_tables
from tasktracker.errors import StorageFailure
from tasktracker.models import Task, TaskCreate, TaskPriority, TaskStatus, TaskUpdate
from tasktracker.repositories.identity_store import SqlIdentityStore
from tasktracker.repositories.task_store import SqlTaskStore
from tasktracker.seed import DEMO_PASSWORD, DEMO_USERNAME, SAMPLE_TASKS, seed_demo_data
from tasktracker.services.task_service import TaskService

from .fakes import T0


@pytest.fixture()
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_db_and_tables(engine)
    sessionmaker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with sessionmaker() as session:
        yield session
    await engine.dispose()


@pytest.fixture()
async def owners(db):
    identities = SqlIdentityStore(db)
    alice = await identities.create_user("alice", "wonderland", "alice@example.com")
    bob = await identities.create_user("bob", "builder", "bob@example.com")
    return alice, bob


@pytest.fixture()
def task_store(db, clock) -> SqlTaskStore:
    return SqlTaskStore(db, clock=clock)


async def _add(store: SqlTaskStore, owner_id: int, title: str, **fields) -> Task:
    return await store.save(Task(title=title, owner_id=owner_id, **fields))


# ---- SqlIdentityStore ----


async def test_created_user_can_be_found_and_verified(db, owners) -> None:
    alice, _ = owners
    identities = SqlIdentityStore(db)

    found = await identities.find_by_name("alice")

    assert found == alice
    assert found.secret_hash != "wonderland"
    assert await identities.verify_secret("wonderland", found.secret_hash) is True
    assert await identities.verify_secret("nope", found.secret_hash) is False


async def test_unknown_user_is_none(db, owners) -> None:
    assert await SqlIdentityStore(db).find_by_name("mallory") is None


async def test_duplicate_username_is_storage_failure(db, owners) -> None:
    with pytest.raises(StorageFailure):
        await SqlIdentityStore(db).create_user("alice", "again", "a2@example.com")


# ---- SqlTaskStore ----


async def test_save_assigns_id_and_creation_time(task_store, owners) -> None:
    alice, _ = owners

    task = await _add(task_store, alice.id, "first")

    assert task.id is not None
    assert task.created_at is not None
    assert task.created_at.replace(tzinfo=None) == T0.replace(tzinfo=None)


async def test_save_keeps_explicit_creation_time(task_store, owners) -> None:
    alice, _ = owners
    earlier = T0 - timedelta(days=3)

    task = await _add(task_store, alice.id, "backdated", created_at=earlier)

    assert task.created_at.replace(tzinfo=None) == earlier.replace(tzinfo=None)


async def test_reads_are_owner_scoped_and_newest_first(task_store, owners, clock) -> None:
    alice, bob = owners
    older = await _add(task_store, alice.id, "older", priority=TaskPriority.HIGH)
    clock.advance(minutes=5)
    newer = await _add(task_store, alice.id, "newer", status=TaskStatus.DONE)
    await _add(task_store, bob.id, "bob's", priority=TaskPriority.HIGH)

    assert [t.id for t in await task_store.find_by_owner(alice.id)] == [newer.id, older.id]
    assert [t.id for t in await task_store.find_by_owner_and_status(alice.id, TaskStatus.DONE)] == [
        newer.id
    ]
    assert [
        t.id for t in await task_store.find_by_owner_and_priority(alice.id, TaskPriority.HIGH)
    ] == [older.id]


async def test_counts(task_store, owners) -> None:
    alice, bob = owners
    await _add(task_store, alice.id, "a")
    await _add(task_store, alice.id, "b", status=TaskStatus.IN_PROGRESS)
    await _add(task_store, bob.id, "c")

    assert await task_store.count_by_owner(alice.id) == 2
    assert await task_store.count_by_owner_and_status(alice.id, TaskStatus.TODO) == 1
    assert await task_store.count_by_owner_and_status(alice.id, TaskStatus.DONE) == 0


async def test_find_completed_requires_done_and_timestamp(task_store, owners) -> None:
    alice, _ = owners
    stamped = await _add(task_store, alice.id, "stamped", status=TaskStatus.DONE, completed_at=T0)
    await _add(task_store, alice.id, "unstamped", status=TaskStatus.DONE)
    await _add(task_store, alice.id, "open", completed_at=T0)

    assert [t.id for t in await task_store.find_completed_by_owner(alice.id)] == [stamped.id]


async def test_delete_removes_row(task_store, owners) -> None:
    alice, _ = owners
    task = await _add(task_store, alice.id, "doomed")

    await task_store.delete(task)

    assert await task_store.find_by_id(task.id) is None


async def test_constraint_violation_is_storage_failure(task_store, owners) -> None:
    alice, _ = owners

    with pytest.raises(StorageFailure):
        await task_store.save(Task(title=None, owner_id=alice.id))

    # session is usable again after the rollback
    assert await task_store.count_by_owner(alice.id) == 0


# ---- TaskService over SQL ----


async def test_service_stats_over_sqlite(task_store, owners, cache, clock) -> None:
    alice, _ = owners
    service = TaskService(task_store, cache, clock=clock)
    task = await service.create(alice, TaskCreate(title="report"))
    await service.create(alice, TaskCreate(title="other"))

    clock.advance(hours=3)
    await service.update(alice, task.id, TaskUpdate(status=TaskStatus.DONE))

    stats = await service.get_stats(alice)
    assert stats.total_tasks == 2
    assert stats.completed_tasks == 1
    assert stats.todo_tasks == 1
    assert stats.average_completion_time_hours == pytest.approx(3.0)


# ---- demo seed ----


async def test_seed_is_idempotent(db) -> None:
    assert await seed_demo_data(db) is True
    assert await seed_demo_data(db) is False

    identities = SqlIdentityStore(db)
    demo = await identities.find_by_name(DEMO_USERNAME)
    assert await identities.verify_secret(DEMO_PASSWORD, demo.secret_hash)

    store = SqlTaskStore(db)
    assert await store.count_by_owner(demo.id) == len(SAMPLE_TASKS)
    completed = await store.find_completed_by_owner(demo.id)
    assert len(completed) == 1
    assert completed[0].completed_at > completed[0].created_at
