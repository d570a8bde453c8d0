import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from typing_extensions import assert_never

from tasktracker.cache.keys import (
    AllTasks,
    ById,
    ByPriority,
    ByStatus,
    CacheKey,
    QueryShape,
    Region,
    Stats,
    TaskFacet,
    invalidation_set,
)
from tasktracker.cache.layer import ResponseCache
from tasktracker.errors import Forbidden, NotFound
from tasktracker.models import (
    Principal,
    Task,
    TaskCreate,
    TaskPriority,
    TaskResponse,
    TaskStats,
    TaskStatus,
    TaskUpdate,
    get_utc_now,
)
from tasktracker.repositories.task_store import TaskStore

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000
NON_NULLABLE_FIELDS = ("title", "status", "priority")


def completion_time(
    old_status: TaskStatus | None,
    new_status: TaskStatus,
    completed_at: datetime | None,
    now: datetime,
) -> datetime | None:
    """completed_at after a transition: stamped on entering DONE, cleared on leaving it."""
    match new_status:
        case TaskStatus.DONE:
            if old_status is TaskStatus.DONE and completed_at is not None:
                return completed_at
            return now
        case TaskStatus.TODO | TaskStatus.IN_PROGRESS:
            return None
        case _:
            assert_never(new_status)


def stats_field(status: TaskStatus) -> str:
    match status:
        case TaskStatus.TODO:
            return "todo_tasks"
        case TaskStatus.IN_PROGRESS:
            return "in_progress_tasks"
        case TaskStatus.DONE:
            return "completed_tasks"
        case _:
            assert_never(status)


def _as_utc(value: datetime) -> datetime:
    # some backends hand back naive datetimes for timestamptz columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def average_completion_hours(tasks: list[Task]) -> float:
    durations_ms = [
        (_as_utc(t.completed_at) - _as_utc(t.created_at)) // timedelta(milliseconds=1)
        for t in tasks
        if t.created_at is not None and t.completed_at is not None
    ]
    if not durations_ms:
        return 0.0
    return sum(durations_ms) / len(durations_ms) / MS_PER_HOUR


def _public(task: Task) -> dict:
    return TaskResponse.model_validate(task).model_dump(mode="json")


class TaskService:
    """
    Owner-scoped task operations with explicit read-through caching.

    The calling principal is passed into every operation. Reads consult the
    response cache under a principal-qualified key; writes hit the store
    first and then evict exactly the keys `invalidation_set` names.
    """

    def __init__(
        self,
        store: TaskStore,
        cache: ResponseCache,
        clock: Callable[[], datetime] = get_utc_now,
    ):
        self.store = store
        self.cache = cache
        self._clock = clock

    # ---- reads ----

    async def _read_list(
        self,
        principal: Principal,
        shape: QueryShape,
        fetch: Callable[[], Awaitable[list[Task]]],
    ) -> list[TaskResponse]:
        async def load():
            return [_public(t) for t in await fetch()]

        rows = await self.cache.get_or_load(
            Region.COLLECTION, CacheKey(principal.name, shape), load
        )
        return [TaskResponse.model_validate(row) for row in rows]

    async def list_all(self, principal: Principal) -> list[TaskResponse]:
        return await self._read_list(
            principal, AllTasks(), lambda: self.store.find_by_owner(principal.id)
        )

    async def list_by_status(
        self, principal: Principal, status: TaskStatus
    ) -> list[TaskResponse]:
        return await self._read_list(
            principal,
            ByStatus(status),
            lambda: self.store.find_by_owner_and_status(principal.id, status),
        )

    async def list_by_priority(
        self, principal: Principal, priority: TaskPriority
    ) -> list[TaskResponse]:
        return await self._read_list(
            principal,
            ByPriority(priority),
            lambda: self.store.find_by_owner_and_priority(principal.id, priority),
        )

    async def get_by_id(self, principal: Principal, task_id: int) -> TaskResponse:
        """
        One task owned by `principal`.

        NotFound and Forbidden are raised from inside the loader, so neither
        outcome is ever cached.
        """

        async def load():
            return _public(await self._owned_task(principal, task_id))

        row = await self.cache.get_or_load(
            Region.ENTITY, CacheKey(principal.name, ById(task_id)), load
        )
        return TaskResponse.model_validate(row)

    async def get_stats(self, principal: Principal) -> TaskStats:
        async def load():
            return (await self._compute_stats(principal)).model_dump(mode="json")

        row = await self.cache.get_or_load(
            Region.STATS, CacheKey(principal.name, Stats()), load
        )
        return TaskStats.model_validate(row)

    async def _compute_stats(self, principal: Principal) -> TaskStats:
        counts: dict[str, int] = {}
        for status in TaskStatus:
            counts[stats_field(status)] = await self.store.count_by_owner_and_status(
                principal.id, status
            )
        total = await self.store.count_by_owner(principal.id)
        completed = await self.store.find_completed_by_owner(principal.id)

        return TaskStats(
            total_tasks=total,
            pending_tasks=total - counts["completed_tasks"],
            average_completion_time_hours=average_completion_hours(completed),
            **counts,
        )

    async def _owned_task(self, principal: Principal, task_id: int) -> Task:
        task = await self.store.find_by_id(task_id)
        if task is None:
            raise NotFound(task_id)
        if task.owner_id != principal.id:
            logger.info(f"Principal {principal.id} denied access to task {task_id}")
            raise Forbidden(task_id)
        return task

    # ---- writes ----
    # Each write runs shielded: once started, an abandoned request can't
    # stop it between the store commit and the evictions.

    async def create(self, principal: Principal, data: TaskCreate) -> TaskResponse:
        return await asyncio.shield(self._create(principal, data))

    async def _create(self, principal: Principal, data: TaskCreate) -> TaskResponse:
        task = Task.model_validate(data, update={"owner_id": principal.id})
        task.completed_at = completion_time(None, task.status, None, self._clock())

        saved = await self.store.save(task)
        await self._invalidate(
            principal, saved.id, None, TaskFacet(saved.status, saved.priority)
        )
        logger.info(f"Created task {saved.id} for principal {principal.id}")
        return TaskResponse.model_validate(saved)

    async def update(
        self, principal: Principal, task_id: int, data: TaskUpdate
    ) -> TaskResponse:
        return await asyncio.shield(self._update(principal, task_id, data))

    async def _update(
        self, principal: Principal, task_id: int, data: TaskUpdate
    ) -> TaskResponse:
        task = await self._owned_task(principal, task_id)
        before = TaskFacet(task.status, task.priority)

        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field not in NON_NULLABLE_FIELDS
        }
        new_status = changes.get("status", task.status)
        task.completed_at = completion_time(
            task.status, new_status, task.completed_at, self._clock()
        )
        task.sqlmodel_update(changes)

        saved = await self.store.save(task)
        await self._invalidate(
            principal, task_id, before, TaskFacet(saved.status, saved.priority)
        )
        return TaskResponse.model_validate(saved)

    async def complete(self, principal: Principal, task_id: int) -> TaskResponse:
        return await self.update(principal, task_id, TaskUpdate(status=TaskStatus.DONE))

    async def delete(self, principal: Principal, task_id: int) -> None:
        await asyncio.shield(self._delete(principal, task_id))

    async def _delete(self, principal: Principal, task_id: int) -> None:
        task = await self._owned_task(principal, task_id)
        before = TaskFacet(task.status, task.priority)
        await self.store.delete(task)
        await self._invalidate(principal, task_id, before, None)
        logger.info(f"Deleted task {task_id} for principal {principal.id}")

    async def _invalidate(
        self,
        principal: Principal,
        task_id: int,
        before: TaskFacet | None,
        after: TaskFacet | None,
    ) -> None:
        keys = invalidation_set(principal.name, task_id, before, after)
        for key in keys:
            await self.cache.evict(key.region, key)
        logger.debug(f"Invalidated {len(keys)} keys after change to task {task_id}")
