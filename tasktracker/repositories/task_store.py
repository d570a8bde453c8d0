import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from tasktracker.errors import StorageFailure
from tasktracker.models import Task, TaskPriority, TaskStatus, get_utc_now

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    """Durable CRUD for task rows, always filtered by owner on reads."""

    async def save(self, task: Task) -> Task: ...

    async def find_by_id(self, task_id: int) -> Task | None: ...

    async def find_by_owner(self, owner_id: int) -> list[Task]: ...

    async def find_by_owner_and_status(self, owner_id: int, status: TaskStatus) -> list[Task]: ...

    async def find_by_owner_and_priority(
        self, owner_id: int, priority: TaskPriority
    ) -> list[Task]: ...

    async def find_completed_by_owner(self, owner_id: int) -> list[Task]: ...

    async def count_by_owner(self, owner_id: int) -> int: ...

    async def count_by_owner_and_status(self, owner_id: int, status: TaskStatus) -> int: ...

    async def delete(self, task: Task) -> None: ...


class SqlTaskStore:
    """
    TaskStore on an async SQLModel session.

    Every write commits before returning. Any SQLAlchemy error rolls the
    session back and surfaces as StorageFailure; there is no retry here.
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = get_utc_now):
        self.db = db
        self._clock = clock

    @asynccontextmanager
    async def _guard(self, action: str, rollback: bool = False):
        try:
            yield
        except SQLAlchemyError as e:
            if rollback:
                await self.db.rollback()
            logger.error(f"Task store {action} failed: {e}")
            raise StorageFailure(f"task {action} failed") from e

    async def save(self, task: Task) -> Task:
        if task.id is None and task.created_at is None:
            task.created_at = self._clock()
        async with self._guard("save", rollback=True):
            self.db.add(task)
            await self.db.commit()
            await self.db.refresh(task)
        return task

    async def find_by_id(self, task_id: int) -> Task | None:
        async with self._guard("lookup"):
            return await self.db.get(Task, task_id)

    async def _list(self, *conditions) -> list[Task]:
        query = (
            select(Task)
            .where(*conditions)
            .order_by(col(Task.created_at).desc(), col(Task.id).desc())
        )
        async with self._guard("query"):
            result = await self.db.exec(query)
            return list(result.all())

    async def find_by_owner(self, owner_id: int) -> list[Task]:
        return await self._list(Task.owner_id == owner_id)

    async def find_by_owner_and_status(self, owner_id: int, status: TaskStatus) -> list[Task]:
        return await self._list(Task.owner_id == owner_id, Task.status == status)

    async def find_by_owner_and_priority(
        self, owner_id: int, priority: TaskPriority
    ) -> list[Task]:
        return await self._list(Task.owner_id == owner_id, Task.priority == priority)

    async def find_completed_by_owner(self, owner_id: int) -> list[Task]:
        return await self._list(
            Task.owner_id == owner_id,
            Task.status == TaskStatus.DONE,
            col(Task.completed_at).is_not(None),
        )

    async def _count(self, *conditions) -> int:
        async with self._guard("count"):
            result = await self.db.exec(select(func.count(col(Task.id))).where(*conditions))
            return result.one()

    async def count_by_owner(self, owner_id: int) -> int:
        return await self._count(Task.owner_id == owner_id)

    async def count_by_owner_and_status(self, owner_id: int, status: TaskStatus) -> int:
        return await self._count(Task.owner_id == owner_id, Task.status == status)

    async def delete(self, task: Task) -> None:
        async with self._guard("delete", rollback=True):
            await self.db.delete(task)
            await self.db.commit()
