"""
Cache key vocabulary and the invalidation rule for task mutations.

Every key carries the principal name, so one identity can never read rows
cached for another, whatever the query shape.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple
from urllib.parse import quote

from typing_extensions import assert_never

from tasktracker.models import TaskPriority, TaskStatus


class Region(str, Enum):
    COLLECTION = "collection"
    ENTITY = "entity"
    STATS = "stats"


@dataclass(frozen=True)
class AllTasks:
    def token(self) -> str:
        return "all"


@dataclass(frozen=True)
class ByStatus:
    status: TaskStatus

    def token(self) -> str:
        return f"status={self.status.value}"


@dataclass(frozen=True)
class ByPriority:
    priority: TaskPriority

    def token(self) -> str:
        return f"priority={self.priority.value}"


@dataclass(frozen=True)
class ById:
    task_id: int

    def token(self) -> str:
        return f"id={self.task_id}"


@dataclass(frozen=True)
class Stats:
    def token(self) -> str:
        return "stats"


QueryShape = AllTasks | ByStatus | ByPriority | ById | Stats


def region_for(shape: QueryShape) -> Region:
    match shape:
        case AllTasks() | ByStatus() | ByPriority():
            return Region.COLLECTION
        case ById():
            return Region.ENTITY
        case Stats():
            return Region.STATS
        case _:
            assert_never(shape)


@dataclass(frozen=True)
class CacheKey:
    principal: str
    shape: QueryShape

    @property
    def region(self) -> Region:
        return region_for(self.shape)

    def render(self) -> str:
        """Flat string form for the shared tier; the principal is quoted so ':' stays a separator."""
        return f"{quote(self.principal, safe='')}:{self.shape.token()}"


class TaskFacet(NamedTuple):
    """The task attributes that decide which collection keys can hold it."""

    status: TaskStatus
    priority: TaskPriority


def invalidation_set(
    principal: str,
    task_id: int,
    before: TaskFacet | None,
    after: TaskFacet | None,
) -> list[CacheKey]:
    """
    Keys made stale by one mutation of `task_id` owned by `principal`.

    `before` is None for a create and `after` is None for a delete. The
    result is ordered and free of duplicates.
    """
    shapes: list[QueryShape] = [AllTasks()]
    for facet in (before, after):
        if facet is None:
            continue
        shapes.append(ByStatus(facet.status))
        shapes.append(ByPriority(facet.priority))
    shapes.append(ById(task_id))
    shapes.append(Stats())

    keys: list[CacheKey] = []
    for shape in shapes:
        key = CacheKey(principal, shape)
        if key not in keys:
            keys.append(key)
    return keys
