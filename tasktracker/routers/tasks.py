from fastapi import APIRouter, status

from tasktracker.dependencies import CurrentPrincipal, TaskServiceDep
from tasktracker.models import (
    TaskCreate,
    TaskPriority,
    TaskRequest,
    TaskResponse,
    TaskStats,
    TaskStatus,
    TaskUpdate,
)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskResponse])
async def get_tasks(
    principal: CurrentPrincipal,
    service: TaskServiceDep,
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
):
    """List the caller's tasks, optionally filtered by status or else by priority"""
    if status is not None:
        return await service.list_by_status(principal, status)
    if priority is not None:
        return await service.list_by_priority(principal, priority)
    return await service.list_all(principal)


@router.get("/stats", response_model=TaskStats)
async def get_task_stats(principal: CurrentPrincipal, service: TaskServiceDep):
    return await service.get_stats(principal)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate, principal: CurrentPrincipal, service: TaskServiceDep
):
    """Create a new task"""
    return await service.create(principal, task_data)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: int, principal: CurrentPrincipal, service: TaskServiceDep):
    """Get a specific task by ID"""
    return await service.get_by_id(principal, task_id)


@router.put("/{task_id}", response_model=TaskResponse)
async def replace_task(
    task_id: int,
    task_data: TaskRequest,
    principal: CurrentPrincipal,
    service: TaskServiceDep,
):
    return await service.update(
        principal, task_id, TaskUpdate.model_validate(task_data.model_dump())
    )


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    principal: CurrentPrincipal,
    service: TaskServiceDep,
):
    return await service.update(principal, task_id, task_data)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, principal: CurrentPrincipal, service: TaskServiceDep):
    """Delete a task"""
    await service.delete(principal, task_id)


@router.post("/{task_id}/complete", response_model=TaskResponse)
async def mark_task_complete(
    task_id: int, principal: CurrentPrincipal, service: TaskServiceDep
):
    """Mark a task as completed"""
    return await service.complete(principal, task_id)
