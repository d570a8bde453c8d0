from fastapi import APIRouter, HTTPException, status

from tasktracker.dependencies import AdvisoryDep, CurrentPrincipal, TaskServiceDep
from tasktracker.models import (
    AdvisoryStatus,
    NaturalLanguageTaskRequest,
    PriorityRecommendation,
    ProductivityInsight,
    TaskSuggestion,
    TaskSuggestions,
)

router = APIRouter(prefix="/api/ai", tags=["ai"])

EMPTY_HISTORY_INSIGHT = (
    "Based on your task patterns, here are some suggestions to help you stay organized."
)


@router.post("/parse-task", response_model=TaskSuggestion)
async def parse_task(
    request: NaturalLanguageTaskRequest, _: CurrentPrincipal, advisory: AdvisoryDep
):
    """Turn free text into suggested task fields"""
    if not request.text.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Text field is required"
        )
    return await advisory.parse_task(request.text.strip())


@router.get("/suggestions", response_model=TaskSuggestions)
async def get_suggestions(
    principal: CurrentPrincipal, service: TaskServiceDep, advisory: AdvisoryDep
):
    tasks = await service.list_all(principal)
    suggestions = await advisory.suggest_tasks(tasks)
    insight = EMPTY_HISTORY_INSIGHT
    if tasks:
        stats = await service.get_stats(principal)
        insight = await advisory.productivity_insight(
            tasks, stats.average_completion_time_hours
        )
    return TaskSuggestions(suggestions=suggestions, insight=insight)


@router.get("/recommend-priority", response_model=PriorityRecommendation)
async def recommend_priority(
    title: str,
    _: CurrentPrincipal,
    advisory: AdvisoryDep,
    description: str | None = None,
):
    priority = await advisory.recommend_priority(title, description)
    return PriorityRecommendation(recommended_priority=priority, title=title)


@router.get("/productivity-insight", response_model=ProductivityInsight)
async def productivity_insight(
    principal: CurrentPrincipal, service: TaskServiceDep, advisory: AdvisoryDep
):
    tasks = await service.list_all(principal)
    stats = await service.get_stats(principal)
    insight = await advisory.productivity_insight(
        tasks, stats.average_completion_time_hours
    )
    return ProductivityInsight(insight=insight)


@router.get("/status", response_model=AdvisoryStatus)
async def advisory_status(_: CurrentPrincipal, advisory: AdvisoryDep):
    return AdvisoryStatus(
        available=await advisory.is_available(),
        provider="OpenAI",
        model=advisory.model,
    )
