import asyncio
import logging
import re
from typing import Any, Sequence

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from tasktracker.core.config import Settings
from tasktracker.errors import AdvisoryUnavailable
from tasktracker.models import TaskPriority, TaskResponse, TaskStatus, TaskSuggestion

logger = logging.getLogger(__name__)

DEFAULT_INSIGHT = (
    "Keep up the great work! Focus on completing high-priority tasks first "
    "to maximize productivity."
)
SUGGESTION_CONTEXT_LIMIT = 10
MAX_SUGGESTIONS = 3
TITLE_LIMIT = 50

PARSE_PROMPT = """Parse the following task description into a structured format.
Input: "{text}"

Extract:
- title: Short task title (max 50 characters)
- description: Detailed description
- priority: LOW, MEDIUM, or HIGH based on urgency keywords

Return ONLY valid JSON in this format:
{{"title": "...", "description": "...", "priority": "MEDIUM"}}

If no clear priority is indicated, default to MEDIUM."""

PRIORITY_PROMPT = """Analyze this task and recommend a priority level.
Title: "{title}"
Description: "{description}"

Consider:
- Urgency keywords (urgent, ASAP, critical, important)
- Time sensitivity (today, tomorrow, deadline)
- Exclamation marks or strong language

Respond with ONLY one word: LOW, MEDIUM, or HIGH"""

SUGGEST_PROMPT = """Based on these recent tasks:
{tasks}

Suggest 3 related or follow-up tasks the user might want to add.
Return ONLY 3 task titles, one per line, without numbers or bullets."""

INSIGHT_PROMPT = """Analyze this task management data and provide a brief productivity insight.

Stats:
- Total tasks: {total}
- Completed tasks: {completed}
- High priority tasks: {high}
- Average completion time: {avg:.1f} hours

Provide a friendly, encouraging insight (2-3 sentences) about their productivity."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")
_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s*")


def strip_fences(text: str) -> str:
    """Drop a surrounding ```json ... ``` block some models insist on."""
    return _FENCE_RE.sub("", text.strip()).strip()


class AdvisoryService:
    """
    Best-effort suggestions from an OpenAI-compatible chat model.

    Never authoritative and never a request failure: every public method
    returns a fixed fallback when the model is unconfigured, slow, down or
    answers with something unusable.
    """

    def __init__(self, client: Any | None, model: str, timeout: float = 10.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdvisoryService":
        client = None
        if settings.openai_api_key:
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                max_retries=0,
            )
        return cls(client, settings.openai_model, settings.advisory_timeout_seconds)

    async def _complete(self, prompt: str) -> str:
        if self.client is None:
            raise AdvisoryUnavailable("no advisory model configured")
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=self.timeout,
            )
        except (openai.OpenAIError, asyncio.TimeoutError) as e:
            raise AdvisoryUnavailable(f"{type(e).__name__}: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise AdvisoryUnavailable("response had no message") from e
        if not content or not content.strip():
            raise AdvisoryUnavailable("empty response")
        return content

    async def parse_task(self, text: str) -> TaskSuggestion:
        fallback = TaskSuggestion(
            title=text[:TITLE_LIMIT], description=text, priority=TaskPriority.MEDIUM
        )
        try:
            raw = await self._complete(PARSE_PROMPT.format(text=text))
            suggestion = TaskSuggestion.model_validate_json(strip_fences(raw))
        except AdvisoryUnavailable as e:
            logger.warning(f"parse_task fell back: {e}")
            return fallback
        except ValidationError as e:
            logger.warning(f"parse_task got malformed output: {e.error_count()} errors")
            return fallback

        if not suggestion.title.strip():
            return fallback
        return suggestion.model_copy(update={"title": suggestion.title[:TITLE_LIMIT]})

    async def recommend_priority(
        self, title: str, description: str | None = None
    ) -> TaskPriority:
        try:
            raw = await self._complete(
                PRIORITY_PROMPT.format(title=title, description=description or "")
            )
        except AdvisoryUnavailable as e:
            logger.warning(f"recommend_priority fell back: {e}")
            return TaskPriority.MEDIUM

        word = raw.strip().strip(".!").upper()
        try:
            return TaskPriority(word)
        except ValueError:
            return TaskPriority.MEDIUM

    async def suggest_tasks(self, tasks: Sequence[TaskResponse]) -> list[str]:
        context = "\n".join(
            f"- {t.title} (Status: {t.status.value})"
            for t in tasks[:SUGGESTION_CONTEXT_LIMIT]
        )
        try:
            raw = await self._complete(SUGGEST_PROMPT.format(tasks=context))
        except AdvisoryUnavailable as e:
            logger.warning(f"suggest_tasks fell back: {e}")
            return []

        lines = (_BULLET_RE.sub("", line.strip()) for line in raw.splitlines())
        return [line for line in lines if line][:MAX_SUGGESTIONS]

    async def productivity_insight(
        self, tasks: Sequence[TaskResponse], average_completion_hours: float
    ) -> str:
        prompt = INSIGHT_PROMPT.format(
            total=len(tasks),
            completed=sum(1 for t in tasks if t.status is TaskStatus.DONE),
            high=sum(1 for t in tasks if t.priority is TaskPriority.HIGH),
            avg=average_completion_hours,
        )
        try:
            return (await self._complete(prompt)).strip()
        except AdvisoryUnavailable as e:
            logger.warning(f"productivity_insight fell back: {e}")
            return DEFAULT_INSIGHT

    async def is_available(self) -> bool:
        try:
            await self._complete("ping")
        except AdvisoryUnavailable:
            return False
        return True
