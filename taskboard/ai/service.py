import json
import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..models import TaskPriority
from .parsing import AISuggestion, Unparsed, normalize_priority, parse_suggestions
from .vendors import (
    AIServiceConfigError,
    AIServiceError,
    AIServiceInvalidResponseError,
    AIServiceTimeoutError,
    GenAISettings,
    get_adapter,
    load_genai_settings,
)

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5
MAX_CONTEXT_TASKS = 10
MAX_COMMON_TAGS = 5
MAX_FALLBACK_SUGGESTIONS = 3

_WORK_WORDS = re.compile(r"\b(work|job|office|meeting|project|deadline)\b")
_PERSONAL_WORDS = re.compile(r"\b(personal|family|home|health|wellness)\b")


@dataclass
class TaskContext:
    """The slice of a task the prompt builder looks at."""
    title: str
    description: str = ""
    tags: List[str] = field(default_factory=list)


# -------------------------
# Prompt
# -------------------------

def extract_common_tags(tasks: Sequence[TaskContext], limit: int = MAX_COMMON_TAGS) -> List[str]:
    counts = Counter(tag for task in tasks for tag in task.tags)
    return [tag for tag, _ in counts.most_common(limit)]


def analyze_task_themes(tasks: Sequence[TaskContext]) -> List[str]:
    text = " ".join(f"{task.title} {task.description}" for task in tasks).lower()
    themes = []
    if _WORK_WORDS.search(text):
        themes.append("work")
    if _PERSONAL_WORDS.search(text):
        themes.append("personal")
    return themes


def _describe_task(task: TaskContext) -> str:
    line = f"- {task.title}"
    if task.description:
        line += f": {task.description}"
    if task.tags:
        line += f" [{', '.join(task.tags)}]"
    return line


def build_suggestion_prompt(tasks: Sequence[TaskContext], user_context: Optional[str] = None) -> str:
    task_lines = "\n".join(_describe_task(task) for task in tasks[:MAX_CONTEXT_TASKS])
    themes = analyze_task_themes(tasks)
    common_tags = extract_common_tags(tasks)
    context_line = f"User context: {user_context}" if user_context else ""

    return f"""Based on the user's existing tasks, suggest 3-5 relevant new tasks that would help them be more productive and organized.

Existing tasks:
{task_lines or 'No existing tasks'}

Common themes: {', '.join(themes) or 'general'}
Common tags: {', '.join(common_tags) or 'none'}

{context_line}

Please provide suggestions in the following JSON format:
[
  {{
    "title": "Task title",
    "description": "Brief description",
    "priority": "low|medium|high",
    "tags": ["tag1", "tag2"]
  }}
]

Make the suggestions:
- Relevant to their existing work patterns
- Actionable and specific
- Varied in priority levels
- Include appropriate tags"""


# -------------------------
# Vendor call
# -------------------------

def _send(request, adapter, client: httpx.Client) -> str:
    try:
        response = client.post(
            request.url,
            params=request.params or None,
            headers=request.headers,
            json=request.body,
        )
    except httpx.TimeoutException as exc:
        raise AIServiceTimeoutError("GenAI API timeout") from exc
    except UnicodeEncodeError as exc:
        raise AIServiceConfigError("GenAI API credentials or headers are not ASCII") from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise AIServiceError(f"GenAI API transport failure: {type(exc).__name__}") from exc

    if response.is_error:
        raise AIServiceError(f"GenAI API error: {response.status_code} - {response.text[:200]}")

    try:
        raw = response.json()
    except ValueError as exc:
        raise AIServiceInvalidResponseError("GenAI API returned a non-JSON body") from exc

    return adapter.parse_response(raw)


def call_genai_api(
    prompt: str,
    settings: Optional[GenAISettings] = None,
    client: Optional[httpx.Client] = None,
) -> str:
    """Send one prompt to the configured vendor and return the generated text."""
    settings = settings or load_genai_settings()
    if not settings.api_key:
        raise AIServiceConfigError("GENAI_API_KEY is not configured")

    adapter = get_adapter(settings)
    request = adapter.build_request(prompt)

    logger.info("ai_request_started", extra={"provider": settings.provider.value})
    start = time.time()

    if client is None:
        with httpx.Client(timeout=settings.timeout) as owned_client:
            text = _send(request, adapter, owned_client)
    else:
        text = _send(request, adapter, client)

    logger.info(
        "ai_request_succeeded",
        extra={
            "provider": settings.provider.value,
            "elapsed_seconds": round(time.time() - start, 3),
        },
    )
    return text


# -------------------------
# Suggestions
# -------------------------

def fallback_suggestions(themes: Sequence[str]) -> List[AISuggestion]:
    suggestions = []

    if "work" in themes:
        suggestions.append(AISuggestion(
            title="Review weekly goals",
            description="Take time to review and adjust your weekly objectives",
            priority=TaskPriority.MEDIUM,
            tags=["work", "planning"],
        ))

    if "personal" in themes:
        suggestions.append(AISuggestion(
            title="Schedule personal time",
            description="Block time for self-care and relaxation",
            priority=TaskPriority.HIGH,
            tags=["personal", "wellness"],
        ))

    suggestions.append(AISuggestion(
        title="Review and prioritize tasks",
        description="Take a moment to review your task list and prioritize",
        priority=TaskPriority.MEDIUM,
        tags=["planning", "review"],
    ))

    return suggestions[:MAX_FALLBACK_SUGGESTIONS]


def generate_task_suggestions(
    existing_tasks: Sequence[TaskContext],
    user_context: Optional[str] = None,
    *,
    settings: Optional[GenAISettings] = None,
    client: Optional[httpx.Client] = None,
) -> List[AISuggestion]:
    """Propose up to five new tasks based on the user's existing ones.

    Vendor failures and unusable responses are not errors here: the caller
    always gets a non-empty list, falling back to theme-based suggestions.
    """
    themes = analyze_task_themes(existing_tasks)

    try:
        prompt = build_suggestion_prompt(existing_tasks, user_context)
        text = call_genai_api(prompt, settings=settings, client=client)
    except AIServiceError as exc:
        logger.warning(
            "ai_suggestions_fallback",
            extra={"error_type": type(exc).__name__, "reason": str(exc)},
        )
        return fallback_suggestions(themes)

    result = parse_suggestions(text)
    if isinstance(result, Unparsed):
        logger.warning("ai_suggestions_unparsed", extra={"reason": result.reason})
        return fallback_suggestions(themes)

    return result.suggestions[:MAX_SUGGESTIONS]


def discard_suggestion(suggestions: Sequence[AISuggestion], accepted_title: str) -> List[AISuggestion]:
    """Drop an accepted suggestion from a transient list, matching on title only."""
    return [suggestion for suggestion in suggestions if suggestion.title != accepted_title]


# -------------------------
# Categorization
# -------------------------

_URGENT_WORDS = re.compile(r"\b(urgent|asap|important|critical)\b")
_CATEGORY_WORDS = (
    ("work", re.compile(r"\b(work|job|office|meeting|project)\b")),
    ("personal", re.compile(r"\b(personal|family|home|health)\b")),
    ("shopping", re.compile(r"\b(shopping|buy|purchase)\b")),
    ("learning", re.compile(r"\b(learn|study|read|course)\b")),
)
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def categorize_task_fallback(title: str, description: str) -> Dict[str, Any]:
    text = f"{title} {description}".lower()
    tags = []
    priority = TaskPriority.MEDIUM

    if _URGENT_WORDS.search(text):
        priority = TaskPriority.HIGH
        tags.append("urgent")

    for tag, pattern in _CATEGORY_WORDS:
        if pattern.search(text):
            tags.append(tag)

    if not tags:
        tags.append("general")

    return {"tags": tags, "priority": priority}


def categorize_task(
    title: str,
    description: str = "",
    *,
    settings: Optional[GenAISettings] = None,
    client: Optional[httpx.Client] = None,
) -> Dict[str, Any]:
    """Ask the vendor for tags and a priority, falling back to keyword rules."""
    prompt = f"""Categorize this task and determine its priority:

Title: {title}
Description: {description}

Return a JSON object with:
{{
  "tags": ["tag1", "tag2"],
  "priority": "low|medium|high"
}}"""

    try:
        text = call_genai_api(prompt, settings=settings, client=client)
    except AIServiceError as exc:
        logger.warning("ai_categorize_fallback", extra={"error_type": type(exc).__name__})
        return categorize_task_fallback(title, description)

    match = _JSON_OBJECT.search(text)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            tags = parsed.get("tags")
            return {
                "tags": [str(tag) for tag in tags] if isinstance(tags, list) else [],
                "priority": normalize_priority(parsed.get("priority")),
            }

    logger.warning("ai_categorize_unparsed")
    return categorize_task_fallback(title, description)
