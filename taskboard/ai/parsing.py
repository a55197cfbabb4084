"""Best-effort extraction of task suggestions from free-form model output."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from pydantic import BaseModel

from ..models import TaskPriority

logger = logging.getLogger(__name__)

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")
_TITLE_LINE = re.compile(r"title[:\-]?\s*(.+)", re.IGNORECASE)
_NUMBERED_LINE = re.compile(r"^\d+[.)]\s*(.+)")
_DESCRIPTION_PREFIX = re.compile(r"description[:\-]?\s*", re.IGNORECASE)
_PRIORITY_LINE = re.compile(r"priority[:\-]?\s*(low|medium|high)", re.IGNORECASE)
_TAGS_LINE = re.compile(r"tags[:\-]?\s*\[(.+)\]", re.IGNORECASE)


class AISuggestion(BaseModel):
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: List[str] = []


@dataclass(frozen=True)
class Parsed:
    suggestions: List[AISuggestion] = field(default_factory=list)


@dataclass(frozen=True)
class Unparsed:
    reason: str


ParseResult = Union[Parsed, Unparsed]


def normalize_priority(value: Any) -> TaskPriority:
    if isinstance(value, str):
        try:
            return TaskPriority(value.strip().lower())
        except ValueError:
            pass
    return TaskPriority.MEDIUM


def _normalize_tags(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(tag).strip() for tag in value if str(tag).strip()]
    if value:
        return [str(value).strip()]
    return []


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _suggestion_from_item(item: Any) -> Optional[AISuggestion]:
    if not isinstance(item, dict):
        return None
    title = _text(item.get("title")) or _text(item.get("task"))
    if not title:
        return None
    return AISuggestion(
        title=title,
        description=_text(item.get("description")) or _text(item.get("desc")),
        priority=normalize_priority(item.get("priority")),
        tags=_normalize_tags(item.get("tags")),
    )


def parse_json_suggestions(text: str) -> List[AISuggestion]:
    match = _JSON_ARRAY.search(text)
    if not match:
        return []
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    suggestions = (_suggestion_from_item(item) for item in parsed)
    return [suggestion for suggestion in suggestions if suggestion is not None]


def parse_line_suggestions(text: str) -> List[AISuggestion]:
    """Read suggestions written as title / description / priority+tags line triples."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    suggestions = []
    for i in range(0, len(lines), 3):
        title_match = _TITLE_LINE.search(lines[i]) or _NUMBERED_LINE.search(lines[i])
        if not title_match:
            continue
        title = title_match.group(1).strip()
        if not title:
            continue

        description = ""
        if i + 1 < len(lines):
            description = _DESCRIPTION_PREFIX.sub("", lines[i + 1], count=1).strip()

        meta = lines[i + 2] if i + 2 < len(lines) else ""
        priority_match = _PRIORITY_LINE.search(meta)
        tags_match = _TAGS_LINE.search(meta)
        tags = []
        if tags_match:
            tags = [tag.strip() for tag in tags_match.group(1).split(",") if tag.strip()]

        suggestions.append(
            AISuggestion(
                title=title,
                description=description,
                priority=normalize_priority(priority_match.group(1) if priority_match else None),
                tags=tags,
            )
        )
    return suggestions


def parse_suggestions(text: str) -> ParseResult:
    """Parse model output, trying a JSON array first and line triples second.

    Never raises; an empty or unusable response comes back as ``Unparsed``.
    """
    if not text or not text.strip():
        return Unparsed("empty response")

    try:
        suggestions = parse_json_suggestions(text)
        if suggestions:
            return Parsed(suggestions)

        suggestions = parse_line_suggestions(text)
        if suggestions:
            return Parsed(suggestions)
    except Exception as exc:
        logger.warning("ai_parse_failed", extra={"error_type": type(exc).__name__})
        return Unparsed(f"parser error: {type(exc).__name__}")

    return Unparsed("no suggestions found")
