from .parsing import AISuggestion, Parsed, Unparsed, parse_suggestions
from .service import (
    TaskContext,
    categorize_task,
    discard_suggestion,
    generate_task_suggestions,
)
from .vendors import AIServiceError, GenAISettings, VendorKind, load_genai_settings

__all__ = [
    "AISuggestion",
    "AIServiceError",
    "GenAISettings",
    "Parsed",
    "TaskContext",
    "Unparsed",
    "VendorKind",
    "categorize_task",
    "discard_suggestion",
    "generate_task_suggestions",
    "load_genai_settings",
    "parse_suggestions",
]
