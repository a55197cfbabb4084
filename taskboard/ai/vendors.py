"""Request/response shapes for the supported text-generation vendors.

Each adapter knows how to turn a prompt into an HTTP request and how to pull
the generated text back out of the vendor's JSON body. Which adapter is used
is decided by ``GENAI_PROVIDER``, never by looking at the key or the URL.
"""

from __future__ import annotations

import enum
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful task management assistant. "
    "Generate task suggestions in JSON format."
)
TEMPERATURE = 0.7
MAX_TOKENS = 1000


class AIServiceError(Exception):
    pass


class AIServiceConfigError(AIServiceError):
    pass


class AIServiceTimeoutError(AIServiceError):
    pass


class AIServiceInvalidResponseError(AIServiceError):
    pass


class VendorKind(str, enum.Enum):
    CHAT_COMPLETION = "chat_completion"
    GEMINI = "gemini"
    GENERIC = "generic"


@dataclass(frozen=True)
class GenAISettings:
    provider: VendorKind = VendorKind.CHAT_COMPLETION
    api_key: Optional[str] = None
    api_url: Optional[str] = None
    model: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0


def _parse_extra_headers(raw: Optional[str]) -> Dict[str, str]:
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("genai_headers_invalid_json")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("genai_headers_not_an_object")
        return {}

    headers = {}
    for key, value in parsed.items():
        key, value = str(key), str(value)
        if not (key.isascii() and value.isascii()):
            # HTTP header fields are ASCII only
            logger.warning("genai_header_dropped", extra={"reason": f"non-ASCII header {key!r}"})
            continue
        headers[key] = value
    return headers


def load_genai_settings() -> GenAISettings:
    """Read vendor settings from the environment at call time."""
    raw_provider = os.getenv("GENAI_PROVIDER", VendorKind.CHAT_COMPLETION.value).strip().lower()
    try:
        provider = VendorKind(raw_provider)
    except ValueError:
        raise AIServiceConfigError(f"Unknown GENAI_PROVIDER: {raw_provider!r}")

    try:
        timeout = float(os.getenv("GENAI_TIMEOUT_SECONDS", "30"))
    except ValueError:
        timeout = 30.0

    return GenAISettings(
        provider=provider,
        api_key=os.getenv("GENAI_API_KEY") or None,
        api_url=os.getenv("GENAI_API_URL") or None,
        model=os.getenv("GENAI_MODEL") or None,
        extra_headers=_parse_extra_headers(os.getenv("GENAI_API_HEADERS")),
        timeout=timeout,
    )


@dataclass(frozen=True)
class VendorRequest:
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    params: Dict[str, str] = field(default_factory=dict)


def _dig(data: Any, *path: Any) -> Any:
    """Follow keys/indexes into nested JSON, returning None on any miss."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
        if current is None:
            return None
    return current


def _first_text(*candidates: Any) -> str:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate
    return ""


class VendorAdapter(ABC):
    kind: VendorKind

    def __init__(self, settings: GenAISettings):
        self.settings = settings

    def _headers(self, bearer: bool = True) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if bearer:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        headers.update(self.settings.extra_headers)
        return headers

    @abstractmethod
    def build_request(self, prompt: str) -> VendorRequest:
        ...

    @abstractmethod
    def parse_response(self, raw: Any) -> str:
        ...


class ChatCompletionAdapter(VendorAdapter):
    """OpenAI-style ``/chat/completions``."""

    kind = VendorKind.CHAT_COMPLETION
    default_url = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-3.5-turbo"

    def build_request(self, prompt: str) -> VendorRequest:
        return VendorRequest(
            url=self.settings.api_url or self.default_url,
            headers=self._headers(),
            body={
                "model": self.settings.model or self.default_model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": TEMPERATURE,
                "max_tokens": MAX_TOKENS,
            },
        )

    def parse_response(self, raw: Any) -> str:
        return _first_text(
            _dig(raw, "choices", 0, "message", "content"),
            _dig(raw, "choices", 0, "text"),
        )


class GeminiAdapter(VendorAdapter):
    """Google ``generateContent``: a single prompt split into parts, key in the query string."""

    kind = VendorKind.GEMINI
    default_model = "gemini-pro"
    url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def build_request(self, prompt: str) -> VendorRequest:
        model = self.settings.model or self.default_model
        return VendorRequest(
            url=self.settings.api_url or self.url_template.format(model=model),
            headers=self._headers(bearer=False),
            params={"key": self.settings.api_key or ""},
            body={
                "contents": [{"parts": [{"text": f"{SYSTEM_PROMPT}\n\n{prompt}"}]}],
                "generationConfig": {
                    "temperature": TEMPERATURE,
                    "maxOutputTokens": MAX_TOKENS,
                },
            },
        )

    def parse_response(self, raw: Any) -> str:
        return _first_text(
            _dig(raw, "candidates", 0, "content", "parts", 0, "text"),
            _dig(raw, "candidates", 0, "content", "text"),
            _dig(raw, "text"),
        )


class GenericAdapter(VendorAdapter):
    """Plain ``{prompt} -> {text|content|response}`` endpoints."""

    kind = VendorKind.GENERIC
    default_model = "default"

    def build_request(self, prompt: str) -> VendorRequest:
        if not self.settings.api_url:
            raise AIServiceConfigError("GENAI_API_URL is required for the generic provider")
        return VendorRequest(
            url=self.settings.api_url,
            headers=self._headers(),
            body={
                "prompt": prompt,
                "model": self.settings.model or self.default_model,
                "max_tokens": MAX_TOKENS,
                "temperature": TEMPERATURE,
            },
        )

    def parse_response(self, raw: Any) -> str:
        text = _first_text(_dig(raw, "text"), _dig(raw, "content"), _dig(raw, "response"))
        return text or json.dumps(raw)


_ADAPTERS = {
    VendorKind.CHAT_COMPLETION: ChatCompletionAdapter,
    VendorKind.GEMINI: GeminiAdapter,
    VendorKind.GENERIC: GenericAdapter,
}


def get_adapter(settings: GenAISettings) -> VendorAdapter:
    return _ADAPTERS[settings.provider](settings)
