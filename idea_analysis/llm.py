"""OpenAI-powered JSON completion backend used by the analysis stages."""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol

from openai import APIError, OpenAI

from .config import get_llm_settings
from .contracts import StageExecutionError

FOLLOW_UP_LABELS = {
    "target": "Target users",
    "problem": "Problem to solve",
    "differentiator": "Differentiator",
}

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


@dataclass(frozen=True)
class PromptSpec:
    """Container describing how to call the LLM for a stage."""

    system_prompt: str
    user_prompt: str
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 900


class CompletionBackend(Protocol):
    """Anything that turns a prompt into a parsed JSON object."""

    def complete(self, spec: PromptSpec) -> Dict[str, Any]:
        ...


def _parse_structured_response(raw_text: str) -> Dict[str, Any] | None:
    """Attempt to coerce the model output into a JSON object."""

    text = raw_text.strip()
    match = _FENCED_JSON.search(text)
    if match:
        text = match.group(1).strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class OpenAIBackend:
    """Chat-completions backend returning structured JSON replies."""

    def __init__(self, client: OpenAI) -> None:
        self._client = client

    def complete(self, spec: PromptSpec) -> Dict[str, Any]:
        try:
            response = self._client.chat.completions.create(
                model=spec.model,
                messages=[
                    {"role": "system", "content": spec.system_prompt.strip()},
                    {"role": "user", "content": spec.user_prompt.strip()},
                ],
                temperature=spec.temperature,
                max_tokens=spec.max_tokens,
                response_format={"type": "json_object"},
            )
        except APIError as exc:
            raise StageExecutionError(f"LLM request failed: {exc}") from exc

        message = response.choices[0].message.content if response.choices else None
        if not message:
            raise StageExecutionError("LLM returned an empty response.")
        parsed = _parse_structured_response(message)
        if parsed is None:
            raise StageExecutionError("LLM response was not a JSON object.")
        return parsed


BackendCache = tuple[str, OpenAIBackend]
_backend_cache: BackendCache | None = None
_backend_lock = threading.Lock()


def get_backend() -> OpenAIBackend | None:
    """Return a cached backend when an OpenAI API key is configured."""

    global _backend_cache
    settings = get_llm_settings()
    api_key = settings.openai_api_key
    if not api_key:
        return None
    with _backend_lock:
        if _backend_cache and _backend_cache[0] == api_key:
            return _backend_cache[1]
        backend = OpenAIBackend(OpenAI(api_key=api_key, timeout=settings.request_timeout))
        _backend_cache = (api_key, backend)
        return backend


def _humanize(key: str) -> str:
    return key.replace("_", " ").strip().capitalize()


def follow_up_label(key: str) -> str:
    """Return a readable label for a follow-up question key."""

    return FOLLOW_UP_LABELS.get(key, _humanize(key))


def format_follow_up_answers(answers: Mapping[str, str]) -> str:
    """Render non-blank follow-up answers as a bullet list."""

    lines = [
        f"- {follow_up_label(str(key))}: {value}"
        for key, value in answers.items()
        if value is not None and str(value).strip()
    ]
    return "\n".join(lines)
