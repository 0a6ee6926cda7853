"""Configuration helpers for the idea analysis backend."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Mapping

from dotenv import load_dotenv

STAGE_MODEL_PREFIX = "IDEA_ANALYSIS_MODEL_"

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_LOG_LEVEL = "INFO"

load_dotenv(override=False)


@dataclass(frozen=True)
class LLMSettings:
    """Settings container for LLM credentials and model selection.

    OpenAI is the only provider the completion backend speaks to. Stage
    models default to ``default_model`` unless overridden per stage.
    """

    openai_api_key: str | None = None
    default_model: str = DEFAULT_MODEL
    stage_models: Dict[str, str] = field(default_factory=dict)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def primary_provider(self) -> str | None:
        """Return the provider stages can call, or ``None`` without credentials."""

        if self.openai_api_key:
            return "openai"
        return None

    def model_for_stage(self, stage: str) -> str:
        """Return the chat model configured for *stage*."""

        return self.stage_models.get(stage, self.default_model)


def _extract_stage_models(environ: Mapping[str, str]) -> Dict[str, str]:
    """Collect per-stage model overrides (``IDEA_ANALYSIS_MODEL_SUMMARY=...``)."""

    models: Dict[str, str] = {}
    for env_key, value in environ.items():
        if env_key.startswith(STAGE_MODEL_PREFIX) and value.strip():
            models[env_key[len(STAGE_MODEL_PREFIX) :].lower()] = value.strip()
    return models


def _parse_timeout(raw: str | None) -> float:
    if not raw:
        return DEFAULT_REQUEST_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_REQUEST_TIMEOUT
    return value if value > 0 else DEFAULT_REQUEST_TIMEOUT


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    """Read environment variables and return cached LLM settings."""

    environ = os.environ
    return LLMSettings(
        openai_api_key=environ.get("OPENAI_API_KEY"),
        default_model=environ.get("IDEA_ANALYSIS_DEFAULT_MODEL") or DEFAULT_MODEL,
        stage_models=_extract_stage_models(environ),
        request_timeout=_parse_timeout(environ.get("IDEA_ANALYSIS_REQUEST_TIMEOUT")),
        log_level=(environ.get("IDEA_ANALYSIS_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
    )


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a stream handler to the package logger once."""

    logger = logging.getLogger("idea_analysis")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    resolved = (level or get_llm_settings().log_level).upper()
    logger.setLevel(getattr(logging, resolved, logging.INFO))
    return logger
