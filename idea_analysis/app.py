"""Application factory for the idea analysis FastAPI backend."""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import configure_logging, get_llm_settings
from .pipeline import AnalysisPipeline
from .routers import analysis


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _resolve_allowed_origins() -> list[str]:
    """Return allowed origins, optionally sourced from an env override."""

    raw = os.getenv("IDEA_ANALYSIS_ALLOWED_ORIGINS")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return DEFAULT_ALLOWED_ORIGINS


def create_app(pipeline: AnalysisPipeline | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance."""
    settings = get_llm_settings()
    configure_logging(settings.log_level)
    app = FastAPI(
        title="Idea Analysis Backend",
        version="0.1.0",
        description="Multi-stage AI analysis of startup ideas.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_resolve_allowed_origins(),
        allow_origin_regex=r"http://localhost:\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.llm_settings = settings
    app.state.pipeline = pipeline or AnalysisPipeline()
    app.include_router(analysis.router)
    return app


app = create_app()
