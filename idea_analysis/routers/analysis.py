"""Analysis endpoints for the idea analysis FastAPI backend."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from ..config import get_llm_settings
from ..contracts import UnknownStageError
from ..pipeline import AnalysisPipeline
from ..registry import list_stage_definitions
from ..schemas import AnalysisRequest, CompositeReport, Idea, StageDefinition


router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.get("/health")
async def healthcheck() -> dict[str, str | None]:
    """Simple health check endpoint."""

    return {"status": "ok", "provider": get_llm_settings().primary_provider}


@router.get("/stages", response_model=list[StageDefinition])
async def list_stages() -> list[StageDefinition]:
    """Expose stage metadata to the UI."""

    return list_stage_definitions()


@router.post("/run", response_model=CompositeReport)
async def run_pipeline(payload: AnalysisRequest, request: Request) -> CompositeReport:
    """Run every analysis stage for the submitted idea."""

    pipeline: AnalysisPipeline = request.app.state.pipeline
    idea = Idea(text=payload.idea, attributes=payload.attributes)
    try:
        # Stages block on remote calls; keep them off the event loop.
        return await run_in_threadpool(pipeline.run, idea, payload.follow_up_answers)
    except UnknownStageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
