"""Sequential multi-stage analysis engine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Sequence

from .contracts import (
    AnalysisStageBase,
    StageContext,
    StageExecutionError,
    StructuredResult,
)
from .registry import DEFAULT_REGISTRY, STAGE_SEQUENCE, StageRegistry, resolve_stages
from .report import build_metadata, build_report, resolve_confidence_level
from .schemas import AnalysisStage, CompositeReport, Idea, StageErrorRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
WallClock = Callable[[], datetime]
ProgressCallback = Callable[[AnalysisStage, int], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunAccumulator:
    """State for a single run. Owned by one ``run`` call frame."""

    started_at: float
    outcomes: Dict[AnalysisStage, StructuredResult] = field(default_factory=dict)
    errors: List[StageErrorRecord] = field(default_factory=list)

    def record(self, stage: AnalysisStage, result: StructuredResult) -> None:
        if stage in self.outcomes:
            raise RuntimeError(f"Stage {stage.value} already has a recorded outcome.")
        self.outcomes[stage] = result


def record_stage_error(
    accumulator: RunAccumulator,
    stage: AnalysisStage,
    message: str,
    timestamp: datetime,
) -> StageErrorRecord:
    """Append an error record for *stage* and return it."""

    record = StageErrorRecord(stage=stage, message=message, timestamp=timestamp)
    accumulator.errors.append(record)
    return record


def substitute_fallback(
    accumulator: RunAccumulator,
    stage_id: AnalysisStage,
    stage: AnalysisStageBase,
) -> StructuredResult:
    """Store the stage's fallback result as its outcome."""

    result = dict(stage.fallback())
    accumulator.record(stage_id, result)
    return result


def _error_message(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


class AnalysisPipeline:
    """Run every registered stage in order and merge the results.

    Each stage sees the idea, the follow-up answers, and the results of the
    stages before it. A failing stage is recorded and replaced by its
    fallback so the remaining stages still run; the report metadata is the
    only place the degradation shows.
    """

    def __init__(
        self,
        registry: StageRegistry | None = None,
        *,
        sequence: Sequence[AnalysisStage] = STAGE_SEQUENCE,
        clock: Clock = time.perf_counter,
        now: WallClock = _utcnow,
    ) -> None:
        self._registry = registry if registry is not None else DEFAULT_REGISTRY
        self._sequence = tuple(sequence)
        self._clock = clock
        self._now = now

    @property
    def sequence(self) -> tuple[AnalysisStage, ...]:
        return self._sequence

    def run(
        self,
        idea: Idea | str,
        follow_up_answers: Mapping[str, str] | None = None,
        *,
        on_stage_complete: ProgressCallback | None = None,
    ) -> CompositeReport:
        """Analyse *idea* and return the composite report.

        Raises ``ValueError`` for a missing idea and ``UnknownStageError``
        when the sequence names a stage with no bound implementation. Stage
        failures never propagate.
        """

        if idea is None:
            raise ValueError("An idea is required to run the analysis.")
        if isinstance(idea, str):
            idea = Idea(text=idea)
        answers = dict(follow_up_answers or {})

        # Resolve every binding up front so a broken registry fails before any remote call.
        stages = resolve_stages(self._registry, self._sequence)
        total = len(stages)

        accumulator = RunAccumulator(started_at=self._clock())
        logger.info(
            "[AnalysisPipeline] Starting multi-stage analysis",
            extra={"stage_count": total},
        )

        for position, (stage_id, stage) in enumerate(stages, start=1):
            logger.info("[AnalysisPipeline] Step %d/%d: %s", position, total, stage_id.value)
            self._execute_stage(accumulator, stage_id, stage, idea, answers)
            if on_stage_complete is not None:
                self._notify(on_stage_complete, stage_id, position)

        elapsed = self._clock() - accumulator.started_at
        metadata = build_metadata(
            accumulator.errors,
            total,
            elapsed,
            confidence_level=resolve_confidence_level(accumulator.outcomes, accumulator.errors),
            sequence=self._sequence,
        )
        logger.info(
            "[AnalysisPipeline] Analysis complete. Stages: %d/%d succeeded. Total time: %.2fs",
            metadata.agents_completed,
            total,
            metadata.elapsed_seconds,
            extra={
                "agents_completed": metadata.agents_completed,
                "agents_failed": metadata.agents_failed,
                "elapsed_seconds": metadata.elapsed_seconds,
            },
        )
        return build_report(idea, accumulator.outcomes, metadata, self._now())

    def _execute_stage(
        self,
        accumulator: RunAccumulator,
        stage_id: AnalysisStage,
        stage: AnalysisStageBase,
        idea: Idea,
        answers: Mapping[str, str],
    ) -> None:
        context = StageContext(
            idea=idea,
            follow_up_answers=answers,
            previous_results=accumulator.outcomes,
        )
        stage_start = self._clock()
        try:
            result = stage.execute(context)
            if not isinstance(result, Mapping):
                raise StageExecutionError(
                    f"Stage returned {type(result).__name__} instead of a mapping.",
                    stage=stage_id,
                )
        except StageExecutionError as exc:
            self._fail(accumulator, stage_id, stage, _error_message(exc), stage_start)
            return
        except Exception as exc:
            logger.exception("[AnalysisPipeline] %s raised unexpectedly", stage_id.value)
            self._fail(accumulator, stage_id, stage, _error_message(exc), stage_start)
            return

        accumulator.record(stage_id, dict(result))
        elapsed = self._clock() - stage_start
        logger.info(
            "[AnalysisPipeline] %s completed in %.2fs",
            stage_id.value,
            elapsed,
            extra={"stage": stage_id.value, "elapsed_seconds": round(elapsed, 2), "success": True},
        )

    def _fail(
        self,
        accumulator: RunAccumulator,
        stage_id: AnalysisStage,
        stage: AnalysisStageBase,
        message: str,
        stage_start: float,
    ) -> None:
        elapsed = self._clock() - stage_start
        logger.warning(
            "[AnalysisPipeline] %s failed: %s",
            stage_id.value,
            message,
            extra={"stage": stage_id.value, "elapsed_seconds": round(elapsed, 2), "success": False},
        )
        record_stage_error(accumulator, stage_id, message, self._now())
        substitute_fallback(accumulator, stage_id, stage)

    @staticmethod
    def _notify(callback: ProgressCallback, stage_id: AnalysisStage, position: int) -> None:
        try:
            callback(stage_id, position)
        except Exception:
            logger.exception("[AnalysisPipeline] Progress callback failed for %s", stage_id.value)


def run_analysis(
    idea: Idea | str,
    follow_up_answers: Mapping[str, str] | None = None,
    *,
    on_stage_complete: ProgressCallback | None = None,
) -> CompositeReport:
    """Run the default pipeline."""

    return AnalysisPipeline().run(idea, follow_up_answers, on_stage_complete=on_stage_complete)
