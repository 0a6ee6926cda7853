"""Stage contract shared by the pipeline engine and every analysis stage."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping

from .schemas import AnalysisStage, Idea

StructuredResult = Dict[str, Any]


class StageExecutionError(Exception):
    """Raised by a stage that cannot produce a result.

    Recoverable: the engine records it and substitutes the stage fallback.
    """

    def __init__(self, message: str, stage: AnalysisStage | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage


class UnknownStageError(LookupError):
    """Raised when the sequence names a stage with no bound implementation."""

    def __init__(self, stage: object) -> None:
        super().__init__(f"Unknown analysis stage: {stage!r}")
        self.stage = stage


def _freeze(results: Mapping[AnalysisStage, StructuredResult]) -> Mapping[AnalysisStage, StructuredResult]:
    # Stages get their own copies so an earlier result cannot be edited in place.
    return MappingProxyType(copy.deepcopy(dict(results)))


@dataclass(frozen=True)
class StageContext:
    """Bundle together the run inputs and the results recorded so far.

    ``previous_results`` only ever holds stages that already ran, real
    result or fallback alike.
    """

    idea: Idea
    follow_up_answers: Mapping[str, str] = field(default_factory=dict)
    previous_results: Mapping[AnalysisStage, StructuredResult] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "follow_up_answers", MappingProxyType(dict(self.follow_up_answers)))
        object.__setattr__(self, "previous_results", _freeze(self.previous_results))

    def result_for(self, stage: AnalysisStage) -> StructuredResult:
        """Return the recorded result for *stage*, or an empty dict."""

        return self.previous_results.get(stage) or {}


class AnalysisStageBase(ABC):
    """Interface every analysis stage satisfies."""

    stage: AnalysisStage
    label: str = ""
    description: str = ""

    @abstractmethod
    def execute(self, context: StageContext) -> StructuredResult:
        """Produce this stage's result or raise :class:`StageExecutionError`."""

    @abstractmethod
    def fallback(self) -> StructuredResult:
        """Return neutral values for this stage. Must not fail or call out."""
