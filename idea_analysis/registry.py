"""Fixed stage sequence and the stage instances bound to it."""

from __future__ import annotations

from typing import Dict, List, Mapping, Tuple

from .contracts import AnalysisStageBase, UnknownStageError
from .llm import CompletionBackend
from .schemas import AnalysisStage, StageDefinition
from .stages import MarketAnalysisStage, ScoringStage, StrategyStage, SummaryStage, TargetUserStage

STAGE_SEQUENCE: Tuple[AnalysisStage, ...] = (
    AnalysisStage.SUMMARY,
    AnalysisStage.TARGET_USER,
    AnalysisStage.MARKET_ANALYSIS,
    AnalysisStage.STRATEGY,
    AnalysisStage.SCORING,
)

StageRegistry = Mapping[AnalysisStage, AnalysisStageBase]


def build_stage_registry(backend: CompletionBackend | None = None) -> Dict[AnalysisStage, AnalysisStageBase]:
    """Bind every stage identifier to a stage instance.

    Stages resolve the configured OpenAI backend lazily when *backend* is
    omitted, so building the registry never needs credentials.
    """

    stages: List[AnalysisStageBase] = [
        SummaryStage(backend),
        TargetUserStage(backend),
        MarketAnalysisStage(backend),
        StrategyStage(backend),
        ScoringStage(backend),
    ]
    return {stage.stage: stage for stage in stages}


def resolve_stages(
    registry: StageRegistry,
    sequence: Tuple[AnalysisStage, ...] = STAGE_SEQUENCE,
) -> List[Tuple[AnalysisStage, AnalysisStageBase]]:
    """Pair each identifier in *sequence* with its bound stage, in order."""

    resolved = []
    for stage_id in sequence:
        stage = registry.get(stage_id)
        if stage is None:
            raise UnknownStageError(stage_id)
        resolved.append((stage_id, stage))
    return resolved


DEFAULT_REGISTRY: Dict[AnalysisStage, AnalysisStageBase] = build_stage_registry()


def list_stage_definitions() -> List[StageDefinition]:
    """Return UI-friendly descriptors for all stages."""

    return [
        StageDefinition(id=stage_id, label=stage.label, description=stage.description)
        for stage_id, stage in resolve_stages(DEFAULT_REGISTRY)
    ]
