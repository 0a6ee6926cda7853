"""Pydantic models and enums for the idea analysis pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class AnalysisStage(str, Enum):
    """Enumerate the analysis stages in execution order."""

    SUMMARY = "summary"
    TARGET_USER = "target_user"
    MARKET_ANALYSIS = "market_analysis"
    STRATEGY = "strategy"
    SCORING = "scoring"

    @property
    def order(self) -> int:
        """Return a human-friendly order index for the stage."""
        stage_order = {
            AnalysisStage.SUMMARY: 1,
            AnalysisStage.TARGET_USER: 2,
            AnalysisStage.MARKET_ANALYSIS: 3,
            AnalysisStage.STRATEGY: 4,
            AnalysisStage.SCORING: 5,
        }
        return stage_order[self]


class Idea(BaseModel):
    """The idea under analysis. Read-only for the duration of a run."""

    model_config = ConfigDict(frozen=True)

    text: str
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def __str__(self) -> str:
        return self.text


class AnalysisRequest(BaseModel):
    """Payload for running the full analysis pipeline."""

    idea: str = Field(
        ...,
        min_length=10,
        description="Idea description supplied by the user.",
    )
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Optional attributes carried along with the idea.",
    )
    follow_up_answers: Dict[str, str] = Field(
        default_factory=dict,
        description="Answers to follow-up questions keyed by question.",
    )


class StageErrorRecord(BaseModel):
    """A stage failure recorded during a run."""

    model_config = ConfigDict(frozen=True)

    stage: AnalysisStage
    message: str
    timestamp: datetime


class AnalysisMetadata(BaseModel):
    """Run-level statistics attached to every composite report."""

    model_config = ConfigDict(frozen=True)

    agents_total: int
    agents_completed: int
    agents_failed: int
    agent_errors: List[StageErrorRecord] = Field(default_factory=list)
    partial_success: bool
    confidence_level: str
    elapsed_seconds: float
    agent_sequence: List[AnalysisStage] = Field(default_factory=list)


class CompositeReport(BaseModel):
    """Flat merge of every stage result plus run metadata.

    Stage fields are not type checked here; each stage shapes its own result.
    """

    model_config = ConfigDict(frozen=True)

    # summary
    summary: Any = None
    core_value: Any = None
    problem_statement: Any = None

    # target_user
    target_users: Any = None
    user_pain_points: Any = None
    user_goals: Any = None

    # market_analysis
    market_analysis: Any = None
    market_opportunities: Any = None
    market_risks: Any = None

    # strategy
    recommendations: Any = None
    actions: Any = None

    # scoring
    score: Any = None
    required_expertise: Any = None

    analyzed_at: datetime
    idea: Idea
    metadata: AnalysisMetadata


class StageDefinition(BaseModel):
    """Expose metadata that describes a stage to the UI."""

    id: AnalysisStage
    label: str
    description: str
