from __future__ import annotations

from typing import Any, Dict, List

import pytest

from idea_analysis.contracts import StageContext, StageExecutionError
from idea_analysis.llm import PromptSpec
from idea_analysis.registry import build_stage_registry
from idea_analysis.schemas import AnalysisStage, Idea
from idea_analysis.stages import (
    MarketAnalysisStage,
    ScoringStage,
    StrategyStage,
    SummaryStage,
    TargetUserStage,
    extract_industry,
    standardize_weak_areas,
)


class StubBackend:
    """Return a canned reply and keep the prompts it was asked."""

    def __init__(self, reply: Dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.reply = reply or {}
        self.error = error
        self.prompts: List[PromptSpec] = []

    def complete(self, spec: PromptSpec) -> Dict[str, Any]:
        self.prompts.append(spec)
        if self.error is not None:
            raise self.error
        return self.reply


def _context(**previous: Dict[str, Any]) -> StageContext:
    return StageContext(
        idea=Idea(text="An online marketplace for refurbished camera gear."),
        follow_up_answers={"target": "hobby photographers", "differentiator": ""},
        previous_results={AnalysisStage(key): value for key, value in previous.items()},
    )


@pytest.mark.parametrize("stage_id", list(AnalysisStage))
def test_fallback_is_well_formed(stage_id: AnalysisStage) -> None:
    stage = build_stage_registry(StubBackend())[stage_id]

    fallback = stage.fallback()

    assert isinstance(fallback, dict) and fallback
    assert "error" not in fallback
    # Each call returns a fresh copy.
    fallback.clear()
    assert stage.fallback()


@pytest.mark.parametrize("stage_id", list(AnalysisStage))
def test_empty_reply_normalizes_to_fallback_shape(stage_id: AnalysisStage) -> None:
    stage = build_stage_registry(StubBackend({}))[stage_id]

    result = stage.execute(_context())

    assert set(result) == set(stage.fallback())


def test_missing_backend_raises_stage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("idea_analysis.stages.get_backend", lambda: None)

    with pytest.raises(StageExecutionError) as excinfo:
        SummaryStage().execute(_context())
    assert excinfo.value.stage is AnalysisStage.SUMMARY


def test_backend_error_is_tagged_with_stage() -> None:
    backend = StubBackend(error=StageExecutionError("LLM returned an empty response."))

    with pytest.raises(StageExecutionError) as excinfo:
        StrategyStage(backend).execute(_context())
    assert excinfo.value.stage is AnalysisStage.STRATEGY


def test_summary_prompt_includes_follow_up_answers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDEA_ANALYSIS_MODEL_SUMMARY", "gpt-4.1-nano")
    backend = StubBackend({"summary": "Camera resale", "core_value": " trust ", "problem_statement": None})

    result = SummaryStage(backend).execute(_context())

    assert result["summary"] == "Camera resale"
    assert result["core_value"] == "trust"
    assert result["problem_statement"] == "Problem statement needs definition."
    [spec] = backend.prompts
    assert spec.model == "gpt-4.1-nano"
    assert "- Target users: hobby photographers" in spec.user_prompt
    assert "Differentiator" not in spec.user_prompt


def test_target_user_validates_personas() -> None:
    backend = StubBackend(
        {
            "target_users": {"primary": "Photographers", "personas": [{"name": "Kim"}, "junk"]},
            "user_pain_points": "not a list",
        }
    )

    result = TargetUserStage(backend).execute(_context(summary={"summary": "Camera resale"}))

    assert result["target_users"]["primary"] == "Photographers"
    assert result["target_users"]["personas"] == [{"name": "Kim", "age_range": "Unknown", "description": ""}]
    assert result["user_pain_points"] == []
    assert "Summary: Camera resale" in backend.prompts[0].user_prompt


def test_market_analysis_prompt_names_industry() -> None:
    backend = StubBackend({"market_analysis": {"potential": "High", "competitors": []}})

    result = MarketAnalysisStage(backend).execute(_context())

    assert "Focus on the E-commerce industry." in backend.prompts[0].user_prompt
    assert result["market_analysis"]["potential"] == "High"
    assert result["market_analysis"]["market_size"] == "Market size needs research."


def test_strategy_invalid_actions_fall_back() -> None:
    backend = StubBackend({"recommendations": {"mvp_features": ["listing"]}, "actions": [1, 2]})
    market = {"market_analysis": {"potential": "High"}, "market_risks": ["fraud"]}

    result = StrategyStage(backend).execute(_context(market_analysis=market))

    assert result["recommendations"]["mvp_features"] == ["listing"]
    assert result["recommendations"]["next_steps"] == ["Plan the next steps."]
    assert result["actions"] == StrategyStage().fallback()["actions"]
    assert "- Risks: fraud" in backend.prompts[0].user_prompt


def test_scoring_clamps_and_standardizes() -> None:
    backend = StubBackend(
        {
            "score": {"overall": "140", "weak_areas": ["weak revenue model", "Revenue model", "branding"]},
            "confidence_level": "low",
        }
    )

    result = ScoringStage(backend).execute(_context())

    assert result["score"]["overall"] == 100
    assert result["score"]["weak_areas"] == ["Revenue model", "branding"]
    assert result["confidence_level"] == "Low"
    assert result["required_expertise"] == ScoringStage().fallback()["required_expertise"]


def test_scoring_rejects_unknown_confidence() -> None:
    result = ScoringStage(StubBackend({"confidence_level": "certain"})).execute(_context())

    assert result["confidence_level"] == "Medium"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("A payment app for freelancers", "Fintech"),
        ("Tutoring sessions for school kids", "Edtech"),
        ("An email client with smart filters", "Startup"),
        ("An AI tool for bookkeeping", "AI"),
        ("Please help writers release books faster", "Startup"),
        ("Pride parade planning for antisocial introverts", "Startup"),
        ("Investment tracking for retirees", "Fintech"),
        ("Weekly meals for busy parents", "Foodtech"),
    ],
)
def test_extract_industry(text: str, expected: str) -> None:
    assert extract_industry(text) == expected


def test_extract_industry_reads_follow_up_answers() -> None:
    assert extract_industry("A new kind of app", {"target": "hospital staff"}) == "Healthtech"


def test_standardize_weak_areas_keeps_three() -> None:
    areas = ["MVP definition", "differentiation", "target definition", "Technical detail"]

    assert standardize_weak_areas(areas) == ["MVP definition", "Differentiation", "Target definition"]
    assert standardize_weak_areas(None) == ["Market analysis", "Technical detail"]


@pytest.mark.parametrize(("overall", "expected"), [(float("inf"), 100), ("-1e999", 0), (float("nan"), 0), (87.9, 87)])
def test_scoring_clamps_extreme_values(overall: Any, expected: int) -> None:
    result = ScoringStage(StubBackend({"score": {"overall": overall}})).execute(_context())

    assert result["score"]["overall"] == expected
