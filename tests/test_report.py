from __future__ import annotations

from datetime import datetime, timezone

from idea_analysis.report import (
    REPORT_FIELDS,
    build_metadata,
    build_report,
    merge_results,
    render_markdown,
    resolve_confidence_level,
)
from idea_analysis.schemas import AnalysisStage, Idea, StageErrorRecord

from fakes import SAMPLE_RESULTS


NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _error(stage: AnalysisStage) -> StageErrorRecord:
    return StageErrorRecord(stage=stage, message="failed", timestamp=NOW)


def test_merge_projects_every_field() -> None:
    merged = merge_results(SAMPLE_RESULTS)

    assert set(merged) == {name for name, _, _ in REPORT_FIELDS}
    assert merged["core_value"] == SAMPLE_RESULTS[AnalysisStage.SUMMARY]["core_value"]
    assert merged["actions"] == SAMPLE_RESULTS[AnalysisStage.STRATEGY]["actions"]


def test_merge_omits_fields_of_missing_stage() -> None:
    outcomes = {stage: result for stage, result in SAMPLE_RESULTS.items() if stage is not AnalysisStage.STRATEGY}

    merged = merge_results(outcomes)

    assert "recommendations" not in merged
    assert "actions" not in merged
    assert merged["score"] == SAMPLE_RESULTS[AnalysisStage.SCORING]["score"]


def test_build_metadata_counts() -> None:
    metadata = build_metadata([_error(AnalysisStage.SUMMARY), _error(AnalysisStage.STRATEGY)], 5, 3.14159)

    assert metadata.agents_total == 5
    assert metadata.agents_completed == 3
    assert metadata.agents_failed == 2
    assert metadata.partial_success is True
    assert metadata.confidence_level == "Medium"
    assert metadata.elapsed_seconds == 3.14
    assert metadata.agent_sequence[0] is AnalysisStage.SUMMARY


def test_build_metadata_clean_run() -> None:
    metadata = build_metadata([], 5, 0.5, confidence_level="High")

    assert metadata.partial_success is False
    assert metadata.agents_completed == 5
    assert metadata.confidence_level == "High"


def test_confidence_ignores_failed_scoring_stage() -> None:
    outcomes = {AnalysisStage.SCORING: {"confidence_level": "Low"}}

    assert resolve_confidence_level(outcomes, []) == "Low"
    assert resolve_confidence_level(outcomes, [_error(AnalysisStage.SCORING)]) == "Medium"
    assert resolve_confidence_level({}, []) == "Medium"


def test_render_markdown_orders_sections() -> None:
    metadata = build_metadata([_error(AnalysisStage.MARKET_ANALYSIS)], 5, 1.0)
    report = build_report(Idea(text="Remote team coaching"), SAMPLE_RESULTS, metadata, NOW)

    markdown = render_markdown(report)

    titles = [line for line in markdown.splitlines() if line.startswith("## ")]
    assert titles == ["## Summary", "## Target users", "## Market analysis", "## Strategy", "## Scoring"]
    assert "**Overall score:** 72/100" in markdown
    assert "Degraded sections: market_analysis" in markdown


def test_render_markdown_skips_empty_sections() -> None:
    outcomes = {AnalysisStage.SUMMARY: SAMPLE_RESULTS[AnalysisStage.SUMMARY]}
    report = build_report(Idea(text="Remote team coaching"), outcomes, build_metadata([], 5, 1.0), NOW)

    markdown = render_markdown(report)

    assert "## Summary" in markdown
    assert "## Strategy" not in markdown
    assert "Degraded" not in markdown


def test_render_markdown_tolerates_unexpected_shapes() -> None:
    outcomes = dict(SAMPLE_RESULTS)
    outcomes[AnalysisStage.SCORING] = {"score": 72, "required_expertise": {"roles": "Developer"}}
    outcomes[AnalysisStage.STRATEGY] = {"recommendations": ["ship"], "actions": "call users"}
    report = build_report(Idea(text="Remote team coaching"), outcomes, build_metadata([], 5, 1.0), NOW)

    markdown = render_markdown(report)

    assert "## Strategy" not in markdown
    assert "**Required roles:** Developer" in markdown
