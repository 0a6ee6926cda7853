"""Merge per-stage results into the composite report and render it."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .contracts import StructuredResult
from .registry import STAGE_SEQUENCE
from .schemas import AnalysisMetadata, AnalysisStage, CompositeReport, Idea, StageErrorRecord

DEFAULT_CONFIDENCE_LEVEL = "Medium"

# Report field -> (owning stage, key inside that stage's result).
REPORT_FIELDS: Tuple[Tuple[str, AnalysisStage, str], ...] = (
    ("summary", AnalysisStage.SUMMARY, "summary"),
    ("core_value", AnalysisStage.SUMMARY, "core_value"),
    ("problem_statement", AnalysisStage.SUMMARY, "problem_statement"),
    ("target_users", AnalysisStage.TARGET_USER, "target_users"),
    ("user_pain_points", AnalysisStage.TARGET_USER, "user_pain_points"),
    ("user_goals", AnalysisStage.TARGET_USER, "user_goals"),
    ("market_analysis", AnalysisStage.MARKET_ANALYSIS, "market_analysis"),
    ("market_opportunities", AnalysisStage.MARKET_ANALYSIS, "market_opportunities"),
    ("market_risks", AnalysisStage.MARKET_ANALYSIS, "market_risks"),
    ("recommendations", AnalysisStage.STRATEGY, "recommendations"),
    ("actions", AnalysisStage.STRATEGY, "actions"),
    ("score", AnalysisStage.SCORING, "score"),
    ("required_expertise", AnalysisStage.SCORING, "required_expertise"),
)


def merge_results(outcomes: Mapping[AnalysisStage, StructuredResult]) -> Dict[str, Any]:
    """Project the per-stage result map onto the flat report fields.

    A field whose owning stage has no recorded result is left out.
    """

    merged: Dict[str, Any] = {}
    for field_name, stage, key in REPORT_FIELDS:
        result = outcomes.get(stage)
        if result is None:
            continue
        merged[field_name] = result.get(key)
    return merged


def resolve_confidence_level(
    outcomes: Mapping[AnalysisStage, StructuredResult],
    errors: Iterable[StageErrorRecord],
) -> str:
    """Use the scoring stage's label unless that stage failed."""

    if any(error.stage is AnalysisStage.SCORING for error in errors):
        return DEFAULT_CONFIDENCE_LEVEL
    scoring = outcomes.get(AnalysisStage.SCORING) or {}
    label = scoring.get("confidence_level")
    if isinstance(label, str) and label.strip():
        return label.strip()
    return DEFAULT_CONFIDENCE_LEVEL


def build_metadata(
    errors: Sequence[StageErrorRecord],
    total_stages: int,
    elapsed_seconds: float,
    *,
    confidence_level: str | None = None,
    sequence: Sequence[AnalysisStage] = STAGE_SEQUENCE,
) -> AnalysisMetadata:
    """Compute the run-level statistics attached to a report."""

    failed = len(errors)
    return AnalysisMetadata(
        agents_total=total_stages,
        agents_completed=total_stages - failed,
        agents_failed=failed,
        agent_errors=list(errors),
        partial_success=failed > 0,
        confidence_level=confidence_level or DEFAULT_CONFIDENCE_LEVEL,
        elapsed_seconds=round(max(elapsed_seconds, 0.0), 2),
        agent_sequence=list(sequence),
    )


def build_report(
    idea: Idea,
    outcomes: Mapping[AnalysisStage, StructuredResult],
    metadata: AnalysisMetadata,
    analyzed_at: datetime,
) -> CompositeReport:
    """Assemble the immutable composite report."""

    return CompositeReport(
        **merge_results(outcomes),
        analyzed_at=analyzed_at,
        idea=idea,
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Markdown export
# ---------------------------------------------------------------------------


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value] if value else []


def _bullet_list(items: Any) -> str:
    return "\n".join(f"- {item}" for item in _as_list(items) if item)


def _format_summary(report: CompositeReport) -> str:
    lines = []
    if report.summary:
        lines.append(str(report.summary))
    if report.core_value:
        lines.append(f"**Core value:** {report.core_value}")
    if report.problem_statement:
        lines.append(f"**Problem:** {report.problem_statement}")
    return "\n\n".join(lines)


def _format_target_users(report: CompositeReport) -> str:
    target_users = _as_dict(report.target_users)
    parts = []
    if target_users.get("primary"):
        parts.append(f"**Primary users:** {target_users['primary']}")
    personas = [
        f"{persona.get('name', 'Persona')} ({persona.get('age_range', 'Unknown')}): {persona.get('description', '')}"
        for persona in _as_list(target_users.get("personas"))
        if isinstance(persona, dict)
    ]
    if personas:
        parts.append("**Personas**\n" + _bullet_list(personas))
    if report.user_pain_points:
        parts.append("**Pain points**\n" + _bullet_list(report.user_pain_points))
    if report.user_goals:
        parts.append("**Goals**\n" + _bullet_list(report.user_goals))
    return "\n\n".join(parts)


def _format_market(report: CompositeReport) -> str:
    analysis = _as_dict(report.market_analysis)
    parts = [
        f"**{label}:** {analysis[key]}"
        for key, label in (
            ("potential", "Potential"),
            ("market_size", "Market size"),
            ("trends", "Trends"),
            ("differentiation", "Differentiation"),
        )
        if analysis.get(key)
    ]
    if analysis.get("competitors"):
        parts.append("**Competitors**\n" + _bullet_list(analysis["competitors"]))
    if report.market_opportunities:
        parts.append("**Opportunities**\n" + _bullet_list(report.market_opportunities))
    if report.market_risks:
        parts.append("**Risks**\n" + _bullet_list(report.market_risks))
    return "\n\n".join(parts)


def _format_strategy(report: CompositeReport) -> str:
    recommendations = _as_dict(report.recommendations)
    parts = [
        f"**{label}**\n" + _bullet_list(recommendations[key])
        for key, label in (
            ("mvp_features", "MVP features"),
            ("challenges", "Challenges"),
            ("next_steps", "Next steps"),
        )
        if recommendations.get(key)
    ]
    actions = [
        f"{action.get('title', 'Action')}: {action.get('description', '')}"
        for action in _as_list(report.actions)
        if isinstance(action, dict)
    ]
    if actions:
        parts.append("**Actions**\n" + _bullet_list(actions))
    return "\n\n".join(parts)


def _format_scoring(report: CompositeReport) -> str:
    score = _as_dict(report.score)
    parts = []
    if score.get("overall") is not None:
        parts.append(f"**Overall score:** {score['overall']}/100")
    for key, label in (
        ("strong_areas", "Strong areas"),
        ("weak_areas", "Weak areas"),
        ("improvement_tips", "Improvement tips"),
    ):
        if score.get(key):
            parts.append(f"**{label}**\n" + _bullet_list(score[key]))
    expertise = _as_dict(report.required_expertise)
    if expertise.get("roles"):
        parts.append("**Required roles:** " + ", ".join(str(role) for role in _as_list(expertise["roles"])))
    if expertise.get("description"):
        parts.append(str(expertise["description"]))
    return "\n\n".join(parts)


MARKDOWN_SECTIONS = (
    ("Summary", _format_summary),
    ("Target users", _format_target_users),
    ("Market analysis", _format_market),
    ("Strategy", _format_strategy),
    ("Scoring", _format_scoring),
)


def render_markdown(report: CompositeReport) -> str:
    """Render the report as markdown, one section per stage in stage order."""

    sections: List[str] = []
    for title, formatter in MARKDOWN_SECTIONS:
        body = formatter(report).strip()
        if body:
            sections.append(f"## {title}\n\n{body}")

    metadata = report.metadata
    footer = (
        f"_Stages: {metadata.agents_completed}/{metadata.agents_total} succeeded. "
        f"Confidence: {metadata.confidence_level}._"
    )
    if metadata.partial_success:
        failed = ", ".join(error.stage.value for error in metadata.agent_errors)
        footer += f"\n_Degraded sections: {failed}._"
    sections.append(footer)
    return "\n\n---\n\n".join(sections)
