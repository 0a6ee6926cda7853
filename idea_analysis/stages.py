"""Concrete analysis stages backed by the JSON completion backend."""

from __future__ import annotations

import copy
import logging
import re
from functools import lru_cache
from textwrap import dedent
from typing import Any, Dict, List

from .config import get_llm_settings
from .contracts import AnalysisStageBase, StageContext, StageExecutionError, StructuredResult
from .llm import CompletionBackend, PromptSpec, format_follow_up_answers, get_backend
from .schemas import AnalysisStage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _text_or(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _list_or(value: Any, default: List[Any]) -> List[Any]:
    if isinstance(value, list) and value:
        return value
    return copy.deepcopy(default)


def _joined(items: Any) -> str:
    if not isinstance(items, list):
        return ""
    return ", ".join(str(item) for item in items if item)


class LLMStage(AnalysisStageBase):
    """Base for stages that prompt the completion backend.

    Subclasses provide the prompts, a fallback and ``validate``, which
    shapes a raw reply into this stage's result.
    """

    temperature: float = 0.7
    max_tokens: int = 900
    system_prompt: str = ""
    instruction: str = ""

    def __init__(self, backend: CompletionBackend | None = None) -> None:
        self._backend = backend

    def _resolve_backend(self) -> CompletionBackend:
        backend = self._backend or get_backend()
        if backend is None:
            raise StageExecutionError("No LLM provider is configured.", stage=self.stage)
        return backend

    def build_user_prompt(self, context: StageContext) -> str:
        prompt = f"## Idea\n{context.idea.text}"
        answers = format_follow_up_answers(context.follow_up_answers)
        if answers:
            prompt += f"\n\n## Additional information\n{answers}"
        prior = self.previous_results_section(context)
        if prior:
            prompt += f"\n\n{prior}"
        return f"{prompt}\n\n{self.instruction}"

    def previous_results_section(self, context: StageContext) -> str:
        return ""

    def build_prompt(self, context: StageContext) -> PromptSpec:
        return PromptSpec(
            system_prompt=self.system_prompt,
            user_prompt=self.build_user_prompt(context),
            model=get_llm_settings().model_for_stage(self.stage.value),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def execute(self, context: StageContext) -> StructuredResult:
        backend = self._resolve_backend()
        try:
            raw = backend.complete(self.build_prompt(context))
        except StageExecutionError as exc:
            exc.stage = self.stage
            raise
        return self.validate(raw)

    def validate(self, raw: Dict[str, Any]) -> StructuredResult:
        raise NotImplementedError


def _summary_section(result: Dict[str, Any]) -> List[str]:
    lines = []
    if result.get("summary"):
        lines.append(f"- Summary: {result['summary']}")
    if result.get("core_value"):
        lines.append(f"- Core value: {result['core_value']}")
    if result.get("problem_statement"):
        lines.append(f"- Problem: {result['problem_statement']}")
    return lines


def _section(title: str, lines: List[str]) -> str:
    if not lines:
        return ""
    return "\n".join([f"## {title}", *lines])


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


SUMMARY_FALLBACK: StructuredResult = {
    "summary": "Idea summary is unavailable.",
    "core_value": "Core value needs analysis.",
    "problem_statement": "Problem statement needs definition.",
}


class SummaryStage(LLMStage):
    stage = AnalysisStage.SUMMARY
    label = "Summary"
    description = "Condense the idea into a summary, core value, and problem."
    temperature = 0.5
    max_tokens = 400
    system_prompt = dedent(
        """
        You are a startup idea analyst. Read the idea and summarise it concisely.

        Respond only with JSON in this shape:
        {
          "summary": "one-line summary (under 30 words)",
          "core_value": "the core value the idea delivers",
          "problem_statement": "the problem the idea solves"
        }

        Prefer plain language over jargon. Output nothing but the JSON.
        """
    )
    instruction = "Summarise the idea above."

    def fallback(self) -> StructuredResult:
        return copy.deepcopy(SUMMARY_FALLBACK)

    def validate(self, raw: Dict[str, Any]) -> StructuredResult:
        return {
            key: _text_or(raw.get(key), default)
            for key, default in SUMMARY_FALLBACK.items()
        }


# ---------------------------------------------------------------------------
# Target users
# ---------------------------------------------------------------------------


TARGET_USER_FALLBACK: StructuredResult = {
    "target_users": {
        "primary": "Target users need analysis.",
        "characteristics": [],
        "personas": [],
    },
    "user_pain_points": [],
    "user_goals": [],
}


class TargetUserStage(LLMStage):
    stage = AnalysisStage.TARGET_USER
    label = "Target users"
    description = "Identify the primary audience, personas, pains, and goals."
    max_tokens = 900
    system_prompt = dedent(
        """
        You are a user research and persona specialist.

        Respond only with JSON in this shape:
        {
          "target_users": {
            "primary": "primary target user (e.g. office workers in their 20s-30s)",
            "characteristics": ["trait", "trait", "trait"],
            "personas": [
              {"name": "persona name", "age_range": "e.g. 20-25", "description": "short description"}
            ]
          },
          "user_pain_points": ["pain", "pain", "pain"],
          "user_goals": ["goal", "goal", "goal"]
        }

        Write at least two concrete personas. Output nothing but the JSON.
        """
    )
    instruction = "Analyse the target users of the idea above."

    def previous_results_section(self, context: StageContext) -> str:
        return _section("Idea summary", _summary_section(context.result_for(AnalysisStage.SUMMARY)))

    def fallback(self) -> StructuredResult:
        return copy.deepcopy(TARGET_USER_FALLBACK)

    def validate(self, raw: Dict[str, Any]) -> StructuredResult:
        return {
            "target_users": self._validate_target_users(raw.get("target_users")),
            "user_pain_points": _list_or(raw.get("user_pain_points"), []),
            "user_goals": _list_or(raw.get("user_goals"), []),
        }

    def _validate_target_users(self, target_users: Any) -> Dict[str, Any]:
        fallback = self.fallback()["target_users"]
        if not isinstance(target_users, dict):
            return fallback
        return {
            "primary": _text_or(target_users.get("primary"), fallback["primary"]),
            "characteristics": _list_or(target_users.get("characteristics"), []),
            "personas": self._validate_personas(target_users.get("personas")),
        }

    @staticmethod
    def _validate_personas(personas: Any) -> List[Dict[str, str]]:
        if not isinstance(personas, list):
            return []
        return [
            {
                "name": _text_or(persona.get("name"), "Persona"),
                "age_range": _text_or(persona.get("age_range"), "Unknown"),
                "description": _text_or(persona.get("description"), ""),
            }
            for persona in personas
            if isinstance(persona, dict)
        ]


# ---------------------------------------------------------------------------
# Market analysis
# ---------------------------------------------------------------------------


INDUSTRY_KEYWORDS: Dict[str, tuple[str, ...]] = {
    "E-commerce": ("shopping", "commerce", "retail", "marketplace", "online store"),
    "Fintech": ("finance", "payment", "invest", "remittance", "banking", "insurance"),
    "Edtech": ("education", "learning", "course", "tutor", "school"),
    "Healthtech": ("health", "medical", "healthcare", "hospital", "clinic"),
    "Foodtech": ("food", "delivery", "restaurant", "meal", "grocery"),
    "Mobility": ("mobility", "vehicle", "ride", "taxi", "scooter"),
    "Proptech": ("real estate", "property", "housing", "rental", "lease"),
    "HR tech": ("hiring", "recruit", "hr", "job seeker", "talent"),
    "SaaS": ("software", "saas", "b2b", "enterprise"),
    "AI": ("artificial intelligence", "ai", "machine learning", "automation"),
    "Community": ("community", "networking", "social"),
    "Freelance": ("freelance", "outsourcing", "contractor", "gig"),
}

DEFAULT_INDUSTRY = "Startup"
KEYWORD_SUFFIXES = r"(?:s|es|ing|ed|er|ers|ment|ments)?"


@lru_cache(maxsize=None)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # Whole words only, plus common inflections ("tutoring", "investment").
    return re.compile(rf"\b{re.escape(keyword)}{KEYWORD_SUFFIXES}\b")


def extract_industry(idea_text: str, follow_up_answers: Dict[str, str] | None = None) -> str:
    """Classify the idea into an industry by keyword matching."""

    answers = " ".join(str(value) for value in (follow_up_answers or {}).values() if value)
    text = f"{idea_text} {answers}".lower()
    for industry, keywords in INDUSTRY_KEYWORDS.items():
        for keyword in keywords:
            if _keyword_pattern(keyword).search(text):
                return industry
    return DEFAULT_INDUSTRY


MARKET_ANALYSIS_FALLBACK: StructuredResult = {
    "market_analysis": {
        "potential": "Market potential needs analysis.",
        "market_size": "Market size needs research.",
        "trends": "Trends need analysis.",
        "competitors": [],
        "differentiation": "Differentiation strategy needed.",
    },
    "market_opportunities": [],
    "market_risks": [],
}


class MarketAnalysisStage(LLMStage):
    stage = AnalysisStage.MARKET_ANALYSIS
    label = "Market analysis"
    description = "Assess market size, trends, competitors, and differentiation."
    max_tokens = 1000
    system_prompt = dedent(
        """
        You are a market research analyst for early-stage startups.

        Respond only with JSON in this shape:
        {
          "market_analysis": {
            "potential": "High/Medium/Low with a short reason",
            "market_size": "estimated market size",
            "trends": "relevant market trends",
            "competitors": ["competitor", "competitor"],
            "differentiation": "how the idea can stand out"
          },
          "market_opportunities": ["opportunity", "opportunity"],
          "market_risks": ["risk", "risk"]
        }

        Be realistic and name real competitors where you can. Output nothing but the JSON.
        """
    )
    instruction = "Perform a market analysis of the idea above."

    def build_user_prompt(self, context: StageContext) -> str:
        industry = extract_industry(context.idea.text, dict(context.follow_up_answers))
        logger.debug("Market analysis industry resolved to %s", industry)
        prompt = super().build_user_prompt(context)
        return f"{prompt}\nFocus on the {industry} industry."

    def previous_results_section(self, context: StageContext) -> str:
        sections = [_section("Idea summary", _summary_section(context.result_for(AnalysisStage.SUMMARY)))]
        target = context.result_for(AnalysisStage.TARGET_USER)
        target_lines = []
        primary = (target.get("target_users") or {}).get("primary")
        if primary:
            target_lines.append(f"- Primary users: {primary}")
        if target.get("user_pain_points"):
            target_lines.append(f"- Pain points: {_joined(target['user_pain_points'])}")
        sections.append(_section("Target users", target_lines))
        return "\n\n".join(section for section in sections if section)

    def fallback(self) -> StructuredResult:
        return copy.deepcopy(MARKET_ANALYSIS_FALLBACK)

    def validate(self, raw: Dict[str, Any]) -> StructuredResult:
        fallback = self.fallback()
        market = raw.get("market_analysis")
        if isinstance(market, dict):
            defaults = fallback["market_analysis"]
            market = {
                "potential": _text_or(market.get("potential"), defaults["potential"]),
                "market_size": _text_or(market.get("market_size"), defaults["market_size"]),
                "trends": _text_or(market.get("trends"), defaults["trends"]),
                "competitors": _list_or(market.get("competitors"), defaults["competitors"]),
                "differentiation": _text_or(market.get("differentiation"), defaults["differentiation"]),
            }
        else:
            market = fallback["market_analysis"]
        return {
            "market_analysis": market,
            "market_opportunities": _list_or(raw.get("market_opportunities"), []),
            "market_risks": _list_or(raw.get("market_risks"), []),
        }


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


STRATEGY_FALLBACK: StructuredResult = {
    "recommendations": {
        "mvp_features": ["Define the MVP feature set."],
        "challenges": ["Identify the key challenges."],
        "next_steps": ["Plan the next steps."],
    },
    "actions": [
        {"title": "Define core users", "description": "Narrow down the target user."},
        {"title": "Scope the MVP", "description": "Decide the must-have features."},
        {"title": "Study competitors", "description": "Map the competitive landscape."},
    ],
}


class StrategyStage(LLMStage):
    stage = AnalysisStage.STRATEGY
    label = "Strategy"
    description = "Derive MVP features, challenges, next steps, and actions."
    temperature = 0.6
    max_tokens = 1000
    system_prompt = dedent(
        """
        You are a startup strategy and product planning expert.

        Respond only with JSON in this shape:
        {
          "recommendations": {
            "mvp_features": ["feature", "feature", "feature"],
            "challenges": ["challenge -> response", "challenge -> response"],
            "next_steps": ["step", "step", "step"]
          },
          "actions": [
            {"title": "short action title", "description": "what to do"}
          ]
        }

        List 3-5 MVP features by priority and exactly three actions, most
        important first. Output nothing but the JSON.
        """
    )
    instruction = "Derive an execution strategy and action items from the analysis above."

    def previous_results_section(self, context: StageContext) -> str:
        sections = [_section("Idea summary", _summary_section(context.result_for(AnalysisStage.SUMMARY)))]

        target = context.result_for(AnalysisStage.TARGET_USER)
        target_lines = []
        primary = (target.get("target_users") or {}).get("primary")
        if primary:
            target_lines.append(f"- Primary users: {primary}")
        if target.get("user_pain_points"):
            target_lines.append(f"- Pain points: {_joined(target['user_pain_points'])}")
        if target.get("user_goals"):
            target_lines.append(f"- Goals: {_joined(target['user_goals'])}")
        sections.append(_section("Target users", target_lines))

        market = context.result_for(AnalysisStage.MARKET_ANALYSIS)
        analysis = market.get("market_analysis") or {}
        market_lines = []
        if analysis.get("potential"):
            market_lines.append(f"- Potential: {analysis['potential']}")
        if analysis.get("market_size"):
            market_lines.append(f"- Market size: {analysis['market_size']}")
        if analysis.get("competitors"):
            market_lines.append(f"- Competitors: {_joined(analysis['competitors'])}")
        if analysis.get("differentiation"):
            market_lines.append(f"- Differentiation: {analysis['differentiation']}")
        if market.get("market_risks"):
            market_lines.append(f"- Risks: {_joined(market['market_risks'])}")
        sections.append(_section("Market analysis", market_lines))

        return "\n\n".join(section for section in sections if section)

    def fallback(self) -> StructuredResult:
        return copy.deepcopy(STRATEGY_FALLBACK)

    def validate(self, raw: Dict[str, Any]) -> StructuredResult:
        return {
            "recommendations": self._validate_recommendations(raw.get("recommendations")),
            "actions": self._validate_actions(raw.get("actions")),
        }

    def _validate_recommendations(self, recommendations: Any) -> Dict[str, Any]:
        fallback = self.fallback()["recommendations"]
        if not isinstance(recommendations, dict):
            return fallback
        return {key: _list_or(recommendations.get(key), default) for key, default in fallback.items()}

    def _validate_actions(self, actions: Any) -> List[Dict[str, str]]:
        if not isinstance(actions, list):
            return self.fallback()["actions"]
        validated = [
            {
                "title": _text_or(action.get("title"), "Action"),
                "description": _text_or(action.get("description"), ""),
            }
            for action in actions
            if isinstance(action, dict)
        ]
        return validated or self.fallback()["actions"]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


STANDARD_WEAK_AREAS = (
    "Market analysis",
    "Technical detail",
    "Target definition",
    "Differentiation",
    "Revenue model",
    "MVP definition",
)

CONFIDENCE_LEVELS = ("High", "Medium", "Low")
DEFAULT_CONFIDENCE = "Medium"

SCORING_FALLBACK: StructuredResult = {
    "score": {
        "overall": 50,
        "weak_areas": ["Market analysis", "Technical detail"],
        "strong_areas": ["Idea originality"],
        "improvement_tips": ["Review the analysis above to find improvements."],
    },
    "required_expertise": {
        "roles": ["Developer", "Designer"],
        "skills": ["MVP", "Startup"],
        "description": "Expertise recommendations need a completed analysis.",
    },
    "confidence_level": DEFAULT_CONFIDENCE,
}


def standardize_weak_areas(weak_areas: Any) -> List[str]:
    """Map free-form weak areas onto the standard list, keeping at most three."""

    if not isinstance(weak_areas, list):
        return list(SCORING_FALLBACK["score"]["weak_areas"])
    standardized: List[str] = []
    for area in weak_areas:
        text = str(area).strip()
        if not text:
            continue
        lowered = text.lower()
        match = next(
            (std for std in STANDARD_WEAK_AREAS if std.lower() in lowered or lowered in std.lower()),
            text,
        )
        if match not in standardized:
            standardized.append(match)
    return standardized[:3]


def _clamp_score(value: Any) -> int:
    try:
        overall = int(float(value))
    except OverflowError:
        overall = 100 if float(value) > 0 else 0
    except (TypeError, ValueError):
        overall = 0
    return max(0, min(100, overall))


class ScoringStage(LLMStage):
    stage = AnalysisStage.SCORING
    label = "Scoring"
    description = "Score the idea and recommend the expertise it needs."
    temperature = 0.4
    max_tokens = 900
    system_prompt = dedent(
        f"""
        You are a startup idea evaluator. Combine the analysis into an
        objective score and concrete improvements.

        Respond only with JSON in this shape:
        {{
          "score": {{
            "overall": 65,
            "weak_areas": ["area", "area"],
            "strong_areas": ["strength", "strength"],
            "improvement_tips": ["tip", "tip", "tip"]
          }},
          "required_expertise": {{
            "roles": ["Developer", "Designer"],
            "skills": ["skill", "skill"],
            "description": "short description of the expertise needed"
          }},
          "confidence_level": "High/Medium/Low"
        }}

        overall is an integer from 0 to 100 (50-80 is typical). Pick 2-3
        weak_areas only from: {", ".join(STANDARD_WEAK_AREAS)}. Base
        confidence_level on how complete the analysis data is.
        Output nothing but the JSON.
        """
    )
    instruction = "Score the idea and assess the expertise it needs, using all of the analysis above."

    def previous_results_section(self, context: StageContext) -> str:
        sections = [_section("Idea summary", _summary_section(context.result_for(AnalysisStage.SUMMARY)))]

        target = context.result_for(AnalysisStage.TARGET_USER)
        target_users = target.get("target_users") or {}
        target_lines = []
        if target_users.get("primary"):
            target_lines.append(f"- Primary users: {target_users['primary']}")
        if target_users.get("personas"):
            target_lines.append(f"- Personas defined: {len(target_users['personas'])}")
        sections.append(_section("Target users", target_lines))

        market = context.result_for(AnalysisStage.MARKET_ANALYSIS)
        analysis = market.get("market_analysis") or {}
        market_lines = []
        if analysis.get("potential"):
            market_lines.append(f"- Potential: {analysis['potential']}")
        if analysis.get("market_size"):
            market_lines.append(f"- Market size: {analysis['market_size']}")
        if analysis.get("competitors"):
            market_lines.append(f"- Competitors: {len(analysis['competitors'])}")
        if market.get("market_opportunities"):
            market_lines.append(f"- Opportunities: {len(market['market_opportunities'])}")
        if market.get("market_risks"):
            market_lines.append(f"- Risks: {len(market['market_risks'])}")
        sections.append(_section("Market analysis", market_lines))

        strategy = context.result_for(AnalysisStage.STRATEGY)
        recommendations = strategy.get("recommendations") or {}
        strategy_lines = [
            f"- {label}: {len(recommendations[key])}"
            for key, label in (
                ("mvp_features", "MVP features"),
                ("challenges", "Challenges"),
                ("next_steps", "Next steps"),
            )
            if recommendations.get(key)
        ]
        if strategy.get("actions"):
            strategy_lines.append(f"- Action items: {len(strategy['actions'])}")
        sections.append(_section("Strategy", strategy_lines))

        return "\n\n".join(section for section in sections if section)

    def fallback(self) -> StructuredResult:
        return copy.deepcopy(SCORING_FALLBACK)

    def validate(self, raw: Dict[str, Any]) -> StructuredResult:
        confidence = _text_or(raw.get("confidence_level"), DEFAULT_CONFIDENCE).capitalize()
        return {
            "score": self._validate_score(raw.get("score")),
            "required_expertise": self._validate_required_expertise(raw.get("required_expertise")),
            "confidence_level": confidence if confidence in CONFIDENCE_LEVELS else DEFAULT_CONFIDENCE,
        }

    def _validate_score(self, score: Any) -> Dict[str, Any]:
        fallback = self.fallback()["score"]
        if not isinstance(score, dict):
            return fallback
        return {
            "overall": _clamp_score(score.get("overall")),
            "weak_areas": standardize_weak_areas(score.get("weak_areas")),
            "strong_areas": _list_or(score.get("strong_areas"), fallback["strong_areas"]),
            "improvement_tips": _list_or(score.get("improvement_tips"), fallback["improvement_tips"]),
        }

    def _validate_required_expertise(self, expertise: Any) -> Dict[str, Any]:
        fallback = self.fallback()["required_expertise"]
        if not isinstance(expertise, dict):
            return fallback
        return {
            "roles": _list_or(expertise.get("roles"), fallback["roles"]),
            "skills": _list_or(expertise.get("skills"), fallback["skills"]),
            "description": _text_or(expertise.get("description"), fallback["description"]),
        }
