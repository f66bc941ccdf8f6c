"""Normalize workflow responses into three plan options.

Responses arrive in several historical shapes. Each raw payload is first
classified into one variant:

- ``StructuredPlans``: a list of plan objects (or the webhook's
  ``{"plan1": ..., "plan2": ..., "plan3": ...}`` object);
- ``LegacyText``: a single free-text blob;
- ``UnknownShape``: anything else.

Structured plans are mapped field by field. Legacy text goes through three
heuristics in order of decreasing confidence: ``### Goal N`` section headers,
bare ``Goal N:`` markers, and finally an equal three-way split by lines. The
result always records the tier that produced it.

Parsing never raises: unusable input yields an empty ``UNPARSEABLE`` plan.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from rehab_goals.core.exceptions import ParseError
from rehab_goals.models.recommendation import (
    OPTIONS_PER_PLAN,
    GoalPlanOption,
    MonthlyBreakdown,
    ParsedPlan,
    ParseTier,
    RecommendationRecord,
    WeeklyBreakdown,
)
from rehab_goals.services.date_reconciliation import MAX_WEEKS_PER_MONTH, MONTHS_PER_PLAN

logger = logging.getLogger(__name__)

_GOAL_WORD = r"(?:goal|목표)"
MARKED_SECTION = re.compile(
    rf"###\s*{_GOAL_WORD}\s*(\d+)[:.]?\s*(.*?)(?=###\s*{_GOAL_WORD}\s*\d+|\Z)",
    re.IGNORECASE | re.DOTALL,
)
UNMARKED_SECTION = re.compile(
    rf"{_GOAL_WORD}\s*(\d+)[:.]?\s*(.*?)(?={_GOAL_WORD}\s*\d+|\Z)",
    re.IGNORECASE | re.DOTALL,
)
TITLE_PREFIX = re.compile(rf"^\s*{_GOAL_WORD}\s*\d+\s*[:.]?\s*", re.IGNORECASE)

MIN_LINES_FOR_SPLIT = 6

# Keys that may hold the plans, in priority order
_PLAN_KEYS = ("recommendations", "goals", "six_month_goals", "response", "content")


@dataclass(frozen=True)
class StructuredPlans:
    plans: list[dict[str, Any]]
    reasoning: str | None = None


@dataclass(frozen=True)
class LegacyText:
    text: str
    reasoning: str | None = None


@dataclass(frozen=True)
class UnknownShape:
    description: str
    reasoning: str | None = None


RecommendationPayload = StructuredPlans | LegacyText | UnknownShape


def classify_payload(raw: Any, reasoning: str | None = None) -> RecommendationPayload:
    """Decide which payload variant ``raw`` is."""
    if isinstance(raw, RecommendationRecord):
        return classify_payload(raw.recommendations, raw.reasoning)

    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return UnknownShape("empty text", reasoning)
        if stripped[0] in "[{":
            try:
                return classify_payload(json.loads(stripped), reasoning)
            except json.JSONDecodeError:
                pass
        return LegacyText(stripped, reasoning)

    if isinstance(raw, list):
        if raw and all(isinstance(item, dict) for item in raw):
            return StructuredPlans(raw, reasoning)
        if raw and all(isinstance(item, str) for item in raw):
            return LegacyText("\n".join(raw), reasoning)
        return UnknownShape(f"list of {len(raw)} mixed items", reasoning)

    if isinstance(raw, dict):
        reasoning = raw.get("reasoning") if isinstance(raw.get("reasoning"), str) else reasoning
        for key in _PLAN_KEYS:
            if raw.get(key):
                return classify_payload(raw[key], reasoning)
        keyed = _keyed_plans(raw)
        if keyed:
            return StructuredPlans(keyed, reasoning)
        return UnknownShape(f"object with keys {sorted(raw)}", reasoning)

    return UnknownShape(type(raw).__name__, reasoning)


def _keyed_plans(raw: dict[str, Any]) -> list[dict[str, Any]]:
    """Plans from a ``{"plan1": {...}, "plan2": {...}}`` object, in key order."""
    keyed = []
    for key, value in raw.items():
        match = re.fullmatch(r"plan_?(\d+)", str(key), re.IGNORECASE)
        if match and isinstance(value, dict):
            keyed.append((int(match.group(1)), value))
    return [value for _, value in sorted(keyed, key=lambda kv: kv[0])]


def parse_recommendation(raw: Any) -> ParsedPlan:
    """Parse a workflow response into a :class:`ParsedPlan`.

    Args:
        raw: A :class:`RecommendationRecord`, its ``recommendations`` field,
            a JSON string, or a legacy text blob.

    Returns:
        Three options tagged with the tier that produced them, or an empty
        ``UNPARSEABLE`` plan.
    """
    recommendation_id = raw.id if isinstance(raw, RecommendationRecord) else None
    try:
        payload = classify_payload(raw)
        if isinstance(payload, StructuredPlans):
            tier, options = ParseTier.STRUCTURED, _map_structured(payload.plans)
        elif isinstance(payload, LegacyText):
            tier, options = _parse_text(payload.text)
        else:
            logger.warning("Unrecognized recommendation shape: %s", payload.description)
            tier, options = ParseTier.UNPARSEABLE, []
    except Exception:
        logger.exception("Recommendation parsing failed", extra={"recommendation_id": recommendation_id})
        return ParsedPlan(tier=ParseTier.UNPARSEABLE, recommendation_id=recommendation_id)

    if len(options) < OPTIONS_PER_PLAN:
        logger.warning(
            "Too few plan options",
            extra={"tier": tier.value, "count": len(options), "recommendation_id": recommendation_id},
        )
        return ParsedPlan(
            tier=ParseTier.UNPARSEABLE,
            reasoning=payload.reasoning,
            recommendation_id=recommendation_id,
        )

    logger.info(
        "Recommendation parsed",
        extra={"tier": tier.value, "recommendation_id": recommendation_id},
    )
    return ParsedPlan(
        tier=tier,
        options=options[:OPTIONS_PER_PLAN],
        reasoning=payload.reasoning,
        recommendation_id=recommendation_id,
    )


def require_options(plan: ParsedPlan) -> ParsedPlan:
    """Return ``plan`` if it has options, else raise :class:`ParseError`."""
    if plan.is_empty:
        raise ParseError("No parser tier produced three goal options")
    return plan


def clean_title(title: str) -> str:
    """Strip a leading "Goal N:" label from a plan title."""
    return TITLE_PREFIX.sub("", title).strip()


# ---------------------------------------------------------------------------
# Structured plans
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        for key in ("goal", "title", "plan", "description"):
            if value.get(key):
                return _text(value[key])
    return str(value).strip()


def _first(plan: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if plan.get(key):
            return plan[key]
    return None


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _map_structured(plans: list[dict[str, Any]]) -> list[GoalPlanOption]:
    options = []
    for index, plan in enumerate(plans[:OPTIONS_PER_PLAN], start=1):
        title = clean_title(_text(plan.get("title"))) or f"Goal {index}"
        options.append(
            GoalPlanOption(
                plan_number=index,
                title=title,
                purpose=_text(_first(plan, "purpose", "description")),
                six_month_goal=_text(
                    _first(plan, "sixMonthGoal", "six_month_goal", "sixMonthTarget")
                )
                or "; ".join(_objectives(plan)),
                monthly_goals=_map_months(plan),
            )
        )
    return options


def _objective_goals(plan: dict[str, Any]) -> list[dict[str, Any]]:
    # Webhook plans list their objectives as goals[{category, objective, timeline, methods}]
    goals = plan.get("goals")
    if not isinstance(goals, list):
        return []
    return [g for g in goals if isinstance(g, dict) and _text(g.get("objective"))]


def _objectives(plan: dict[str, Any]) -> list[str]:
    return [_text(g["objective"]) for g in _objective_goals(plan)]


def _map_months(plan: dict[str, Any]) -> list[MonthlyBreakdown]:
    raw_months = _first(plan, "monthlyGoals", "monthly_goals", "monthlyPlans") or []
    if not raw_months:
        raw_months = [
            {"goal": g["objective"], "activities": g.get("methods") or []}
            for g in _objective_goals(plan)
        ]
    flat_weeks = list(_first(plan, "weeklyPlans", "weekly_plans", "weeklyGoals") or [])

    goals: dict[int, str] = {}
    activities: dict[int, list[str]] = {}
    weeks: dict[int, list[tuple[int, dict[str, Any] | str]]] = {}

    for position, item in enumerate(raw_months, start=1):
        month = position
        if isinstance(item, dict):
            month = _as_int(item.get("month")) or position
            acts = item.get("activities") or []
            activities[month] = [_text(a) for a in acts if _text(a)]
            for order, week in enumerate(item.get("weeklyPlans") or item.get("weeks") or [], 1):
                weeks.setdefault(month, []).append((order, week))
        goals[month] = _text(item)

    for order, week in enumerate(flat_weeks, start=1):
        number = _as_int(week.get("week")) if isinstance(week, dict) else None
        month = _as_int(week.get("month")) if isinstance(week, dict) else None
        if month is None:
            month = ((number or order) - 1) // MAX_WEEKS_PER_MONTH + 1
        weeks.setdefault(month, []).append((number or order, week))

    breakdowns = []
    for month in sorted(set(goals) | set(weeks)):
        if not 1 <= month <= MONTHS_PER_PLAN:
            logger.warning("Ignoring breakdown outside the six-month plan", extra={"month": month})
            continue
        ordered = [w for _, w in sorted(weeks.get(month, []), key=lambda pair: pair[0])]
        breakdowns.append(
            MonthlyBreakdown(
                month=month,
                goal=goals.get(month, ""),
                activities=activities.get(month, []),
                weeks=[
                    WeeklyBreakdown(
                        week=local,
                        plan=_text(week),
                        description=_text(week.get("description")) if isinstance(week, dict) else "",
                    )
                    for local, week in enumerate(ordered, start=1)
                ],
            )
        )
    return breakdowns


# ---------------------------------------------------------------------------
# Legacy text
# ---------------------------------------------------------------------------


def _parse_text(text: str) -> tuple[ParseTier, list[GoalPlanOption]]:
    for tier, pattern in ((ParseTier.MARKED, MARKED_SECTION), (ParseTier.UNMARKED, UNMARKED_SECTION)):
        sections = [match.group(2).strip() for match in pattern.finditer(text)]
        if len(sections) >= OPTIONS_PER_PLAN:
            return tier, _text_options(sections)

    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) >= MIN_LINES_FOR_SPLIT:
        size = math.ceil(len(lines) / OPTIONS_PER_PLAN)
        chunks = ["\n".join(lines[i * size : (i + 1) * size]).strip() for i in range(OPTIONS_PER_PLAN)]
        return ParseTier.EQUAL_SPLIT, _text_options(chunks)

    return ParseTier.UNPARSEABLE, []


def _text_options(sections: list[str]) -> list[GoalPlanOption]:
    return [
        GoalPlanOption(plan_number=index, title=f"Goal {index}", six_month_goal=section)
        for index, section in enumerate(sections[:OPTIONS_PER_PLAN], start=1)
    ]
