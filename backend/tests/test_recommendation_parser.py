"""Tests for recommendation parsing."""

import json

import pytest

from rehab_goals.core.exceptions import ParseError
from rehab_goals.models.recommendation import ParsedPlan, ParseTier, RecommendationRecord
from rehab_goals.services.recommendation_parser import (
    LegacyText,
    StructuredPlans,
    UnknownShape,
    classify_payload,
    clean_title,
    parse_recommendation,
    require_options,
)

MARKED_TEXT = """### Goal 1: Morning routine
Wake up at 7 and have breakfast.
### Goal 2: Cooking
Prepare one simple meal a week.
### Goal 3: Community
Visit the library twice a month.
"""


def test_structured_list_is_mapped_directly(structured_payload) -> None:
    plan = parse_recommendation(structured_payload)

    assert plan.tier is ParseTier.STRUCTURED
    assert plan.confidence == 1.0
    assert not plan.needs_review
    assert [o.title for o in plan.options] == ["Plan 1", "Plan 2", "Plan 3"]
    first = plan.options[0]
    assert first.six_month_goal == "Six-month goal 1"
    assert first.purpose == "Purpose 1"
    assert len(first.monthly_goals) == 6
    assert first.month(1).activities == ["walk", "journal"]
    assert [w.week for w in first.month(1).weeks] == [1, 2, 3, 4]
    assert first.month(1).weeks[0].plan == "P1 M1 W1"
    assert first.month(2).weeks == []


def test_structured_weeks_are_grouped_into_months_with_local_numbers(plan_factory) -> None:
    plans = [plan_factory(n, weekly_months=(1, 2)) for n in (1, 2, 3)]
    for plan in plans:
        for week in plan["weeklyPlans"]:
            del week["month"]

    option = parse_recommendation(plans).options[0]

    assert [w.week for w in option.month(2).weeks] == [1, 2, 3, 4]
    assert option.month(2).weeks[0].plan == "P1 M2 W1"


def test_structured_never_falls_through_to_text(plan_factory) -> None:
    """Two structured plans are unparseable even if marked text is present."""
    payload = {"recommendations": [plan_factory(1), plan_factory(2)], "content": MARKED_TEXT}

    plan = parse_recommendation(payload)

    assert plan.tier is ParseTier.UNPARSEABLE
    assert plan.options == []


def test_only_first_three_structured_plans_are_used(plan_factory) -> None:
    plan = parse_recommendation([plan_factory(n) for n in range(1, 6)])

    assert [o.plan_number for o in plan.options] == [1, 2, 3]


def test_keyed_webhook_object_is_structured(plan_factory) -> None:
    payload = {
        "plan3": plan_factory(3),
        "plan1": plan_factory(1),
        "plan2": plan_factory(2),
        "reasoning": "Matched to motivation level",
    }

    plan = parse_recommendation(payload)

    assert plan.tier is ParseTier.STRUCTURED
    assert [o.title for o in plan.options] == ["Plan 1", "Plan 2", "Plan 3"]
    assert plan.reasoning == "Matched to motivation level"


def test_webhook_objectives_become_goals() -> None:
    def webhook_plan(number: int) -> dict:
        return {
            "title": f"Plan {number}",
            "description": "Daily living skills",
            "duration": "6 months",
            "goals": [
                {
                    "category": "routine",
                    "objective": f"Wake up by 8 ({number})",
                    "timeline": "month 1",
                    "methods": ["alarm", "checklist"],
                },
                {"category": "social", "objective": "Join a group", "methods": []},
            ],
            "priority": "high",
        }

    plan = parse_recommendation({f"plan{n}": webhook_plan(n) for n in (1, 2, 3)})
    first = plan.options[0]

    assert plan.tier is ParseTier.STRUCTURED
    assert first.six_month_goal == "Wake up by 8 (1); Join a group"
    assert first.purpose == "Daily living skills"
    assert first.month(1).goal == "Wake up by 8 (1)"
    assert first.month(1).activities == ["alarm", "checklist"]
    assert first.month(2).goal == "Join a group"


def test_record_with_json_string_payload(structured_payload) -> None:
    record = RecommendationRecord(
        id="rec-9",
        assessment_id="assessment-1",
        status="completed",
        recommendations=json.dumps(structured_payload),
        reasoning="why",
    )

    plan = parse_recommendation(record)

    assert plan.tier is ParseTier.STRUCTURED
    assert plan.recommendation_id == "rec-9"
    assert plan.reasoning == "why"


def test_marked_text_yields_three_options() -> None:
    plan = parse_recommendation(MARKED_TEXT)

    assert plan.tier is ParseTier.MARKED
    assert plan.needs_review
    assert len(plan.options) == 3
    assert plan.options[1].title == "Goal 2"
    assert plan.options[1].six_month_goal.startswith("Cooking")
    assert "Prepare one simple meal" in plan.options[1].six_month_goal


def test_marked_korean_text() -> None:
    text = "### 목표 1: 산책\n매일 걷기\n### 목표 2: 요리\n주 1회\n### 목표 3: 독서\n월 2권"

    plan = parse_recommendation({"six_month_goals": text})

    assert plan.tier is ParseTier.MARKED
    assert plan.options[2].six_month_goal.startswith("독서")


def test_unmarked_text() -> None:
    plan = parse_recommendation("Goal 1: walk daily. Goal 2: cook weekly. Goal 3: read monthly.")

    assert plan.tier is ParseTier.UNMARKED
    assert [o.six_month_goal for o in plan.options] == [
        "walk daily.",
        "cook weekly.",
        "read monthly.",
    ]


def test_equal_split_of_plain_lines() -> None:
    text = "\n".join(f"line {n}" for n in range(1, 8))

    plan = parse_recommendation(text)

    assert plan.tier is ParseTier.EQUAL_SPLIT
    assert plan.confidence == 0.2
    assert plan.options[0].six_month_goal == "line 1\nline 2\nline 3"
    assert plan.options[2].six_month_goal == "line 7"


def test_list_of_strings_is_treated_as_text() -> None:
    plan = parse_recommendation([f"step {n}" for n in range(1, 7)])

    assert plan.tier is ParseTier.EQUAL_SPLIT


def test_short_text_is_unparseable() -> None:
    plan = parse_recommendation("one\ntwo\nthree")

    assert plan.tier is ParseTier.UNPARSEABLE
    assert plan.is_empty


@pytest.mark.parametrize("raw", [None, 42, {}, [], "", {"unexpected": True}, [1, "a"]])
def test_unknown_shapes_never_raise(raw) -> None:
    plan = parse_recommendation(raw)

    assert plan.tier is ParseTier.UNPARSEABLE
    assert plan.options == []


def test_classify_payload_variants(structured_payload) -> None:
    assert isinstance(classify_payload(structured_payload), StructuredPlans)
    assert isinstance(classify_payload({"goals": structured_payload}), StructuredPlans)
    assert isinstance(classify_payload("free text"), LegacyText)
    assert isinstance(classify_payload("{not json"), LegacyText)
    assert isinstance(classify_payload(3.5), UnknownShape)


def test_clean_title_strips_goal_prefixes() -> None:
    assert clean_title("목표 2: 요리하기") == "요리하기"
    assert clean_title("Goal 3. Reading") == "Reading"
    assert clean_title("Daily walks") == "Daily walks"


def test_require_options_raises_for_empty_plan() -> None:
    with pytest.raises(ParseError):
        require_options(ParsedPlan(tier=ParseTier.UNPARSEABLE))
