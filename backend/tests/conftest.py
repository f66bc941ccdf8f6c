"""Shared fixtures for goal planning tests."""

import itertools
from collections.abc import Callable
from typing import Any

import pytest

from rehab_goals.models.recommendation import GoalPlanOption, MonthlyBreakdown, WeeklyBreakdown


def make_option(
    weeks_per_month: dict[int, int],
    plan_number: int = 1,
    title: str = "Build a daily routine",
) -> GoalPlanOption:
    """Plan option with six monthly breakdowns and the given weekly counts."""
    months = []
    for month in range(1, 7):
        count = weeks_per_month.get(month, 0)
        months.append(
            MonthlyBreakdown(
                month=month,
                goal=f"Month {month} focus",
                activities=[f"activity {month}a", f"activity {month}b"],
                weeks=[
                    WeeklyBreakdown(week=w, plan=f"M{month} week {w}") for w in range(1, count + 1)
                ],
            )
        )
    return GoalPlanOption(
        plan_number=plan_number,
        title=title,
        purpose="Regain a stable daily rhythm",
        six_month_goal="Keep a regular wake-up time and attend the day program",
        monthly_goals=months,
    )


def structured_plan(number: int, weekly_months: tuple[int, ...] = (1,)) -> dict[str, Any]:
    """One plan object in the workflow's structured shape."""
    weekly_plans = []
    for month in weekly_months:
        for local in range(1, 5):
            weekly_plans.append(
                {"week": (month - 1) * 4 + local, "month": month, "plan": f"P{number} M{month} W{local}"}
            )
    return {
        "plan_number": number,
        "title": f"목표 {number}: Plan {number}",
        "purpose": f"Purpose {number}",
        "sixMonthGoal": f"Six-month goal {number}",
        "monthlyGoals": [
            {"month": m, "goal": f"P{number} month {m}", "activities": ["walk", "journal"]}
            for m in range(1, 7)
        ],
        "weeklyPlans": weekly_plans,
    }


@pytest.fixture
def sample_option() -> GoalPlanOption:
    """Option with weekly breakdowns in months 1 and 3 only."""
    return make_option({1: 4, 3: 4})


@pytest.fixture
def structured_payload() -> list[dict[str, Any]]:
    return [structured_plan(n) for n in (1, 2, 3)]


@pytest.fixture
def sequential_ids() -> Callable[[], Callable[[], str]]:
    """Factory of deterministic id generators."""

    def factory() -> Callable[[], str]:
        counter = itertools.count(1)
        return lambda: f"goal-{next(counter):03d}"

    return factory


@pytest.fixture
def option_factory() -> Callable[..., GoalPlanOption]:
    return make_option


@pytest.fixture
def plan_factory() -> Callable[..., dict[str, Any]]:
    return structured_plan
