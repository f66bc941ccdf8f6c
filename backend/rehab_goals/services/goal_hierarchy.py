"""Build a dated goal tree from a selected plan option.

The tree always has one six-month goal and six monthly goals. Each monthly
goal gets the option's weekly breakdowns for that month (at most four).
Dates come from :func:`rehab_goals.services.date_reconciliation.schedule_plan`.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import date

from rehab_goals.models.goal import GoalNode, GoalStatus, GoalType
from rehab_goals.models.recommendation import GoalPlanOption, MonthlyBreakdown
from rehab_goals.services.date_reconciliation import (
    MAX_WEEKS_PER_MONTH,
    MONTHS_PER_PLAN,
    schedule_plan,
)

logger = logging.getLogger(__name__)


def _uuid4() -> str:
    return str(uuid.uuid4())


class GoalHierarchyBuilder:
    """Turns a :class:`GoalPlanOption` into an unsaved :class:`GoalNode` tree."""

    def __init__(self, id_factory: Callable[[], str] | None = None) -> None:
        """Initialize the builder.

        Args:
            id_factory: Produces node ids. Defaults to random UUIDs; pass a
                deterministic factory to get reproducible trees.
        """
        self._new_id = id_factory or _uuid4

    def build(
        self,
        option: GoalPlanOption,
        patient_id: str,
        created_by: str,
        start_date: date,
        source_recommendation_id: str | None = None,
    ) -> GoalNode:
        """Build the full goal tree.

        Args:
            option: Selected plan option.
            patient_id: Owning patient.
            created_by: Acting user.
            start_date: First day of the six-month goal.
            source_recommendation_id: Recommendation record the option came from.

        Returns:
            Six-month root with six monthly children and their weekly children.
        """
        months = [option.month(n) for n in range(1, MONTHS_PER_PLAN + 1)]
        weekly_counts = [self._week_count(option, m) for m in months]
        schedule = schedule_plan(start_date, weekly_counts)

        common = {
            "patient_id": patient_id,
            "created_by": created_by,
            "is_ai_suggested": True,
            "source_recommendation_id": source_recommendation_id,
        }

        root = GoalNode(
            id=self._new_id(),
            goal_type=GoalType.SIX_MONTH,
            sequence_number=1,
            title=option.title or option.six_month_goal or "Six-month goal",
            description=option.six_month_goal or option.purpose,
            start_date=schedule.span.start,
            end_date=schedule.span.end,
            status=GoalStatus.ACTIVE,
            **common,
        )

        for month_number, (breakdown, month_plan) in enumerate(
            zip(months, schedule.months), start=1
        ):
            monthly = GoalNode(
                id=self._new_id(),
                parent_id=root.id,
                goal_type=GoalType.MONTHLY,
                sequence_number=month_number,
                title=breakdown.goal if breakdown and breakdown.goal else f"Month {month_number} goal",
                description=", ".join(breakdown.activities) if breakdown else "",
                start_date=month_plan.span.start,
                end_date=month_plan.span.end,
                status=GoalStatus.ACTIVE if month_number == 1 else GoalStatus.PENDING,
                **common,
            )
            weeks = sorted(breakdown.weeks, key=lambda w: w.week) if breakdown else []
            for week_number, (week, span) in enumerate(zip(weeks, month_plan.weeks), start=1):
                monthly.children.append(
                    GoalNode(
                        id=self._new_id(),
                        parent_id=monthly.id,
                        goal_type=GoalType.WEEKLY,
                        sequence_number=week_number,
                        title=week.plan or f"Week {week_number} goal",
                        description=week.description,
                        start_date=span.start,
                        end_date=span.end,
                        status=(
                            GoalStatus.ACTIVE
                            if month_number == 1 and week_number == 1
                            else GoalStatus.PENDING
                        ),
                        **common,
                    )
                )
            root.children.append(monthly)

        logger.info(
            "Goal tree built",
            extra={
                "patient_id": patient_id,
                "plan_number": option.plan_number,
                "start_date": root.start_date.isoformat(),
                "end_date": root.end_date.isoformat(),
                "weekly_goals": sum(weekly_counts),
            },
        )
        return root

    @staticmethod
    def _week_count(option: GoalPlanOption, breakdown: MonthlyBreakdown | None) -> int:
        if breakdown is None:
            return 0
        if len(breakdown.weeks) > MAX_WEEKS_PER_MONTH:
            logger.warning(
                "Dropping extra weekly goals",
                extra={
                    "plan_number": option.plan_number,
                    "month": breakdown.month,
                    "weeks": len(breakdown.weeks),
                },
            )
        return min(len(breakdown.weeks), MAX_WEEKS_PER_MONTH)
