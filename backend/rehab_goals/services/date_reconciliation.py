"""Date reconciliation for six-month goal trees.

All dates are calendar dates and every range is inclusive. A plan is laid
out with a single cursor that starts at the tree's start date:

- a weekly goal covers 7 days starting at the cursor;
- a month with weekly goals spans from its first week's start to its last
  week's end;
- a month without weekly goals gets a fixed 28-day span;
- the six-month goal ends where its last month ends.

Parent ranges are always derived from their children, never computed on
their own (adding six calendar months to the start date drifts away from
the children as soon as the weeks don't line up with calendar months).

Functions here are pure. Persisting the results is the job of
:mod:`rehab_goals.services.goal_schedule_service` and
:mod:`rehab_goals.services.goal_persister`.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum

from rehab_goals.models.goal import GoalNode, GoalStatus, GoalType

WEEK_LENGTH_DAYS = 7
DEFAULT_MONTH_SPAN_DAYS = 28
MONTHS_PER_PLAN = 6
MAX_WEEKS_PER_MONTH = 4

STALE_DATES_WARNING = (
    "Goal dates were recomputed but goal identities were kept; check-ins and "
    "notes recorded against the old calendar dates may no longer line up."
)


@dataclass(frozen=True)
class DateSpan:
    """Inclusive calendar range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Span ends before it starts: {self.start} > {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def next_start(self) -> date:
        """First day after the span."""
        return self.end + timedelta(days=1)


@dataclass(frozen=True)
class MonthSchedule:
    span: DateSpan
    weeks: tuple[DateSpan, ...] = ()


@dataclass(frozen=True)
class PlanSchedule:
    span: DateSpan
    months: tuple[MonthSchedule, ...]


def schedule_month(start: date, week_count: int) -> MonthSchedule:
    """Lay out one month starting at ``start``.

    Args:
        start: First day of the month.
        week_count: Number of weekly goals, 0 to 4.

    Returns:
        The month's span and its weekly spans.

    Raises:
        ValueError: If ``week_count`` is out of range.
    """
    if not 0 <= week_count <= MAX_WEEKS_PER_MONTH:
        raise ValueError(f"A month holds 0 to {MAX_WEEKS_PER_MONTH} weeks, got {week_count}")

    if week_count == 0:
        return MonthSchedule(DateSpan(start, start + timedelta(days=DEFAULT_MONTH_SPAN_DAYS - 1)))

    weeks: list[DateSpan] = []
    cursor = start
    for _ in range(week_count):
        week = DateSpan(cursor, cursor + timedelta(days=WEEK_LENGTH_DAYS - 1))
        weeks.append(week)
        cursor = week.next_start

    return MonthSchedule(DateSpan(start, weeks[-1].end), tuple(weeks))


def schedule_plan(
    start: date,
    weekly_counts: Sequence[int],
    month_count: int = MONTHS_PER_PLAN,
) -> PlanSchedule:
    """Lay out a whole plan.

    Args:
        start: Start date of the six-month goal.
        weekly_counts: Weekly goal count per month, in month order. Missing
            trailing months count as having no weekly goals.
        month_count: Number of monthly goals in the plan.

    Returns:
        Contiguous schedule whose span ends with the last month.

    Raises:
        ValueError: If the counts don't fit the plan shape.
    """
    if month_count < 1:
        raise ValueError("A plan needs at least one month")
    if len(weekly_counts) > month_count:
        raise ValueError(f"Got weekly counts for {len(weekly_counts)} months, plan has {month_count}")

    counts = list(weekly_counts) + [0] * (month_count - len(weekly_counts))
    months: list[MonthSchedule] = []
    cursor = start
    for count in counts:
        month = schedule_month(cursor, count)
        months.append(month)
        cursor = month.span.next_start

    return PlanSchedule(DateSpan(start, months[-1].span.end), tuple(months))


def find_date_violations(root: GoalNode) -> list[str]:
    """Check a six-month tree against the scheduling invariants.

    Returns:
        Human-readable problems; empty when the tree is consistent.
    """
    problems: list[str] = []
    if root.goal_type is not GoalType.SIX_MONTH:
        problems.append(f"Root goal {root.id} is {root.goal_type.value}, expected six_month")

    months = root.ordered_children()
    if len(months) != MONTHS_PER_PLAN:
        problems.append(f"Six-month goal {root.id} has {len(months)} monthly goals, expected 6")

    for node in root.walk():
        if node.end_date < node.start_date:
            problems.append(f"Goal {node.id} ends before it starts")

    problems.extend(_check_siblings(root, months, GoalType.MONTHLY))
    for month in months:
        weeks = month.ordered_children()
        if len(weeks) > MAX_WEEKS_PER_MONTH:
            problems.append(f"Monthly goal {month.id} has {len(weeks)} weekly goals, max is 4")
        if weeks:
            problems.extend(_check_siblings(month, weeks, GoalType.WEEKLY))
    return problems


def _check_siblings(parent: GoalNode, children: list[GoalNode], expected: GoalType) -> list[str]:
    problems: list[str] = []
    if not children:
        return problems

    for position, child in enumerate(children, start=1):
        if child.goal_type is not expected:
            problems.append(f"Goal {child.id} under {parent.id} is {child.goal_type.value}")
        if child.sequence_number != position:
            problems.append(
                f"Goal {child.id} has sequence {child.sequence_number}, expected {position}"
            )

    for previous, current in zip(children, children[1:]):
        gap = (current.start_date - previous.end_date).days
        if gap < 1:
            problems.append(f"Goals {previous.id} and {current.id} overlap")
        elif gap > 1:
            problems.append(f"Gap of {gap - 1} days between goals {previous.id} and {current.id}")

    if children[0].start_date != parent.start_date:
        problems.append(f"First child of {parent.id} does not start with its parent")
    if children[-1].end_date != parent.end_date:
        problems.append(f"Last child of {parent.id} does not end with its parent")
    return problems


class ReconcileMode(str, Enum):
    """How a start-date edit propagates through a tree."""

    SHALLOW = "shallow"  # six-month goal only, descendants untouched
    FULL = "full"  # recompute every descendant from the new start


@dataclass
class RescheduleResult:
    tree: GoalNode
    mode: ReconcileMode
    changed_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def reschedule_tree(root: GoalNode, new_start: date, mode: ReconcileMode) -> RescheduleResult:
    """Move a six-month tree to a new start date.

    The input tree is not modified.

    Args:
        root: Six-month goal with its monthly and weekly children.
        new_start: New start date for the six-month goal.
        mode: ``SHALLOW`` shifts only the root (keeping its length);
            ``FULL`` re-lays out every descendant and renumbers siblings.

    Returns:
        The rescheduled copy, the ids of nodes whose dates or sequence
        numbers changed, and warnings for the caller.
    """
    if root.goal_type is not GoalType.SIX_MONTH:
        raise ValueError(f"Only six-month goals can be rescheduled, got {root.goal_type.value}")

    before = {node.id: (node.start_date, node.end_date, node.sequence_number) for node in root.walk()}
    tree = root.model_copy(deep=True)
    warnings: list[str] = []

    if mode is ReconcileMode.SHALLOW:
        length = tree.end_date - tree.start_date
        tree.start_date = new_start
        tree.end_date = new_start + length
        if tree.children:
            warnings.append(
                "Only the six-month goal was moved; monthly and weekly dates were left unchanged."
            )
    else:
        warnings.extend(_recompute(tree, new_start))
        warnings.append(STALE_DATES_WARNING)
        tracked = [
            node
            for node in tree.walk()
            if node is not tree and (node.progress > 0 or node.status is GoalStatus.COMPLETED)
        ]
        if tracked:
            warnings.append(f"{len(tracked)} goals with recorded progress were moved to new dates.")

    changed = [
        node.id
        for node in tree.walk()
        if before[node.id] != (node.start_date, node.end_date, node.sequence_number)
    ]
    return RescheduleResult(tree=tree, mode=mode, changed_ids=changed, warnings=warnings)


def _recompute(tree: GoalNode, new_start: date) -> list[str]:
    """Re-lay out ``tree`` in place. Returns warnings about skipped nodes."""
    warnings: list[str] = []
    months = [c for c in tree.ordered_children() if c.goal_type is GoalType.MONTHLY]
    if len(months) != len(tree.children):
        warnings.append("Children of the six-month goal that are not monthly goals were skipped.")

    if not months:
        schedule = schedule_plan(new_start, [])
        tree.start_date = schedule.span.start
        tree.end_date = schedule.span.end
        return warnings

    ordered_weeks = [m.ordered_children() for m in months]
    weeks_by_month = [w[:MAX_WEEKS_PER_MONTH] for w in ordered_weeks]
    schedule = schedule_plan(new_start, [len(w) for w in weeks_by_month], month_count=len(months))

    for seq, (month, all_weeks, weeks, month_plan) in enumerate(
        zip(months, ordered_weeks, weeks_by_month, schedule.months), start=1
    ):
        month.sequence_number = seq
        month.start_date = month_plan.span.start
        month.end_date = month_plan.span.end
        for week_seq, (week, span) in enumerate(zip(weeks, month_plan.weeks), start=1):
            week.sequence_number = week_seq
            week.start_date = span.start
            week.end_date = span.end
        month.children = all_weeks
        if len(month.children) > MAX_WEEKS_PER_MONTH:
            warnings.append(
                f"Monthly goal {month.id} has more than {MAX_WEEKS_PER_MONTH} weekly goals; "
                "the extra ones kept their old dates."
            )

    tree.children = months + [c for c in tree.children if c.goal_type is not GoalType.MONTHLY]
    tree.start_date = schedule.span.start
    tree.end_date = schedule.span.end
    return warnings
