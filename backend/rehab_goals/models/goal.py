"""Goal tree models.

A goal tree has one six-month root, its monthly children and their weekly
children. Each node maps to one row of the ``rehabilitation_goals`` table.
"""

from collections.abc import Iterator
from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class GoalType(str, Enum):
    """Level of a goal in the tree."""

    SIX_MONTH = "six_month"
    MONTHLY = "monthly"
    WEEKLY = "weekly"


class GoalStatus(str, Enum):
    """Progress status of a goal."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class PlanStatus(str, Enum):
    """Whether a goal belongs to the patient's current plan.

    ``inactive`` is the soft-deactivation flag; rows are never deleted.
    """

    ACTIVE = "active"
    INACTIVE = "inactive"


class GoalNode(BaseModel):
    """One goal with its children."""

    id: str
    parent_id: str | None = None
    patient_id: str
    created_by: str | None = None
    goal_type: GoalType
    sequence_number: int = Field(ge=1)
    title: str
    description: str = ""
    start_date: date
    end_date: date
    status: GoalStatus = GoalStatus.PENDING
    plan_status: PlanStatus = PlanStatus.ACTIVE
    progress: int = Field(default=0, ge=0, le=100)
    is_ai_suggested: bool = False
    source_recommendation_id: str | None = None
    children: list["GoalNode"] = Field(default_factory=list)

    @property
    def span_days(self) -> int:
        """Inclusive length of the node's date range in days."""
        return (self.end_date - self.start_date).days + 1

    def walk(self) -> Iterator["GoalNode"]:
        """Yield this node and every descendant, parents before children."""
        yield self
        for child in self.children:
            yield from child.walk()

    def ordered_children(self) -> list["GoalNode"]:
        """Children sorted by sequence number, then start date."""
        return sorted(self.children, key=lambda c: (c.sequence_number, c.start_date))

    def to_row(self) -> dict[str, Any]:
        """Serialize this node (without children) as a ``rehabilitation_goals`` row."""
        return {
            "id": self.id,
            "parent_goal_id": self.parent_id,
            "patient_id": self.patient_id,
            "created_by_social_worker_id": self.created_by,
            "goal_type": self.goal_type.value,
            "sequence_number": self.sequence_number,
            "title": self.title,
            "description": self.description,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status.value,
            "plan_status": self.plan_status.value,
            "progress": self.progress,
            "is_ai_suggested": self.is_ai_suggested,
            "is_from_ai_recommendation": self.source_recommendation_id is not None,
            "source_recommendation_id": self.source_recommendation_id,
        }

    def to_rows(self) -> list[dict[str, Any]]:
        """Serialize the whole subtree, parents before children."""
        return [node.to_row() for node in self.walk()]

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "GoalNode":
        """Build a childless node from a ``rehabilitation_goals`` row."""
        return cls(
            id=row["id"],
            parent_id=row.get("parent_goal_id"),
            patient_id=row["patient_id"],
            created_by=row.get("created_by_social_worker_id"),
            goal_type=GoalType(row["goal_type"]),
            sequence_number=row.get("sequence_number") or 1,
            title=row.get("title") or "",
            description=row.get("description") or "",
            start_date=row["start_date"],
            end_date=row["end_date"],
            status=GoalStatus(row.get("status") or GoalStatus.PENDING.value),
            plan_status=PlanStatus(row.get("plan_status") or PlanStatus.ACTIVE.value),
            progress=row.get("progress") or 0,
            is_ai_suggested=bool(row.get("is_ai_suggested")),
            source_recommendation_id=row.get("source_recommendation_id"),
        )


def assemble_trees(rows: list[dict[str, Any]]) -> list[GoalNode]:
    """Link flat goal rows into trees.

    Rows whose parent is not part of ``rows`` become roots. Children are
    ordered by sequence number, then start date.

    Args:
        rows: Rows from the ``rehabilitation_goals`` table.

    Returns:
        Root nodes ordered by start date.
    """
    nodes = {row["id"]: GoalNode.from_row(row) for row in rows}
    roots: list[GoalNode] = []
    for node in nodes.values():
        parent = nodes.get(node.parent_id) if node.parent_id else None
        if parent is None:
            roots.append(node)
        else:
            parent.children.append(node)

    for node in nodes.values():
        node.children = node.ordered_children()

    return sorted(roots, key=lambda n: (n.start_date, n.id))
