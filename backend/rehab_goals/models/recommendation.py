"""Recommendation models.

Covers the record the external workflow writes and the canonical plan
options the parser produces from it.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RecommendationStatus(str, Enum):
    """Processing status of a recommendation record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether polling should stop at this status."""
        return self in (RecommendationStatus.COMPLETED, RecommendationStatus.FAILED)


class RecommendationRecord(BaseModel):
    """Read-only view of an ``ai_goal_recommendations`` row."""

    id: str
    assessment_id: str
    patient_id: str | None = None
    status: RecommendationStatus = RecommendationStatus.PENDING
    recommendations: Any = None
    reasoning: str | None = None
    error: Any = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RecommendationRecord":
        """Build a record from a database row.

        The workflow writes its status to ``n8n_processing_status``; older
        rows use ``status``. Unknown statuses are treated as still pending.
        """
        raw_status = row.get("n8n_processing_status") or row.get("status")
        try:
            status = RecommendationStatus(raw_status)
        except ValueError:
            status = RecommendationStatus.PENDING

        return cls(
            id=row["id"],
            assessment_id=row["assessment_id"],
            patient_id=row.get("patient_id"),
            status=status,
            recommendations=row.get("recommendations") or row.get("recommendation_data"),
            reasoning=row.get("reasoning"),
            error=row.get("error") or row.get("error_message"),
            created_at=row.get("created_at"),
        )


class WeeklyBreakdown(BaseModel):
    """One weekly step of a monthly breakdown."""

    week: int = Field(ge=1, description="Position within the month, 1-based")
    plan: str
    description: str = ""


class MonthlyBreakdown(BaseModel):
    """One month of a plan option."""

    month: int = Field(ge=1, le=6)
    goal: str
    activities: list[str] = Field(default_factory=list)
    weeks: list[WeeklyBreakdown] = Field(default_factory=list)


class GoalPlanOption(BaseModel):
    """One candidate plan proposed by the workflow."""

    plan_number: int = Field(ge=1)
    title: str
    purpose: str = ""
    six_month_goal: str = ""
    monthly_goals: list[MonthlyBreakdown] = Field(default_factory=list)

    def month(self, number: int) -> MonthlyBreakdown | None:
        """Breakdown for month ``number`` (1-based), if the option has one."""
        for breakdown in self.monthly_goals:
            if breakdown.month == number:
                return breakdown
        return None


class ParseTier(str, Enum):
    """Which extraction strategy produced a parsed plan."""

    STRUCTURED = "structured"
    MARKED = "marked"
    UNMARKED = "unmarked"
    EQUAL_SPLIT = "equal_split"
    UNPARSEABLE = "unparseable"


TIER_CONFIDENCE: dict[ParseTier, float] = {
    ParseTier.STRUCTURED: 1.0,
    ParseTier.MARKED: 0.7,
    ParseTier.UNMARKED: 0.5,
    ParseTier.EQUAL_SPLIT: 0.2,
    ParseTier.UNPARSEABLE: 0.0,
}

OPTIONS_PER_PLAN = 3


class ParsedPlan(BaseModel):
    """Canonical parser output: exactly three options, or none."""

    tier: ParseTier
    options: list[GoalPlanOption] = Field(default_factory=list)
    reasoning: str | None = None
    recommendation_id: str | None = None

    @property
    def confidence(self) -> float:
        """Confidence attached to the tier that produced the options."""
        return TIER_CONFIDENCE[self.tier]

    @property
    def is_empty(self) -> bool:
        """True when no tier could produce a full set of options."""
        return not self.options

    @property
    def needs_review(self) -> bool:
        """True when options came from text heuristics and the user should be warned."""
        return self.tier not in (ParseTier.STRUCTURED, ParseTier.UNPARSEABLE)
