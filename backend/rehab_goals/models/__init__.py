"""Models package."""

from rehab_goals.models.assessment import (
    AssessmentCreate,
    AssessmentRecord,
    DispatchReceipt,
    FocusTime,
    PatientSummary,
    SocialPreference,
)
from rehab_goals.models.goal import GoalNode, GoalStatus, GoalType, PlanStatus, assemble_trees
from rehab_goals.models.recommendation import (
    GoalPlanOption,
    MonthlyBreakdown,
    ParsedPlan,
    ParseTier,
    RecommendationRecord,
    RecommendationStatus,
    WeeklyBreakdown,
)

__all__ = [
    "AssessmentCreate",
    "AssessmentRecord",
    "DispatchReceipt",
    "FocusTime",
    "GoalNode",
    "GoalPlanOption",
    "GoalStatus",
    "GoalType",
    "MonthlyBreakdown",
    "ParseTier",
    "ParsedPlan",
    "PatientSummary",
    "PlanStatus",
    "RecommendationRecord",
    "RecommendationStatus",
    "SocialPreference",
    "WeeklyBreakdown",
    "assemble_trees",
]
