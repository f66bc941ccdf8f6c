"""Services package."""

from rehab_goals.services.assessment_service import AssessmentService
from rehab_goals.services.assessment_submitter import (
    AssessmentSubmitter,
    SubmissionOutcome,
    SubmissionResult,
)
from rehab_goals.services.date_reconciliation import (
    ReconcileMode,
    RescheduleResult,
    find_date_violations,
    reschedule_tree,
    schedule_plan,
)
from rehab_goals.services.goal_hierarchy import GoalHierarchyBuilder
from rehab_goals.services.goal_persister import GoalPersister, PersistReceipt
from rehab_goals.services.goal_schedule_service import GoalScheduleService
from rehab_goals.services.recommendation_cycle import CycleState, RecommendationCycle
from rehab_goals.services.recommendation_dispatcher import RecommendationDispatcher
from rehab_goals.services.recommendation_parser import classify_payload, parse_recommendation
from rehab_goals.services.recommendation_poller import (
    CancellationToken,
    PollHandle,
    RecommendationPoller,
    SupabaseRecommendationReader,
)

__all__ = [
    "AssessmentService",
    "AssessmentSubmitter",
    "CancellationToken",
    "CycleState",
    "GoalHierarchyBuilder",
    "GoalPersister",
    "GoalScheduleService",
    "PersistReceipt",
    "PollHandle",
    "RecommendationCycle",
    "RecommendationDispatcher",
    "RecommendationPoller",
    "ReconcileMode",
    "RescheduleResult",
    "SubmissionOutcome",
    "SubmissionResult",
    "SupabaseRecommendationReader",
    "classify_payload",
    "find_date_violations",
    "parse_recommendation",
    "reschedule_tree",
    "schedule_plan",
]
