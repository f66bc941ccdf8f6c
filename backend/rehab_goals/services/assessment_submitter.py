"""Assessment submitter.

Glues the pipeline into two user-facing operations:

``request_recommendations``
    save assessment -> dispatch -> poll -> parse
``apply_selection``
    build the chosen option's goal tree -> replace the active tree

Every pipeline error is converted into a :class:`SubmissionResult` with a
safe message and a retry hint. Cancellation is not an error: it propagates
as ``asyncio.CancelledError`` after the cycle is marked cancelled.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel

from rehab_goals.core.exceptions import (
    DispatchError,
    ParseError,
    PersistenceError,
    RecommendationFailedError,
    RecommendationTimeoutError,
    RehabGoalsError,
    ValidationError,
    sanitize_error,
)
from rehab_goals.models.assessment import AssessmentCreate
from rehab_goals.models.goal import GoalNode
from rehab_goals.models.recommendation import ParsedPlan
from rehab_goals.services.assessment_service import AssessmentService
from rehab_goals.services.goal_hierarchy import GoalHierarchyBuilder
from rehab_goals.services.goal_persister import GoalPersister
from rehab_goals.services.recommendation_cycle import CycleState, RecommendationCycle
from rehab_goals.services.recommendation_dispatcher import RecommendationDispatcher
from rehab_goals.services.recommendation_parser import parse_recommendation, require_options
from rehab_goals.services.recommendation_poller import CancellationToken, RecommendationPoller

logger = logging.getLogger(__name__)


class SubmissionOutcome(str, Enum):
    """What a submission step ended with."""

    RECOMMENDATIONS_READY = "recommendations_ready"
    GOALS_SAVED = "goals_saved"
    DISPATCH_FAILED = "dispatch_failed"
    RECOMMENDATION_FAILED = "recommendation_failed"
    TIMED_OUT = "timed_out"
    PARSE_FAILED = "parse_failed"
    PERSISTENCE_FAILED = "persistence_failed"
    INVALID_SELECTION = "invalid_selection"
    STORE_ERROR = "store_error"


_SUCCESS = frozenset({SubmissionOutcome.RECOMMENDATIONS_READY, SubmissionOutcome.GOALS_SAVED})


class SubmissionResult(BaseModel):
    """Single result type returned to the application layer."""

    outcome: SubmissionOutcome
    assessment_id: str | None = None
    plan: ParsedPlan | None = None
    goal_tree: GoalNode | None = None
    persist: dict[str, Any] | None = None
    error_code: str | None = None
    message: str | None = None
    retryable: bool = False
    cycle_state: CycleState | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome in _SUCCESS


class AssessmentSubmitter:
    """Runs the assessment-to-goal-tree pipeline."""

    def __init__(
        self,
        assessments: AssessmentService | None = None,
        dispatcher: RecommendationDispatcher | None = None,
        poller: RecommendationPoller | None = None,
        builder: GoalHierarchyBuilder | None = None,
        persister: GoalPersister | None = None,
    ) -> None:
        self._assessments = assessments or AssessmentService()
        self._dispatcher = dispatcher or RecommendationDispatcher()
        self._poller = poller or RecommendationPoller()
        self._builder = builder or GoalHierarchyBuilder()
        self._persister = persister or GoalPersister()

    async def request_recommendations(
        self,
        patient_id: str,
        user_id: str,
        data: AssessmentCreate,
        cancellation: CancellationToken | None = None,
    ) -> SubmissionResult:
        """Save an assessment and wait for its plan options.

        Args:
            patient_id: Assessed patient.
            user_id: Acting user.
            data: Intake form values.
            cancellation: Stops polling when cancelled.

        Returns:
            ``RECOMMENDATIONS_READY`` with the parsed plan, or a failure outcome.

        Raises:
            asyncio.CancelledError: If ``cancellation`` fired while polling.
        """
        try:
            patient = await self._assessments.get_patient_summary(patient_id)
            assessment = await self._assessments.save_assessment(patient_id, user_id, data)
        except RehabGoalsError as e:
            return self._failure(SubmissionOutcome.STORE_ERROR, e)

        cycle = RecommendationCycle(assessment.id)
        try:
            await self._dispatcher.dispatch(assessment, patient)
        except (DispatchError, ValidationError) as e:
            cycle.fail()
            return self._failure(SubmissionOutcome.DISPATCH_FAILED, e, cycle)
        cycle.mark_dispatched()

        cycle.mark_polling()
        try:
            record = await self._poller.poll(
                assessment.id,
                cancellation=cancellation,
                on_attempt=cycle.record_attempt,
            )
        except asyncio.CancelledError:
            cycle.cancel()
            raise
        except RecommendationFailedError as e:
            cycle.fail()
            return self._failure(SubmissionOutcome.RECOMMENDATION_FAILED, e, cycle)
        except RecommendationTimeoutError as e:
            cycle.time_out()
            return self._failure(SubmissionOutcome.TIMED_OUT, e, cycle)
        except RehabGoalsError as e:
            cycle.fail()
            return self._failure(SubmissionOutcome.STORE_ERROR, e, cycle)
        cycle.complete()

        try:
            plan = require_options(parse_recommendation(record))
        except ParseError as e:
            return self._failure(SubmissionOutcome.PARSE_FAILED, e, cycle)

        if plan.needs_review:
            logger.warning(
                "Plan options were extracted from free text",
                extra={"assessment_id": assessment.id, "tier": plan.tier.value},
            )
        return SubmissionResult(
            outcome=SubmissionOutcome.RECOMMENDATIONS_READY,
            assessment_id=assessment.id,
            plan=plan,
            cycle_state=cycle.state,
            attempts=cycle.attempts,
        )

    async def apply_selection(
        self,
        patient_id: str,
        user_id: str,
        plan: ParsedPlan,
        plan_number: int,
        start_date: date | None = None,
        assessment_id: str | None = None,
    ) -> SubmissionResult:
        """Build and save the goal tree for the selected option.

        Args:
            patient_id: Patient the plan is for.
            user_id: Acting user.
            plan: Options returned by :meth:`request_recommendations`.
            plan_number: ``plan_number`` of the chosen option.
            start_date: First day of the six-month goal. Defaults to today.
            assessment_id: Assessment the plan came from, echoed in the result.

        Returns:
            ``GOALS_SAVED`` with the tree, or a failure outcome.
        """
        option = next((o for o in plan.options if o.plan_number == plan_number), None)
        if option is None:
            error = ValidationError(
                f"Plan option {plan_number} does not exist",
                field="plan_number",
                details={"available": [o.plan_number for o in plan.options]},
            )
            return self._failure(
                SubmissionOutcome.INVALID_SELECTION, error, assessment_id=assessment_id
            )

        tree = self._builder.build(
            option,
            patient_id=patient_id,
            created_by=user_id,
            start_date=start_date or date.today(),
            source_recommendation_id=plan.recommendation_id,
        )
        try:
            receipt = await self._persister.replace_active_tree(patient_id, tree)
        except PersistenceError as e:
            return self._failure(
                SubmissionOutcome.PERSISTENCE_FAILED, e, assessment_id=assessment_id
            )
        except ValidationError as e:
            return self._failure(
                SubmissionOutcome.INVALID_SELECTION, e, assessment_id=assessment_id
            )

        return SubmissionResult(
            outcome=SubmissionOutcome.GOALS_SAVED,
            assessment_id=assessment_id,
            plan=plan,
            goal_tree=tree,
            persist=receipt.to_dict(),
        )

    async def run(
        self,
        patient_id: str,
        user_id: str,
        data: AssessmentCreate,
        select: Callable[[ParsedPlan], Awaitable[int | None]],
        start_date: date | None = None,
        cancellation: CancellationToken | None = None,
    ) -> SubmissionResult:
        """Run the whole pipeline with ``select`` choosing the option.

        ``select`` receives the parsed plan and returns a ``plan_number``,
        or None to stop without saving goals.
        """
        ready = await self.request_recommendations(patient_id, user_id, data, cancellation)
        if not ready.ok or ready.plan is None:
            return ready

        plan_number = await select(ready.plan)
        if plan_number is None:
            logger.info("No plan selected", extra={"assessment_id": ready.assessment_id})
            return ready

        saved = await self.apply_selection(
            patient_id,
            user_id,
            ready.plan,
            plan_number,
            start_date=start_date,
            assessment_id=ready.assessment_id,
        )
        return saved.model_copy(
            update={"cycle_state": ready.cycle_state, "attempts": ready.attempts}
        )

    @staticmethod
    def _failure(
        outcome: SubmissionOutcome,
        error: RehabGoalsError,
        cycle: RecommendationCycle | None = None,
        assessment_id: str | None = None,
    ) -> SubmissionResult:
        logger.warning(
            "Submission step failed",
            extra={
                "outcome": outcome.value,
                "error_code": error.code,
                "error": error.message,
                "assessment_id": cycle.assessment_id if cycle else assessment_id,
            },
        )
        return SubmissionResult(
            outcome=outcome,
            assessment_id=cycle.assessment_id if cycle else assessment_id,
            error_code=error.code,
            message=sanitize_error(error),
            retryable=error.retryable,
            cycle_state=cycle.state if cycle else None,
            attempts=cycle.attempts if cycle else 0,
        )
