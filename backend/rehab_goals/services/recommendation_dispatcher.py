"""Send assessments to the external goal-generation workflow.

Each assessment is posted exactly once. The workflow answers asynchronously
by writing an ``ai_goal_recommendations`` row, which
:mod:`rehab_goals.services.recommendation_poller` picks up.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from rehab_goals.core.config import settings
from rehab_goals.core.exceptions import DispatchError, ValidationError
from rehab_goals.core.locks import KeyedLock
from rehab_goals.models.assessment import AssessmentRecord, DispatchReceipt, PatientSummary

logger = logging.getLogger(__name__)


class RecommendationDispatcher:
    """Posts one webhook request per assessment."""

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout_seconds: float | None = None,
        callback_url: str | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            webhook_url: Workflow endpoint. Defaults to ``GOAL_WORKFLOW_WEBHOOK_URL``.
            timeout_seconds: Request timeout. Defaults to ``GOAL_WORKFLOW_TIMEOUT_SECONDS``.
            callback_url: URL the workflow reports back to. Defaults to
                the configured ``APP_URL`` plus the webhook path.
        """
        self._webhook_url = webhook_url or settings.GOAL_WORKFLOW_WEBHOOK_URL
        self._timeout = timeout_seconds or settings.GOAL_WORKFLOW_TIMEOUT_SECONDS
        self._callback_url = callback_url or settings.callback_url
        self._receipts: dict[str, DispatchReceipt] = {}
        self._locks = KeyedLock("dispatch")

    def build_payload(
        self, assessment: AssessmentRecord, patient: PatientSummary
    ) -> dict[str, Any]:
        """Build the JSON body the workflow expects."""
        payload: dict[str, Any] = {
            "assessmentId": assessment.id,
            "patientId": assessment.patient_id,
            "patientInfo": {
                "age": patient.age,
                "gender": patient.gender,
                "diagnosis": patient.diagnosis,
            },
            "assessmentData": {
                "focusTime": assessment.focus_time.value,
                "motivationLevel": assessment.motivation_level,
                "pastSuccesses": list(assessment.past_successes),
                "constraints": list(assessment.constraints),
                "socialPreference": assessment.social_preference.value,
            },
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if self._callback_url:
            payload["callbackUrl"] = self._callback_url
        return payload

    def was_dispatched(self, assessment_id: str) -> bool:
        """Whether this dispatcher already delivered ``assessment_id``."""
        return assessment_id in self._receipts

    async def dispatch(
        self, assessment: AssessmentRecord, patient: PatientSummary
    ) -> DispatchReceipt:
        """Post the assessment to the workflow.

        A second call for the same assessment returns the first receipt
        marked ``duplicate`` without contacting the workflow again.

        Args:
            assessment: Saved assessment to send.
            patient: Demographics of the assessed patient.

        Returns:
            Receipt for the delivery.

        Raises:
            ValidationError: If no webhook URL is configured or the patient
                does not match the assessment.
            DispatchError: On network failure or a non-2xx response. Never retried here.
        """
        if not self._webhook_url:
            raise ValidationError("Goal workflow webhook URL is not configured", field="webhook_url")
        if patient.id != assessment.patient_id:
            raise ValidationError(
                "Patient does not match the assessment",
                field="patient_id",
                details={"assessment_id": assessment.id},
            )

        async with self._locks.hold(assessment.id):
            previous = self._receipts.get(assessment.id)
            if previous is not None:
                logger.info(
                    "Assessment already dispatched; skipping",
                    extra={"assessment_id": assessment.id},
                )
                return previous.model_copy(update={"duplicate": True})

            payload = self.build_payload(assessment, patient)
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._webhook_url, json=payload)
                    response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(
                    "Goal workflow rejected assessment",
                    extra={
                        "assessment_id": assessment.id,
                        "status_code": e.response.status_code,
                    },
                )
                raise DispatchError(
                    assessment.id,
                    f"workflow responded with HTTP {e.response.status_code}",
                    status_code_received=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                logger.error(
                    "Goal workflow unreachable",
                    extra={"assessment_id": assessment.id, "error": str(e)},
                )
                raise DispatchError(assessment.id, str(e) or type(e).__name__) from e

            receipt = DispatchReceipt(
                assessment_id=assessment.id,
                status_code=response.status_code,
                dispatched_at=datetime.now(UTC),
            )
            self._receipts[assessment.id] = receipt
            logger.info(
                "Assessment dispatched to goal workflow",
                extra={"assessment_id": assessment.id, "status_code": response.status_code},
            )
            return receipt
