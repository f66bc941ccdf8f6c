"""Custom exceptions for the rehabilitation goal pipeline."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "DatabaseError": "A database error occurred. Please try again.",
    "DispatchError": "The goal recommendation service could not be reached. Please try again.",
    "RecommendationFailedError": "Goal recommendation failed. Please request new recommendations.",
    "RecommendationTimeoutError": (
        "Goal recommendation is taking longer than expected. Please try again shortly."
    ),
    "ParseError": "No goal options are available for this assessment.",
    "PersistenceError": "The goal plan could not be saved. Please retry selecting the plan.",
    "InvalidTransitionError": "This operation is not allowed in the current state.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the MRO so subclasses inherit the closest registered message.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class RehabGoalsError(Exception):
    """Base exception for all goal pipeline errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code an API layer should use.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(RehabGoalsError):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class ValidationError(RehabGoalsError):
    """Input validation error (400)."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the invalid field.
            details: Additional validation details.
        """
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=error_details,
        )


class DatabaseError(RehabGoalsError):
    """Database operation error (500)."""

    retryable = True

    def __init__(self, message: str = "A database error occurred") -> None:
        """Initialize database error.

        Args:
            message: Error message.
        """
        super().__init__(
            message=message,
            code="DATABASE_ERROR",
            status_code=500,
        )


class DispatchError(RehabGoalsError):
    """Outbound call to the goal workflow failed (502).

    Never retried internally; the caller decides whether to try again.
    """

    retryable = True

    def __init__(
        self,
        assessment_id: str,
        message: str,
        status_code_received: int | None = None,
    ) -> None:
        """Initialize dispatch error.

        Args:
            assessment_id: Assessment whose payload could not be delivered.
            message: Error details.
            status_code_received: HTTP status returned by the workflow, if any.
        """
        super().__init__(
            message=f"Failed to dispatch assessment {assessment_id}: {message}",
            code="DISPATCH_ERROR",
            status_code=502,
            details={
                "assessment_id": assessment_id,
                "status_code_received": status_code_received,
            },
        )
        self.assessment_id = assessment_id
        self.status_code_received = status_code_received


class RecommendationFailedError(RehabGoalsError):
    """The external workflow marked the recommendation as failed (502)."""

    retryable = True

    def __init__(self, assessment_id: str, error: Any = None) -> None:
        """Initialize recommendation failure.

        Args:
            assessment_id: Assessment the recommendation belongs to.
            error: Error payload written by the workflow, if any.
        """
        super().__init__(
            message=f"Recommendation for assessment {assessment_id} failed",
            code="RECOMMENDATION_FAILED",
            status_code=502,
            details={"assessment_id": assessment_id, "error": error},
        )
        self.assessment_id = assessment_id
        self.error = error


class RecommendationTimeoutError(RehabGoalsError):
    """Polling budget exhausted before the recommendation reached a terminal status (504).

    Only this side's wait ends; the external job keeps running.
    """

    retryable = True

    def __init__(self, assessment_id: str, attempts: int) -> None:
        """Initialize timeout error.

        Args:
            assessment_id: Assessment being polled.
            attempts: Number of reads performed before giving up.
        """
        super().__init__(
            message=(
                f"Recommendation for assessment {assessment_id} not ready after {attempts} checks"
            ),
            code="RECOMMENDATION_TIMEOUT",
            status_code=504,
            details={"assessment_id": assessment_id, "attempts": attempts},
        )
        self.assessment_id = assessment_id
        self.attempts = attempts


class ParseError(RehabGoalsError):
    """No parser tier could produce a full set of plan options (422)."""

    def __init__(self, message: str = "Recommendation payload could not be parsed") -> None:
        """Initialize parse error.

        Args:
            message: Error details.
        """
        super().__init__(
            message=message,
            code="PARSE_ERROR",
            status_code=422,
        )


class PersistenceError(RehabGoalsError):
    """Replacing the active goal tree failed part-way (500).

    ``previous_tree_deactivated`` tells the caller whether the patient is
    currently left without an active tree.
    """

    retryable = True

    def __init__(
        self,
        patient_id: str,
        stage: str,
        message: str,
        previous_tree_deactivated: bool = False,
    ) -> None:
        """Initialize persistence error.

        Args:
            patient_id: Patient whose goals were being replaced.
            stage: Step that failed (deactivate, insert, activate_patient, update).
            message: Error details.
            previous_tree_deactivated: Whether the old tree had already been deactivated.
        """
        super().__init__(
            message=f"Goal persistence failed at {stage} for patient {patient_id}: {message}",
            code="PERSISTENCE_ERROR",
            status_code=500,
            details={
                "patient_id": patient_id,
                "stage": stage,
                "previous_tree_deactivated": previous_tree_deactivated,
            },
        )
        self.patient_id = patient_id
        self.stage = stage
        self.previous_tree_deactivated = previous_tree_deactivated


class InvalidTransitionError(RehabGoalsError):
    """Illegal state change of a recommendation cycle (409)."""

    def __init__(self, current: str, target: str) -> None:
        """Initialize invalid transition error.

        Args:
            current: Current state.
            target: Requested state.
        """
        super().__init__(
            message=f"Cannot transition from '{current}' to '{target}'",
            code="INVALID_TRANSITION",
            status_code=409,
            details={"current": current, "target": target},
        )
