"""State of one request/poll round trip for a single assessment.

A cycle moves ``idle -> dispatched -> polling`` and ends in exactly one of
``completed``, ``failed``, ``timed_out`` or ``cancelled``. Illegal moves
raise :class:`InvalidTransitionError` instead of being ignored, so a stale
callback cannot resurrect a finished cycle.
"""

import enum
import logging
from datetime import UTC, datetime

from rehab_goals.core.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


class CycleState(str, enum.Enum):
    """Recommendation cycle states."""

    IDLE = "idle"
    DISPATCHED = "dispatched"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in _FINAL_STATES


_FINAL_STATES = frozenset(
    {CycleState.COMPLETED, CycleState.FAILED, CycleState.TIMED_OUT, CycleState.CANCELLED}
)

_ALLOWED: dict[CycleState, frozenset[CycleState]] = {
    CycleState.IDLE: frozenset({CycleState.DISPATCHED, CycleState.FAILED, CycleState.CANCELLED}),
    CycleState.DISPATCHED: frozenset({CycleState.POLLING, CycleState.CANCELLED}),
    CycleState.POLLING: _FINAL_STATES,
}


class RecommendationCycle:
    """Tracks one assessment's recommendation cycle.

    Args:
        assessment_id: Assessment the cycle belongs to.
    """

    def __init__(self, assessment_id: str) -> None:
        self.assessment_id = assessment_id
        self._state = CycleState.IDLE
        self._attempts = 0
        self._history: list[tuple[CycleState, datetime]] = [(CycleState.IDLE, datetime.now(UTC))]

    # -- Read-only views ------------------------------------------------------

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def attempts(self) -> int:
        """Number of recommendation reads recorded while polling."""
        return self._attempts

    @property
    def history(self) -> list[tuple[CycleState, datetime]]:
        return list(self._history)

    # -- Transitions ----------------------------------------------------------

    def can_transition(self, target: CycleState) -> bool:
        return target in _ALLOWED.get(self._state, frozenset())

    def transition(self, target: CycleState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If ``target`` is not reachable from the current state.
        """
        if not self.can_transition(target):
            raise InvalidTransitionError(self._state.value, target.value)
        logger.info(
            "Recommendation cycle %s -> %s",
            self._state.value,
            target.value,
            extra={"assessment_id": self.assessment_id, "attempts": self._attempts},
        )
        self._state = target
        self._history.append((target, datetime.now(UTC)))

    def mark_dispatched(self) -> None:
        self.transition(CycleState.DISPATCHED)

    def mark_polling(self) -> None:
        self.transition(CycleState.POLLING)

    def record_attempt(self, attempt: int) -> None:
        """Record that read number ``attempt`` happened.

        Raises:
            InvalidTransitionError: If the cycle is not polling.
        """
        if self._state is not CycleState.POLLING:
            raise InvalidTransitionError(self._state.value, "poll attempt")
        self._attempts = max(self._attempts, attempt)

    def complete(self) -> None:
        self.transition(CycleState.COMPLETED)

    def fail(self) -> None:
        self.transition(CycleState.FAILED)

    def time_out(self) -> None:
        self.transition(CycleState.TIMED_OUT)

    def cancel(self) -> None:
        """Cancel the cycle. A no-op once the cycle has ended."""
        if self._state.is_final:
            return
        self.transition(CycleState.CANCELLED)
