"""Wait for the external workflow to finish a recommendation.

The poller only reads the ``ai_goal_recommendations`` table; the workflow is
the sole writer. Polling uses a fixed attempt budget and a fixed interval.
Reads for one assessment are serialized, so overlapping polls for the same
assessment never have two reads in flight.

Cancellation is explicit: pass a :class:`CancellationToken` (or use the
:class:`PollHandle` returned by :meth:`RecommendationPoller.start`). Once the
token is cancelled no further read is issued and the poll ends with
``asyncio.CancelledError`` instead of a result.
"""

import asyncio
import contextlib
import enum
import logging
from collections.abc import Callable
from typing import Protocol

from rehab_goals.core.config import settings
from rehab_goals.core.exceptions import (
    DatabaseError,
    RecommendationFailedError,
    RecommendationTimeoutError,
)
from rehab_goals.core.locks import KeyedLock
from rehab_goals.db.supabase import RECOMMENDATIONS_TABLE, SupabaseClient
from rehab_goals.models.recommendation import RecommendationRecord, RecommendationStatus

logger = logging.getLogger(__name__)


class RecommendationReader(Protocol):
    """Source of recommendation records."""

    async def latest(self, assessment_id: str) -> RecommendationRecord | None:
        """Return the newest record for ``assessment_id``, or None if none exists yet."""
        ...


class SupabaseRecommendationReader:
    """Reads recommendation records from Supabase."""

    def __init__(self) -> None:
        self._db = SupabaseClient.get_client()

    async def latest(self, assessment_id: str) -> RecommendationRecord | None:
        try:
            result = (
                self._db.table(RECOMMENDATIONS_TABLE)
                .select("*")
                .eq("assessment_id", assessment_id)
                .order("created_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.exception(
                "Failed to read recommendation", extra={"assessment_id": assessment_id}
            )
            raise DatabaseError(f"Failed to read recommendation: {e}") from e

        if not result.data:
            return None
        return RecommendationRecord.from_row(result.data[0])


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and a poll."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        if self._event.is_set():
            return True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout)
        return self._event.is_set()


class PollState(str, enum.Enum):
    """Lifecycle of a background poll."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class PollHandle:
    """Handle to a poll running in a background task."""

    def __init__(self, assessment_id: str, token: CancellationToken) -> None:
        self.assessment_id = assessment_id
        self.token = token
        self.attempts = 0
        self.state = PollState.RUNNING
        self._task: asyncio.Task[RecommendationRecord] | None = None

    def _record_attempt(self, attempt: int) -> None:
        self.attempts = attempt

    def _on_done(self, task: asyncio.Task[RecommendationRecord]) -> None:
        if task.cancelled():
            self.state = PollState.CANCELLED
            return
        error = task.exception()
        if error is None:
            self.state = PollState.COMPLETED
        elif isinstance(error, RecommendationTimeoutError):
            self.state = PollState.TIMED_OUT
        else:
            self.state = PollState.FAILED

    def cancel(self) -> None:
        """Stop the poll. No read is issued after this call."""
        self.token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def result(self) -> RecommendationRecord:
        """Wait for the poll to finish.

        Raises:
            RecommendationFailedError: The workflow reported failure.
            RecommendationTimeoutError: The attempt budget ran out.
            asyncio.CancelledError: The poll was cancelled.
        """
        if self._task is None:
            raise RuntimeError("Poll has not been started")
        return await asyncio.shield(self._task)


class RecommendationPoller:
    """Bounded, cancellable polling of recommendation records."""

    def __init__(
        self,
        reader: RecommendationReader | None = None,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            reader: Record source. Defaults to :class:`SupabaseRecommendationReader`.
            max_attempts: Default attempt budget (``RECOMMENDATION_POLL_MAX_ATTEMPTS``).
            interval_ms: Default wait between reads (``RECOMMENDATION_POLL_INTERVAL_MS``).

        Raises:
            ValueError: If ``max_attempts`` is below 1 or ``interval_ms`` is negative.
        """
        self._reader = reader or SupabaseRecommendationReader()
        self._max_attempts = (
            max_attempts if max_attempts is not None else settings.RECOMMENDATION_POLL_MAX_ATTEMPTS
        )
        self._interval_ms = (
            interval_ms if interval_ms is not None else settings.RECOMMENDATION_POLL_INTERVAL_MS
        )
        if self._max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self._interval_ms < 0:
            raise ValueError("interval_ms must not be negative")
        self._read_locks = KeyedLock("recommendation-read")
        self._handles: dict[str, PollHandle] = {}

    async def poll(
        self,
        assessment_id: str,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
        cancellation: CancellationToken | None = None,
        on_attempt: Callable[[int], None] | None = None,
    ) -> RecommendationRecord:
        """Read the recommendation until it reaches a terminal status.

        Args:
            assessment_id: Assessment whose recommendation to wait for.
            max_attempts: Number of reads before giving up.
            interval_ms: Wait between reads in milliseconds.
            cancellation: Token that stops the poll when cancelled.
            on_attempt: Called with the 1-based attempt number after each read.

        Returns:
            The completed record.

        Raises:
            ValueError: If ``max_attempts`` is below 1 or ``interval_ms`` is negative.
            RecommendationFailedError: The record reached ``failed``.
            RecommendationTimeoutError: ``max_attempts`` reads found no terminal status.
            DatabaseError: A read failed.
            asyncio.CancelledError: The token was cancelled.
        """
        attempts = max_attempts if max_attempts is not None else self._max_attempts
        interval = interval_ms if interval_ms is not None else self._interval_ms
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval_ms must not be negative")
        token = cancellation or CancellationToken()

        for attempt in range(1, attempts + 1):
            if token.cancelled:
                self._log_cancelled(assessment_id, attempt - 1)
                raise asyncio.CancelledError()

            async with self._read_locks.hold(assessment_id):
                # Cancellation may arrive while waiting for another poll's read
                if token.cancelled:
                    self._log_cancelled(assessment_id, attempt - 1)
                    raise asyncio.CancelledError()
                record = await self._reader.latest(assessment_id)

            if on_attempt is not None:
                on_attempt(attempt)
            if token.cancelled:
                self._log_cancelled(assessment_id, attempt)
                raise asyncio.CancelledError()

            status = record.status if record else None
            logger.debug(
                "Recommendation poll",
                extra={
                    "assessment_id": assessment_id,
                    "attempt": attempt,
                    "status": status.value if status else None,
                },
            )
            if status is RecommendationStatus.COMPLETED:
                logger.info(
                    "Recommendation completed",
                    extra={"assessment_id": assessment_id, "attempt": attempt},
                )
                return record
            if status is RecommendationStatus.FAILED:
                logger.warning(
                    "Recommendation failed",
                    extra={"assessment_id": assessment_id, "attempt": attempt},
                )
                raise RecommendationFailedError(assessment_id, record.error)

            if attempt < attempts and await token.wait(interval / 1000):
                self._log_cancelled(assessment_id, attempt)
                raise asyncio.CancelledError()

        logger.warning(
            "Recommendation polling timed out",
            extra={"assessment_id": assessment_id, "attempts": attempts},
        )
        raise RecommendationTimeoutError(assessment_id, attempts)

    def start(
        self,
        assessment_id: str,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
    ) -> PollHandle:
        """Poll in a background task.

        While a poll for ``assessment_id`` is running, further calls return
        its handle instead of starting another one.
        """
        existing = self._handles.get(assessment_id)
        if existing is not None and not existing.done():
            logger.debug("Reusing running poll", extra={"assessment_id": assessment_id})
            return existing

        handle = PollHandle(assessment_id, CancellationToken())
        task = asyncio.create_task(
            self.poll(
                assessment_id,
                max_attempts=max_attempts,
                interval_ms=interval_ms,
                cancellation=handle.token,
                on_attempt=handle._record_attempt,
            )
        )
        handle._task = task
        task.add_done_callback(handle._on_done)
        task.add_done_callback(lambda _: self._forget(assessment_id, handle))
        self._handles[assessment_id] = handle
        return handle

    def active_handle(self, assessment_id: str) -> PollHandle | None:
        return self._handles.get(assessment_id)

    def _forget(self, assessment_id: str, handle: PollHandle) -> None:
        if self._handles.get(assessment_id) is handle:
            del self._handles[assessment_id]

    @staticmethod
    def _log_cancelled(assessment_id: str, attempts: int) -> None:
        logger.info(
            "Recommendation polling cancelled",
            extra={"assessment_id": assessment_id, "attempts": attempts},
        )
