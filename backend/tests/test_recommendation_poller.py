"""Tests for RecommendationPoller."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from rehab_goals.core.exceptions import (
    DatabaseError,
    RecommendationFailedError,
    RecommendationTimeoutError,
)
from rehab_goals.models.recommendation import RecommendationRecord, RecommendationStatus
from rehab_goals.services.recommendation_poller import (
    CancellationToken,
    PollState,
    RecommendationPoller,
    SupabaseRecommendationReader,
)


def _record(status: str, **kwargs) -> RecommendationRecord:
    return RecommendationRecord(id="rec-1", assessment_id="assessment-1", status=status, **kwargs)


class FakeReader:
    """Returns scripted records and counts reads."""

    def __init__(self, statuses: list[str | None], delay: float = 0.0) -> None:
        self.statuses = statuses
        self.delay = delay
        self.reads = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def latest(self, assessment_id: str) -> RecommendationRecord | None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            status = self.statuses[min(self.reads, len(self.statuses) - 1)]
            self.reads += 1
            return _record(status, error={"message": "boom"}) if status else None
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_poll_returns_completed_record() -> None:
    reader = FakeReader([None, "pending", "processing", "completed"])
    poller = RecommendationPoller(reader=reader, max_attempts=10, interval_ms=0)

    record = await poller.poll("assessment-1")

    assert record.status is RecommendationStatus.COMPLETED
    assert reader.reads == 4


@pytest.mark.asyncio
async def test_poll_stops_on_failed_status() -> None:
    reader = FakeReader(["pending", "failed", "completed"])
    poller = RecommendationPoller(reader=reader, max_attempts=10, interval_ms=0)

    with pytest.raises(RecommendationFailedError) as exc_info:
        await poller.poll("assessment-1")

    assert reader.reads == 2
    assert exc_info.value.error == {"message": "boom"}


@pytest.mark.asyncio
async def test_poll_times_out_after_exactly_max_attempts() -> None:
    for max_attempts in (1, 3, 15):
        reader = FakeReader(["pending"])
        poller = RecommendationPoller(reader=reader, interval_ms=0)

        with pytest.raises(RecommendationTimeoutError) as exc_info:
            await poller.poll("assessment-1", max_attempts=max_attempts)

        assert reader.reads == max_attempts
        assert exc_info.value.attempts == max_attempts


@pytest.mark.asyncio
async def test_poll_reports_each_attempt() -> None:
    reader = FakeReader(["pending", "pending", "completed"])
    poller = RecommendationPoller(reader=reader, max_attempts=5, interval_ms=0)
    seen: list[int] = []

    await poller.poll("assessment-1", on_attempt=seen.append)

    assert seen == [1, 2, 3]


@pytest.mark.asyncio
async def test_poll_rejects_invalid_budget() -> None:
    poller = RecommendationPoller(reader=FakeReader(["pending"]))

    with pytest.raises(ValueError):
        await poller.poll("assessment-1", max_attempts=0)
    with pytest.raises(ValueError):
        await poller.poll("assessment-1", interval_ms=-1)


@pytest.mark.parametrize(("max_attempts", "interval_ms"), [(0, 100), (3, -1)])
def test_constructor_rejects_invalid_default_budget(max_attempts: int, interval_ms: int) -> None:
    """An explicit zero budget is rejected, not replaced by the configured default."""
    with pytest.raises(ValueError):
        RecommendationPoller(
            reader=FakeReader(["pending"]), max_attempts=max_attempts, interval_ms=interval_ms
        )


@pytest.mark.asyncio
async def test_cancelled_token_prevents_any_read() -> None:
    reader = FakeReader(["pending"])
    poller = RecommendationPoller(reader=reader, max_attempts=5, interval_ms=0)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await poller.poll("assessment-1", cancellation=token)

    assert reader.reads == 0


@pytest.mark.asyncio
async def test_cancel_during_wait_stops_further_reads() -> None:
    reader = FakeReader(["pending"])
    poller = RecommendationPoller(reader=reader, max_attempts=15, interval_ms=10_000)
    token = CancellationToken()

    task = asyncio.create_task(poller.poll("assessment-1", cancellation=token))
    await asyncio.sleep(0.01)
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    reads_at_cancel = reader.reads
    await asyncio.sleep(0.05)

    assert reads_at_cancel == 1
    assert reader.reads == 1


@pytest.mark.asyncio
async def test_cancel_during_read_discards_the_result() -> None:
    reader = FakeReader(["completed"], delay=0.05)
    poller = RecommendationPoller(reader=reader, max_attempts=3, interval_ms=0)
    token = CancellationToken()

    task = asyncio.create_task(poller.poll("assessment-1", cancellation=token))
    await asyncio.sleep(0.01)
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert reader.reads == 1


@pytest.mark.asyncio
async def test_overlapping_polls_never_read_concurrently() -> None:
    reader = FakeReader(["pending", "pending", "pending", "completed"], delay=0.01)
    poller = RecommendationPoller(reader=reader, max_attempts=10, interval_ms=1)

    results = await asyncio.gather(
        poller.poll("assessment-1"),
        poller.poll("assessment-1"),
    )

    assert all(r.status is RecommendationStatus.COMPLETED for r in results)
    assert reader.max_in_flight == 1


@pytest.mark.asyncio
async def test_start_returns_handle_and_reuses_running_poll() -> None:
    reader = FakeReader(["pending", "completed"])
    poller = RecommendationPoller(reader=reader, max_attempts=5, interval_ms=1)

    handle = poller.start("assessment-1")
    again = poller.start("assessment-1")
    record = await handle.result()

    assert again is handle
    assert record.status is RecommendationStatus.COMPLETED
    assert handle.state is PollState.COMPLETED
    assert handle.attempts == 2
    assert handle.done()
    assert poller.active_handle("assessment-1") is None


@pytest.mark.asyncio
async def test_handle_cancel_stops_reads() -> None:
    reader = FakeReader(["pending"])
    poller = RecommendationPoller(reader=reader, max_attempts=15, interval_ms=10_000)

    handle = poller.start("assessment-1")
    await asyncio.sleep(0.01)
    handle.cancel()

    with pytest.raises(asyncio.CancelledError):
        await handle.result()
    await asyncio.sleep(0.02)

    assert reader.reads == 1
    assert handle.state is PollState.CANCELLED


@pytest.mark.asyncio
async def test_handle_reports_timeout() -> None:
    poller = RecommendationPoller(reader=FakeReader(["pending"]), max_attempts=2, interval_ms=0)

    handle = poller.start("assessment-1")
    with pytest.raises(RecommendationTimeoutError):
        await handle.result()

    assert handle.state is PollState.TIMED_OUT


@pytest.mark.asyncio
async def test_supabase_reader_reads_latest_row() -> None:
    mock_db = MagicMock()
    chain = mock_db.table.return_value.select.return_value.eq.return_value.order.return_value
    chain.limit.return_value.execute.return_value = MagicMock(
        data=[
            {
                "id": "rec-1",
                "assessment_id": "assessment-1",
                "n8n_processing_status": "completed",
                "recommendations": [],
            }
        ]
    )

    with patch("rehab_goals.services.recommendation_poller.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        reader = SupabaseRecommendationReader()
        record = await reader.latest("assessment-1")

    assert record.status is RecommendationStatus.COMPLETED
    mock_db.table.assert_called_with("ai_goal_recommendations")
    mock_db.table.return_value.select.return_value.eq.assert_called_with(
        "assessment_id", "assessment-1"
    )


@pytest.mark.asyncio
async def test_supabase_reader_returns_none_without_rows() -> None:
    mock_db = MagicMock()
    chain = mock_db.table.return_value.select.return_value.eq.return_value.order.return_value
    chain.limit.return_value.execute.return_value = MagicMock(data=[])

    with patch("rehab_goals.services.recommendation_poller.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        record = await SupabaseRecommendationReader().latest("assessment-1")

    assert record is None


@pytest.mark.asyncio
async def test_supabase_reader_wraps_errors() -> None:
    mock_db = MagicMock()
    mock_db.table.side_effect = RuntimeError("connection reset")

    with patch("rehab_goals.services.recommendation_poller.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        with pytest.raises(DatabaseError):
            await SupabaseRecommendationReader().latest("assessment-1")
