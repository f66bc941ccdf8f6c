"""Tests for GoalScheduleService."""

from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest

from rehab_goals.core.exceptions import NotFoundError, PersistenceError, ValidationError
from rehab_goals.services.date_reconciliation import STALE_DATES_WARNING, ReconcileMode
from rehab_goals.services.goal_hierarchy import GoalHierarchyBuilder
from rehab_goals.services.goal_schedule_service import GoalScheduleService


@pytest.fixture
def stored_rows(sample_option, sequential_ids) -> list[dict]:
    root = GoalHierarchyBuilder(sequential_ids()).build(
        sample_option, "patient-1", "worker-1", date(2025, 1, 1)
    )
    return root.to_rows()


@pytest.fixture
def mock_db(stored_rows) -> MagicMock:
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.eq.return_value.execute.return_value = (
        MagicMock(data=stored_rows)
    )
    return mock_client


@pytest.mark.asyncio
async def test_full_reschedule_writes_every_changed_goal(mock_db) -> None:
    with patch("rehab_goals.services.goal_schedule_service.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        service = GoalScheduleService()

        result = await service.reschedule_goal(
            "patient-1", "goal-001", date(2025, 2, 3), ReconcileMode.FULL
        )

    upserted = mock_db.table.return_value.upsert.call_args[0][0]
    assert len(upserted) == 15
    assert upserted[0]["start_date"] == "2025-02-03"
    assert upserted[0]["end_date"] == result.tree.children[-1].end_date.isoformat()
    assert STALE_DATES_WARNING in result.warnings
    mock_db.table.assert_called_with("rehabilitation_goals")


@pytest.mark.asyncio
async def test_shallow_reschedule_writes_only_the_root(mock_db) -> None:
    with patch("rehab_goals.services.goal_schedule_service.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        result = await GoalScheduleService().reschedule_goal(
            "patient-1", "goal-001", date(2025, 1, 8), ReconcileMode.SHALLOW
        )

    upserted = mock_db.table.return_value.upsert.call_args[0][0]
    assert [row["id"] for row in upserted] == ["goal-001"]
    assert upserted[0]["end_date"] == (date(2025, 6, 17) + timedelta(days=7)).isoformat()
    assert result.changed_ids == ["goal-001"]


@pytest.mark.asyncio
async def test_reschedule_unknown_goal_raises_not_found(mock_db) -> None:
    with patch("rehab_goals.services.goal_schedule_service.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        with pytest.raises(NotFoundError):
            await GoalScheduleService().reschedule_goal(
                "patient-1", "missing", date(2025, 1, 8), ReconcileMode.FULL
            )


@pytest.mark.asyncio
async def test_reschedule_monthly_goal_is_rejected(mock_db) -> None:
    with patch("rehab_goals.services.goal_schedule_service.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        with pytest.raises(ValidationError):
            await GoalScheduleService().reschedule_goal(
                "patient-1", "goal-002", date(2025, 1, 8), ReconcileMode.FULL
            )

    mock_db.table.return_value.upsert.assert_not_called()


@pytest.mark.asyncio
async def test_reschedule_write_failure_raises_persistence_error(mock_db) -> None:
    mock_db.table.return_value.upsert.return_value.execute.side_effect = RuntimeError("timeout")

    with patch("rehab_goals.services.goal_schedule_service.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        with pytest.raises(PersistenceError) as exc_info:
            await GoalScheduleService().reschedule_goal(
                "patient-1", "goal-001", date(2025, 3, 1), ReconcileMode.FULL
            )

    assert exc_info.value.stage == "update"


@pytest.mark.asyncio
async def test_repair_fixes_drifted_tree(stored_rows) -> None:
    # Old-style end date: six calendar months after the start
    stored_rows[0]["end_date"] = "2025-06-30"
    mock_db = MagicMock()
    mock_db.table.return_value.select.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(
        data=stored_rows
    )

    with patch("rehab_goals.services.goal_schedule_service.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        summaries = await GoalScheduleService().repair_schedules("patient-1")

    assert summaries == [{"patient_id": "patient-1", "root_id": "goal-001", "changed": 1}]
    upserted = mock_db.table.return_value.upsert.call_args[0][0]
    assert upserted[0]["end_date"] == "2025-06-17"


@pytest.mark.asyncio
async def test_repair_skips_consistent_trees(stored_rows) -> None:
    mock_db = MagicMock()
    mock_db.table.return_value.select.return_value.eq.return_value.execute.return_value = MagicMock(
        data=stored_rows
    )

    with patch("rehab_goals.services.goal_schedule_service.SupabaseClient") as mock_db_class:
        mock_db_class.get_client.return_value = mock_db
        summaries = await GoalScheduleService().repair_schedules()

    assert summaries[0]["changed"] == 0
    mock_db.table.return_value.upsert.assert_not_called()
