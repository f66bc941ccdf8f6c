"""Persisted date edits and schedule repair for stored goal trees."""

import asyncio
import logging
from collections import defaultdict
from datetime import date
from typing import Any

from rehab_goals.core.exceptions import (
    DatabaseError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from rehab_goals.db.supabase import GOALS_TABLE, SupabaseClient
from rehab_goals.models.goal import GoalNode, GoalStatus, GoalType, PlanStatus, assemble_trees
from rehab_goals.services.date_reconciliation import (
    ReconcileMode,
    RescheduleResult,
    reschedule_tree,
)
from rehab_goals.services.goal_persister import patient_write_locks

logger = logging.getLogger(__name__)


class GoalScheduleService:
    """Applies :func:`reschedule_tree` to trees stored in Supabase."""

    def __init__(self) -> None:
        self._db = SupabaseClient.get_client()

    async def reschedule_goal(
        self,
        patient_id: str,
        goal_id: str,
        new_start: date,
        mode: ReconcileMode,
    ) -> RescheduleResult:
        """Move a stored six-month goal to ``new_start``.

        Args:
            patient_id: Owner of the goal.
            goal_id: Id of the six-month goal.
            new_start: New start date.
            mode: ``SHALLOW`` or ``FULL``; there is no default on purpose.

        Returns:
            The rescheduled tree, changed ids and warnings for the user.

        Raises:
            NotFoundError: If the goal does not exist for this patient.
            ValidationError: If the goal is not a six-month goal.
            PersistenceError: If writing the new dates fails.
        """
        async with patient_write_locks.hold(patient_id):
            root = self._load_tree(patient_id, goal_id)
            if root.goal_type is not GoalType.SIX_MONTH:
                raise ValidationError(
                    "Only six-month goals can be rescheduled",
                    field="goal_id",
                    details={"goal_type": root.goal_type.value},
                )

            result = reschedule_tree(root, new_start, mode)
            await self._write_changes(patient_id, result)

        logger.info(
            "Goal rescheduled",
            extra={
                "patient_id": patient_id,
                "goal_id": goal_id,
                "mode": mode.value,
                "changed": len(result.changed_ids),
            },
        )
        return result

    async def repair_schedules(self, patient_id: str | None = None) -> list[dict[str, Any]]:
        """Recompute every active tree from its own start date.

        Args:
            patient_id: Limit the repair to one patient; None repairs all patients.

        Returns:
            One summary per tree: patient id, root id, number of changed goals.
        """
        rows_by_patient: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for row in self._select_active_rows(patient_id):
            rows_by_patient[row["patient_id"]].append(row)

        summaries: list[dict[str, Any]] = []
        for owner, rows in rows_by_patient.items():
            async with patient_write_locks.hold(owner):
                for root in assemble_trees(rows):
                    if root.goal_type is not GoalType.SIX_MONTH:
                        continue
                    if root.status is GoalStatus.COMPLETED:
                        continue
                    result = reschedule_tree(root, root.start_date, ReconcileMode.FULL)
                    await self._write_changes(owner, result)
                    summaries.append(
                        {
                            "patient_id": owner,
                            "root_id": root.id,
                            "changed": len(result.changed_ids),
                        }
                    )

        repaired = sum(1 for s in summaries if s["changed"])
        logger.info(
            "Goal schedules repaired",
            extra={"patient_id": patient_id, "trees": len(summaries), "repaired": repaired},
        )
        return summaries

    def _load_tree(self, patient_id: str, goal_id: str) -> GoalNode:
        try:
            result = self._db.table(GOALS_TABLE).select("*").eq("patient_id", patient_id).execute()
        except Exception as e:
            logger.exception("Failed to load goals", extra={"patient_id": patient_id})
            raise DatabaseError(f"Failed to load goals: {e}") from e

        for tree in assemble_trees(list(result.data or [])):
            for node in tree.walk():
                if node.id == goal_id:
                    return node
        raise NotFoundError("Goal", goal_id)

    def _select_active_rows(self, patient_id: str | None) -> list[dict[str, Any]]:
        try:
            query = (
                self._db.table(GOALS_TABLE)
                .select("*")
                .eq("plan_status", PlanStatus.ACTIVE.value)
            )
            if patient_id:
                query = query.eq("patient_id", patient_id)
            result = query.execute()
        except Exception as e:
            logger.exception("Failed to load active goals", extra={"patient_id": patient_id})
            raise DatabaseError(f"Failed to load active goals: {e}") from e
        return list(result.data or [])

    async def _write_changes(self, patient_id: str, result: RescheduleResult) -> None:
        if not result.changed_ids:
            return
        changed = set(result.changed_ids)
        rows = [node.to_row() for node in result.tree.walk() if node.id in changed]
        try:
            await asyncio.to_thread(self._db.table(GOALS_TABLE).upsert(rows).execute)
        except Exception as e:
            logger.exception(
                "Failed to write rescheduled goals",
                extra={"patient_id": patient_id, "root_id": result.tree.id},
            )
            raise PersistenceError(patient_id, "update", str(e)) from e
