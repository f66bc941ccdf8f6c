"""Goal persister.

Replaces a patient's active goal tree in three steps:

1. deactivate every active goal row of the patient that is not completed;
2. insert the new tree in a single bulk insert;
3. mark the patient as active.

Step 2 is one statement, so it either writes the whole tree or nothing. If it
fails after step 1, the patient is left with no active tree (never two) and
the caller gets a :class:`PersistenceError` with
``previous_tree_deactivated=True`` so it can retry the whole selection.

The synchronous Supabase calls run in worker threads, so replacements for
different patients overlap while replacements for the same patient are
serialized with :data:`patient_write_locks`.
"""

import asyncio
import logging
from typing import Any

from rehab_goals.core.exceptions import DatabaseError, PersistenceError, ValidationError
from rehab_goals.core.locks import KeyedLock
from rehab_goals.db.supabase import GOALS_TABLE, PATIENTS_TABLE, SupabaseClient
from rehab_goals.models.goal import GoalNode, GoalStatus, GoalType, PlanStatus, assemble_trees
from rehab_goals.services.date_reconciliation import find_date_violations

logger = logging.getLogger(__name__)

# Shared by every writer of a patient's goal rows
patient_write_locks = KeyedLock("patient")

PATIENT_ACTIVE_STATUS = "active"


class PersistReceipt:
    """Outcome of a successful tree replacement."""

    def __init__(self, patient_id: str, root_id: str, inserted: int, deactivated: int) -> None:
        self.patient_id = patient_id
        self.root_id = root_id
        self.inserted = inserted
        self.deactivated = deactivated

    def to_dict(self) -> dict[str, Any]:
        return {
            "patient_id": self.patient_id,
            "root_id": self.root_id,
            "inserted": self.inserted,
            "deactivated": self.deactivated,
        }


class GoalPersister:
    """Writes goal trees to the ``rehabilitation_goals`` table."""

    def __init__(self) -> None:
        """Initialize goal persister with Supabase client."""
        self._db = SupabaseClient.get_client()

    async def replace_active_tree(self, patient_id: str, root: GoalNode) -> PersistReceipt:
        """Make ``root`` the patient's only active goal tree.

        Args:
            patient_id: Patient whose plan is replaced.
            root: Freshly built, unsaved six-month tree.

        Returns:
            Receipt with the number of rows inserted and deactivated.

        Raises:
            ValidationError: If the tree is inconsistent or belongs to another patient.
                Nothing is written in that case.
            PersistenceError: If a write fails. ``stage`` names the failed step.
        """
        self.validate_tree(patient_id, root)
        rows = root.to_rows()

        async with patient_write_locks.hold(patient_id):
            logger.info(
                "Replacing active goal tree",
                extra={"patient_id": patient_id, "root_id": root.id, "rows": len(rows)},
            )

            try:
                deactivate = (
                    self._db.table(GOALS_TABLE)
                    .update({"plan_status": PlanStatus.INACTIVE.value})
                    .eq("patient_id", patient_id)
                    .eq("plan_status", PlanStatus.ACTIVE.value)
                    .neq("status", GoalStatus.COMPLETED.value)
                )
                deactivated = await asyncio.to_thread(deactivate.execute)
            except Exception as e:
                logger.exception("Failed to deactivate goals", extra={"patient_id": patient_id})
                raise PersistenceError(patient_id, "deactivate", str(e)) from e

            try:
                await asyncio.to_thread(self._db.table(GOALS_TABLE).insert(rows).execute)
            except Exception as e:
                logger.exception(
                    "Failed to insert goal tree; patient has no active tree",
                    extra={"patient_id": patient_id, "root_id": root.id},
                )
                raise PersistenceError(
                    patient_id, "insert", str(e), previous_tree_deactivated=True
                ) from e

            try:
                activate = (
                    self._db.table(PATIENTS_TABLE)
                    .update({"status": PATIENT_ACTIVE_STATUS})
                    .eq("id", patient_id)
                )
                await asyncio.to_thread(activate.execute)
            except Exception as e:
                logger.exception(
                    "Goal tree saved but patient status update failed",
                    extra={"patient_id": patient_id},
                )
                raise PersistenceError(
                    patient_id, "activate_patient", str(e), previous_tree_deactivated=True
                ) from e

        receipt = PersistReceipt(
            patient_id=patient_id,
            root_id=root.id,
            inserted=len(rows),
            deactivated=len(deactivated.data or []),
        )
        logger.info("Goal tree saved", extra=receipt.to_dict())
        return receipt

    @staticmethod
    def validate_tree(patient_id: str, root: GoalNode) -> None:
        """Reject trees that would break the stored-tree invariants.

        Raises:
            ValidationError: Listing every problem found.
        """
        problems = find_date_violations(root)
        for node in root.walk():
            if node.patient_id != patient_id:
                problems.append(f"Goal {node.id} belongs to patient {node.patient_id}")
            if node.plan_status is not PlanStatus.ACTIVE:
                problems.append(f"Goal {node.id} is not part of an active plan")
        if root.parent_id is not None:
            problems.append(f"Six-month goal {root.id} has a parent")

        if problems:
            logger.warning(
                "Rejected goal tree",
                extra={"patient_id": patient_id, "problems": problems},
            )
            raise ValidationError(
                "Goal tree is inconsistent",
                field="goal_tree",
                details={"problems": problems},
            )

    async def get_active_tree(self, patient_id: str) -> GoalNode | None:
        """Load the patient's current six-month tree.

        Returns:
            The newest active, not completed six-month tree, or None.

        Raises:
            DatabaseError: If the read fails.
        """
        rows = self._select_active_rows(patient_id)
        roots = [
            node
            for node in assemble_trees(rows)
            if node.goal_type is GoalType.SIX_MONTH and node.status is not GoalStatus.COMPLETED
        ]
        if len(roots) > 1:
            logger.warning(
                "Patient has more than one active six-month goal",
                extra={"patient_id": patient_id, "root_ids": [r.id for r in roots]},
            )
        return roots[-1] if roots else None

    def _select_active_rows(self, patient_id: str) -> list[dict[str, Any]]:
        try:
            result = (
                self._db.table(GOALS_TABLE)
                .select("*")
                .eq("patient_id", patient_id)
                .eq("plan_status", PlanStatus.ACTIVE.value)
                .execute()
            )
        except Exception as e:
            logger.exception("Failed to load goals", extra={"patient_id": patient_id})
            raise DatabaseError(f"Failed to load goals: {e}") from e
        return list(result.data or [])
