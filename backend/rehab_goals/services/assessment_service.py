"""Assessment and patient lookups backing the recommendation cycle."""

import logging
from datetime import date

from rehab_goals.core.exceptions import DatabaseError, NotFoundError
from rehab_goals.db.supabase import ASSESSMENTS_TABLE, PATIENTS_TABLE, SupabaseClient
from rehab_goals.models.assessment import AssessmentCreate, AssessmentRecord, PatientSummary

logger = logging.getLogger(__name__)


class AssessmentService:
    """Service for assessment records and patient demographics."""

    def __init__(self) -> None:
        """Initialize assessment service with Supabase client."""
        self._db = SupabaseClient.get_client()

    async def save_assessment(
        self, patient_id: str, assessed_by: str, data: AssessmentCreate
    ) -> AssessmentRecord:
        """Store a new assessment.

        Args:
            patient_id: Assessed patient.
            assessed_by: Acting user.
            data: Intake form values.

        Returns:
            The stored assessment.

        Raises:
            DatabaseError: If the insert fails or returns no row.
        """
        row = data.to_insert(patient_id, assessed_by)
        try:
            result = self._db.table(ASSESSMENTS_TABLE).insert(row).execute()
        except Exception as e:
            logger.exception("Failed to save assessment", extra={"patient_id": patient_id})
            raise DatabaseError(f"Failed to save assessment: {e}") from e

        if not result.data:
            raise DatabaseError("Assessment insert returned no row")

        record = AssessmentRecord.model_validate(result.data[0])
        logger.info(
            "Assessment saved",
            extra={"assessment_id": record.id, "patient_id": patient_id},
        )
        return record

    async def get_patient_summary(
        self, patient_id: str, today: date | None = None
    ) -> PatientSummary:
        """Get the demographic summary sent with an assessment.

        Raises:
            NotFoundError: If the patient does not exist.
            DatabaseError: If the read fails or the row cannot be read as a patient.
        """
        try:
            result = self._db.table(PATIENTS_TABLE).select("*").eq("id", patient_id).execute()
        except Exception as e:
            logger.exception("Failed to load patient", extra={"patient_id": patient_id})
            raise DatabaseError(f"Failed to load patient: {e}") from e

        if not result.data:
            raise NotFoundError("Patient", patient_id)
        try:
            return PatientSummary.from_row(result.data[0], today=today)
        except (ValueError, TypeError) as e:
            logger.exception("Malformed patient record", extra={"patient_id": patient_id})
            raise DatabaseError(f"Malformed patient record: {e}") from e
