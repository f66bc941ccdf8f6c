"""Assessment and patient models used to request goal recommendations."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FocusTime(str, Enum):
    """How long the patient can stay focused on one activity."""

    FIVE_MINUTES = "5min"
    FIFTEEN_MINUTES = "15min"
    THIRTY_MINUTES = "30min"
    ONE_HOUR = "1hour"


class SocialPreference(str, Enum):
    """Preferred group size for activities."""

    ALONE = "alone"
    CLOSE_FAMILY = "close_family"
    SMALL_GROUP = "small_group"
    MEDIUM_GROUP = "medium_group"
    LARGE_GROUP = "large_group"


PAST_SUCCESS_LABELS: dict[str, str] = {
    "cooking": "Cooking/baking",
    "exercise": "Exercise/walking",
    "reading": "Reading/studying",
    "crafting": "Crafting/drawing",
    "socializing": "Meeting people/conversation",
    "entertainment": "Music/movies",
    "organizing": "Tidying/cleaning",
    "none": "Nothing in particular",
}

CONSTRAINT_LABELS: dict[str, str] = {
    "transport": "Transportation (difficulty using public transit)",
    "financial": "Financial burden (difficulty covering costs)",
    "time": "Time constraints (busy with other commitments)",
    "physical": "Physical limitations (mobility, stamina)",
    "family": "Family opposition to activities",
    "none": "No particular constraints",
}


def _labelled(codes: list[str], labels: dict[str, str], other: str | None) -> list[str]:
    values = [labels.get(code, code) for code in codes]
    if other and other.strip():
        values.append(other.strip())
    return [value for value in values if value]


class AssessmentCreate(BaseModel):
    """Intake form submitted by the assessing social worker."""

    focus_time: FocusTime
    motivation_level: int = Field(ge=1, le=10)
    past_successes: list[str] = Field(default_factory=list)
    past_successes_other: str | None = None
    constraints: list[str] = Field(default_factory=list)
    constraints_other: str | None = None
    social_preference: SocialPreference
    notes: str | None = None

    def to_insert(self, patient_id: str, assessed_by: str) -> dict[str, Any]:
        """Row for the ``assessments`` table with option codes resolved to labels."""
        return {
            "patient_id": patient_id,
            "focus_time": self.focus_time.value,
            "motivation_level": self.motivation_level,
            "past_successes": _labelled(
                self.past_successes, PAST_SUCCESS_LABELS, self.past_successes_other
            ),
            "constraints": _labelled(self.constraints, CONSTRAINT_LABELS, self.constraints_other),
            "social_preference": self.social_preference.value,
            "notes": self.notes,
            "assessed_by": assessed_by,
        }


class AssessmentRecord(BaseModel):
    """Persisted assessment. Immutable once written."""

    model_config = {"frozen": True}

    id: str
    patient_id: str
    assessed_by: str
    focus_time: FocusTime
    motivation_level: int
    past_successes: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    social_preference: SocialPreference
    notes: str | None = None
    created_at: datetime | None = None


class PatientSummary(BaseModel):
    """Demographics sent alongside an assessment."""

    id: str
    age: int | None = None
    gender: str | None = None
    diagnosis: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any], today: date | None = None) -> "PatientSummary":
        """Build a summary from a ``patients`` row.

        Age is derived from ``date_of_birth``; the diagnosis falls back to
        ``additional_info.primary_diagnosis``.

        Raises:
            ValueError: If ``date_of_birth`` is not an ISO date.
        """
        today = today or date.today()
        age = None
        dob_raw = row.get("date_of_birth")
        if dob_raw:
            dob = dob_raw if isinstance(dob_raw, date) else date.fromisoformat(str(dob_raw)[:10])
            age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))

        additional = row.get("additional_info")
        if not isinstance(additional, dict):
            additional = {}
        diagnosis = row.get("diagnosis") or additional.get("primary_diagnosis")

        return cls(id=row["id"], age=age, gender=row.get("gender"), diagnosis=diagnosis)


class DispatchReceipt(BaseModel):
    """Acknowledgement that an assessment was handed to the workflow."""

    assessment_id: str
    status_code: int | None = None
    dispatched_at: datetime
    duplicate: bool = False
