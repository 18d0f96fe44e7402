"""Post-call note schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pcntrack.models.appointment import InclusionFlag


class PCNSubmission(BaseModel):
    """Outcome fields captured after a call; which ones are required depends on the outcome."""

    outcome: str = Field(..., min_length=1, max_length=32)
    cash_collected: Decimal | None = None
    notes: str | None = None

    # showed
    first_call_or_follow_up: str | None = None
    qualification_status: str | None = None
    was_offer_made: bool | None = None
    why_didnt_move_forward: str | None = None
    why_no_offer: str | None = None
    downsell_opportunity: str | None = None
    disqualification_reason: str | None = None
    objection_type: str | None = None
    follow_up_scheduled: bool = False
    follow_up_date: date | None = None
    nurture_type: str | None = None

    # signed
    payment_plan_or_pif: str | None = None
    total_price: Decimal | None = None
    number_of_payments: int | None = None

    # no_show / cancelled
    no_show_communicative: str | None = None
    cancellation_reason: str | None = None

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("outcome", mode="before")
    @classmethod
    def _normalize_outcome(cls, value: Any) -> Any:
        """Accept case-insensitive outcomes from clients."""

        if isinstance(value, str):
            return value.strip().lower()
        return value

    def detail_fields(self) -> dict[str, Any]:
        """Outcome-specific fields as JSON-safe values, without empty entries."""

        data = self.model_dump(mode="json", exclude={"outcome", "cash_collected", "notes"})
        return {key: value for key, value in data.items() if value is not None and value != ""}


class PCNSubmitRequest(BaseModel):
    company_id: int
    resubmit: bool = False
    submission: PCNSubmission


class PCNSubmitResult(BaseModel):
    appointment_id: int
    external_id: str
    status: str
    outcome: str
    pcn_submitted: bool
    inclusion_flag: InclusionFlag | None = None
    revision: int
    submitted_at: datetime
    created: bool


class PCNRecordRead(BaseModel):
    id: int
    appointment_id: int
    company_id: int
    submitted_by_id: int | None = None
    submitted_by_name: str
    submitted_at: datetime
    outcome: str
    cash_collected: Decimal | None = None
    notes: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    attribution_snapshot: dict[str, Any] = Field(default_factory=dict)
    source: str
    revision: int

    model_config = ConfigDict(from_attributes=True)
