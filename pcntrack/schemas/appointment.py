"""Appointment schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict

from pcntrack.models.appointment import InclusionFlag


class AppointmentRead(BaseModel):
    id: int
    company_id: int
    external_id: str
    title: str | None = None
    scheduled_at: datetime | None = None
    status: str
    outcome: str | None = None
    pcn_submitted: bool
    pcn_submitted_at: datetime | None = None
    inclusion_flag: InclusionFlag | None = None
    cash_collected: Decimal | None = None
    closer_id: int | None = None
    contact_id: int | None = None

    model_config = ConfigDict(from_attributes=True)


class PendingPCNRead(BaseModel):
    appointment_id: int
    external_id: str
    company_id: int
    title: str | None = None
    contact_name: str | None = None
    closer_id: int | None = None
    closer_name: str | None = None
    scheduled_at: datetime
    minutes_overdue: int
    urgency: Literal["normal", "medium", "high"]
