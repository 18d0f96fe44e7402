"""Background job trigger responses."""
from pydantic import BaseModel, Field


class SweepRead(BaseModel):
    checked: int
    notified: int
    skipped: int
    errors: int
    truncated: bool = False


class WeeklyReportRead(BaseModel):
    companies: int
    sent: int
    skipped: int
    errors: int


class RecomputeRead(BaseModel):
    total: int
    updated: int
    errors: int
    failed_ids: list[int] = Field(default_factory=list)
