"""Company attribution configuration schemas."""
from pydantic import BaseModel, Field

from pcntrack.models.company import AttributionStrategy


class AttributionConfigUpdate(BaseModel):
    # Kept as free text so unknown strategies reach the domain validator.
    strategy: str = Field(..., min_length=1, max_length=32)
    source_field: str | None = Field(default=None, max_length=200)


class AttributionConfigRead(BaseModel):
    company_id: int
    strategy: AttributionStrategy
    source_field: str | None = None
    calendar_based: bool
