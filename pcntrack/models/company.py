"""Company (CRM sub-account) model."""
import enum

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class AttributionStrategy(str, enum.Enum):
    ghl_fields = "ghl_fields"
    calendars = "calendars"
    hyros = "hyros"
    tags = "tags"
    none = "none"


class Company(Base):
    """A tenant, mapped to inbound webhooks through its GHL location id."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    ghl_location_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    attribution_strategy: Mapped[AttributionStrategy] = mapped_column(
        Enum(AttributionStrategy, name="attribution_strategy"),
        nullable=False,
        default=AttributionStrategy.none,
    )
    attribution_source_field: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ghl_webhook_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ghl_webhook_secret_legacy: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ghl_api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notification_webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def calendar_based(self) -> bool:
        return self.attribution_strategy == AttributionStrategy.calendars


__all__ = ["AttributionStrategy", "Company"]
