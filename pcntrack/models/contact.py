"""Contact model."""
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Contact(Base):
    """A prospect synced from the CRM, carrying its resolved attribution."""

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("company_id", "external_id", name="uq_contacts_company_external"),
    )

    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    custom_fields: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    traffic_source: Mapped[str | None] = mapped_column(String(200), nullable=True)
    lead_source: Mapped[str | None] = mapped_column(String(200), nullable=True)
    attribution_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    attribution_resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
