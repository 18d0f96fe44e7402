"""CRM calendar model."""
from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Calendar(Base):
    __tablename__ = "calendars"
    __table_args__ = (
        UniqueConstraint("company_id", "external_id", name="uq_calendars_company_external"),
    )

    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    # Admin override consulted first by the calendar attribution strategy.
    traffic_source: Mapped[str | None] = mapped_column(String(200), nullable=True)
