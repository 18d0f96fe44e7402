"""Appointment lifecycle model."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .calendar import Calendar
from .contact import Contact
from .user import User


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    showed = "showed"
    no_show = "no_show"
    signed = "signed"
    contract_sent = "contract_sent"
    completed = "completed"
    cancelled = "cancelled"


class InclusionFlag(str, enum.Enum):
    included = "included"
    excluded = "excluded"
    pending = "pending"


class Appointment(Base):
    """A scheduled sales call, keyed by (company, external appointment id)."""

    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint("company_id", "external_id", name="uq_appointments_company_external"),
        Index("ix_appointments_overdue", "pcn_submitted", "scheduled_at"),
        Index("ix_appointments_company_scheduled", "company_id", "scheduled_at"),
    )

    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contact_id: Mapped[int | None] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    closer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    calendar_id: Mapped[int | None] = mapped_column(
        ForeignKey("calendars.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Free-form: statuses outside AppointmentStatus are stored lower-cased as received.
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=AppointmentStatus.scheduled.value)
    outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pcn_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pcn_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pcn_submitted_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    inclusion_flag: Mapped[InclusionFlag | None] = mapped_column(
        Enum(InclusionFlag, name="inclusion_flag"), nullable=True
    )
    cash_collected: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    last_event_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    field_versions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    contact: Mapped[Contact | None] = relationship(Contact)
    closer: Mapped[User | None] = relationship(User, foreign_keys=[closer_id])
    calendar: Mapped[Calendar | None] = relationship(Calendar)


__all__ = ["Appointment", "AppointmentStatus", "InclusionFlag"]
