"""Append-only store of inbound webhook deliveries."""
import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from pcntrack.utils.errors import ConflictError

from .base import Base


class WebhookEventStatus(str, enum.Enum):
    pending = "pending"
    processed = "processed"
    failed = "failed"


TERMINAL_STATUSES = {WebhookEventStatus.processed, WebhookEventStatus.failed}


class WebhookEvent(Base):
    """Raw webhook as received; finalised exactly once, never deleted."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_received", "received_at"),
        Index("ix_webhook_events_status", "status"),
        Index("ix_webhook_events_source_external", "source", "external_event_id"),
    )

    source: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_event_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    company_id: Mapped[int | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    headers: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[WebhookEventStatus] = mapped_column(
        Enum(WebhookEventStatus, name="webhook_event_status"),
        nullable=False,
        default=WebhookEventStatus.pending,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @validates("status")
    def _validate_transition(self, key: str, value: WebhookEventStatus) -> WebhookEventStatus:
        if self.status in TERMINAL_STATUSES and value != self.status:
            raise ConflictError(
                "Webhook event already finalised.",
                code="WEBHOOK_EVENT_FINALISED",
                details={"event_id": self.id, "status": self.status.value},
            )
        return value

    @validates("payload", "error")
    def _validate_immutable(self, key: str, value):
        if self.status in TERMINAL_STATUSES:
            raise ConflictError(
                f"Webhook event {key} is immutable once finalised.",
                code="WEBHOOK_EVENT_FINALISED",
                details={"event_id": self.id, "field": key},
            )
        return value


__all__ = ["WebhookEvent", "WebhookEventStatus", "TERMINAL_STATUSES"]
