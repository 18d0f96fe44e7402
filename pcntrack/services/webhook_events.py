"""Event store operations for inbound webhooks."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.orm import Session

from pcntrack.models.webhook_event import WebhookEvent, WebhookEventStatus
from pcntrack.utils.errors import ConflictError
from pcntrack.utils.masking import mask_headers, mask_query_params
from pcntrack.utils.time import utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


def record_received(
    db: Session,
    *,
    source: str,
    payload: Mapping[str, Any],
    headers: Mapping[str, str],
    params: Mapping[str, str] | None = None,
    received_at: datetime | None = None,
) -> WebhookEvent:
    """Persist a raw delivery as ``pending`` and commit before any processing."""

    recorded_headers = mask_headers(headers)
    if params:
        recorded_headers["query"] = mask_query_params(params)
    event = WebhookEvent(
        source=source,
        payload=dict(payload),
        headers=recorded_headers,
        status=WebhookEventStatus.pending,
        received_at=received_at or utcnow(),
    )
    db.add(event)
    db.commit()
    logger.info("Webhook event recorded", extra={"event_id": event.id, "source": source})
    return event


def _ensure_pending(event: WebhookEvent) -> None:
    if event.status != WebhookEventStatus.pending:
        raise ConflictError(
            "Webhook event already finalised.",
            code="WEBHOOK_EVENT_FINALISED",
            details={"event_id": event.id, "status": event.status.value},
        )


def mark_processed(db: Session, event: WebhookEvent, *, processed_at: datetime | None = None) -> WebhookEvent:
    """Finalise as processed; the caller owns the commit."""

    _ensure_pending(event)
    event.processed_at = processed_at or utcnow()
    event.status = WebhookEventStatus.processed
    db.add(event)
    return event


def mark_failed(
    db: Session,
    event: WebhookEvent,
    error: str,
    *,
    processed_at: datetime | None = None,
) -> WebhookEvent:
    """Finalise as failed with the captured error; the caller owns the commit."""

    _ensure_pending(event)
    event.error = error[:MAX_ERROR_LENGTH]
    event.processed_at = processed_at or utcnow()
    event.status = WebhookEventStatus.failed
    db.add(event)
    logger.warning(
        "Webhook event failed",
        extra={"event_id": event.id, "source": event.source, "error": event.error},
    )
    return event


__all__ = ["record_received", "mark_processed", "mark_failed"]
