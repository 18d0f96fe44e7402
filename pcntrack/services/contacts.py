"""Contact synchronisation and forward-only attribution."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pcntrack.models.company import Company
from pcntrack.models.contact import Contact
from pcntrack.services.attribution import AttributionConfig, CalendarInfo, resolve_attribution
from pcntrack.utils.time import utcnow

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("name", "email", "phone")


def _load_for_update(db: Session, company_id: int, external_id: str) -> Contact | None:
    return db.execute(
        select(Contact)
        .where(Contact.company_id == company_id, Contact.external_id == external_id)
        .with_for_update()
    ).scalar_one_or_none()


def get_or_create_contact(db: Session, company_id: int, external_id: str) -> tuple[Contact, bool]:
    """Return the locked contact row, inserting it when missing."""

    contact = _load_for_update(db, company_id, external_id)
    if contact is not None:
        return contact, False
    try:
        with db.begin_nested():
            contact = Contact(company_id=company_id, external_id=external_id, tags=[], custom_fields={})
            db.add(contact)
    except IntegrityError:
        # Another delivery inserted it first.
        contact = _load_for_update(db, company_id, external_id)
        if contact is None:
            raise
        return contact, False
    return contact, True


def sync_contact(
    db: Session,
    company: Company,
    *,
    external_id: str,
    attributes: Mapping[str, Any],
    payload: Mapping[str, Any],
    calendar: CalendarInfo | None = None,
    now: datetime | None = None,
) -> Contact:
    """Upsert a contact from a webhook and resolve attribution once.

    Attribution already resolved on a contact is never recomputed, even when
    the company later switches strategy.
    """

    contact, created = get_or_create_contact(db, company.id, external_id)
    for field in CONTACT_FIELDS:
        value = attributes.get(field)
        if value:
            setattr(contact, field, str(value))

    tags = attributes.get("tags")
    if isinstance(tags, str):
        tags = [tag.strip() for tag in tags.split(",") if tag.strip()]
    if isinstance(tags, list):
        contact.tags = [str(tag) for tag in tags]
    contact.custom_fields = dict(payload)

    if contact.attribution_resolved_at is None:
        result = resolve_attribution(payload, AttributionConfig.from_company(company), calendar=calendar)
        if result is not None:
            contact.traffic_source = result.traffic_source
            contact.lead_source = result.lead_source
            contact.attribution_confidence = result.confidence
            contact.attribution_resolved_at = now or utcnow()
            logger.info(
                "Contact attribution resolved",
                extra={
                    "contact_id": contact.id,
                    "company_id": company.id,
                    "strategy": company.attribution_strategy.value,
                    "traffic_source": result.traffic_source,
                },
            )

    db.add(contact)
    db.flush()
    if created:
        logger.info("Contact created", extra={"contact_id": contact.id, "company_id": company.id})
    return contact


__all__ = ["get_or_create_contact", "sync_contact"]
