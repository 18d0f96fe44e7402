"""Company attribution configuration."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pcntrack.db import get_db
from pcntrack.models.api_key import ApiScope
from pcntrack.models.company import Company
from pcntrack.schemas.company import AttributionConfigRead, AttributionConfigUpdate
from pcntrack.security import get_actor, require_scope
from pcntrack.services.attribution import validate_attribution_config
from pcntrack.services.authz import Actor, ensure_company_access
from pcntrack.utils.audit import log_audit
from pcntrack.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/companies",
    tags=["companies"],
    dependencies=[Depends(require_scope({ApiScope.manager}))],
)


def _load_company(db: Session, company_id: int, actor: Actor) -> Company:
    ensure_company_access(actor, company_id)
    company = db.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company not found.", code="COMPANY_NOT_FOUND", details={"company_id": company_id})
    return company


def _read(company: Company) -> AttributionConfigRead:
    return AttributionConfigRead(
        company_id=company.id,
        strategy=company.attribution_strategy,
        source_field=company.attribution_source_field,
        calendar_based=company.calendar_based,
    )


@router.get("/{company_id}/attribution", response_model=AttributionConfigRead)
def read_attribution(company_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return _read(_load_company(db, company_id, actor))


@router.put("/{company_id}/attribution", response_model=AttributionConfigRead)
def update_attribution(
    company_id: int,
    payload: AttributionConfigUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Store a new strategy; contacts already attributed keep their source."""

    company = _load_company(db, company_id, actor)
    config = validate_attribution_config(payload.strategy, payload.source_field)
    previous = {
        "strategy": company.attribution_strategy.value,
        "source_field": company.attribution_source_field,
    }
    company.attribution_strategy = config.strategy
    company.attribution_source_field = config.source_field
    db.add(company)
    log_audit(
        db,
        actor=actor.label,
        action="ATTRIBUTION_CONFIG_UPDATED",
        entity="Company",
        entity_id=company.id,
        company_id=company.id,
        data={
            "previous": previous,
            "new": {"strategy": config.strategy.value, "source_field": config.source_field},
        },
    )
    db.commit()
    logger.info(
        "Attribution config updated",
        extra={"company_id": company.id, "strategy": config.strategy.value},
    )
    return _read(company)
