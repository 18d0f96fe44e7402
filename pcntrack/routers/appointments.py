"""Appointment and PCN routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pcntrack.db import get_db
from pcntrack.models.api_key import ApiScope
from pcntrack.schemas.appointment import AppointmentRead, PendingPCNRead
from pcntrack.schemas.pcn import PCNSubmitRequest, PCNSubmitResult
from pcntrack.security import get_actor, require_scope
from pcntrack.services.appointments import get_appointment
from pcntrack.services.authz import Actor, ensure_company_access
from pcntrack.services.pcn import submit_pcn
from pcntrack.services.sweep import list_pending_pcns

router = APIRouter(
    prefix="/appointments",
    tags=["appointments"],
    dependencies=[Depends(require_scope({ApiScope.closer, ApiScope.manager}))],
)


@router.get("/pending-pcns", response_model=list[PendingPCNRead])
def pending_pcns(
    company_id: int = Query(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    ensure_company_access(actor, company_id)
    return list_pending_pcns(db, company_id)


@router.get("/{appointment_ref}", response_model=AppointmentRead)
def read_appointment(
    appointment_ref: str,
    company_id: int = Query(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    ensure_company_access(actor, company_id)
    return get_appointment(db, company_id, appointment_ref)


@router.post("/{appointment_ref}/pcn", response_model=PCNSubmitResult)
def submit_appointment_pcn(
    appointment_ref: str,
    payload: PCNSubmitRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    result = submit_pcn(
        db,
        appointment_ref,
        payload.company_id,
        payload.submission,
        actor,
        resubmit=payload.resubmit,
    )
    return result.as_dict()
