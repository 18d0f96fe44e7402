"""Operator triggers for the periodic jobs."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pcntrack.config import get_settings
from pcntrack.db import get_db
from pcntrack.models.api_key import ApiScope
from pcntrack.schemas.jobs import RecomputeRead, SweepRead, WeeklyReportRead
from pcntrack.security import require_scope
from pcntrack.services.inclusion import recompute_all
from pcntrack.services.notifications import Notifier, get_notifier
from pcntrack.services.sweep import sweep_pending_pcns
from pcntrack.services.weekly_report import send_weekly_reports

router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)


@router.post("/pcn-sweep", response_model=SweepRead)
def run_pcn_sweep(
    company_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return sweep_pending_pcns(db, notifier=notifier, company_id=company_id, settings=get_settings()).as_dict()


@router.post("/weekly-report", response_model=WeeklyReportRead)
def run_weekly_report(
    company_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return send_weekly_reports(db, notifier=notifier, company_id=company_id, settings=get_settings()).as_dict()


@router.post("/recompute-inclusion", response_model=RecomputeRead)
def run_recompute_inclusion(
    company_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return recompute_all(db, company_id, batch_size=get_settings().PCN_SWEEP_BATCH_SIZE).as_dict()
