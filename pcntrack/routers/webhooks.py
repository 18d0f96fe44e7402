"""Inbound GHL webhooks."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pcntrack.config import get_settings
from pcntrack.db import get_db
from pcntrack.schemas.webhook import WebhookAck
from pcntrack.services import ingestion
from pcntrack.services.signatures import SOURCE_GHL, SOURCE_PCN_SURVEY
from pcntrack.utils.errors import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _respond(result: ingestion.ProcessingResult) -> JSONResponse:
    if result.acknowledged:
        ack = WebhookAck(event_id=result.event_id, status=result.status, event_type=result.event_type)
        return JSONResponse(status_code=200, content=ack.model_dump())
    return JSONResponse(
        status_code=result.http_status,
        content=error_response(
            result.error_code or "WEBHOOK_REJECTED",
            result.error or "Webhook rejected.",
            {"event_id": result.event_id} if result.event_id is not None else None,
        ),
    )


async def _ingest(request: Request, db: Session, source: str) -> JSONResponse:
    raw_body = await request.body()
    result = await run_in_threadpool(
        ingestion.ingest,
        db,
        source,
        raw_body,
        dict(request.headers),
        dict(request.query_params),
        settings=get_settings(),
    )
    return _respond(result)


@router.post("/ghl", response_model=WebhookAck)
async def ghl_webhook(request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    return await _ingest(request, db, SOURCE_GHL)


@router.post("/ghl/pcn-survey", response_model=WebhookAck)
async def ghl_pcn_survey_webhook(request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    return await _ingest(request, db, SOURCE_PCN_SURVEY)


__all__ = ["router"]
