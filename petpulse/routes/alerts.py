"""Alert routes for the escalation engine.

Intake (called by video workers and external monitoring):
    - POST /alert            standard alerts
    - POST /alert/critical   critical alerts (same handler, separate path for routing)

Human-facing:
    - GET  /alerts/critical                critical alerts, newest first
    - POST /alerts/{alert_id}/acknowledge  owner acknowledgement
    - POST /alerts/{alert_id}/resolve      mark resolved

Pattern (intake):
    - Parse payload (fast, validation)
    - Submit to AlertIntake (admission-controlled background processing)
    - Return 202 immediately
"""

import json
import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from petpulse.database import get_session
from petpulse.schemas.alert import (
    AcknowledgeRequest,
    AlertAcceptedResponse,
    AlertPayload,
    AlertResponse,
)
from petpulse.services import alert_service
from petpulse.services.comfort_loop import AlertIntake

log = structlog.get_logger()
router = APIRouter(tags=["alerts"])


def get_alert_intake(request: Request) -> AlertIntake:
    intake = getattr(request.app.state, "alert_intake", None)
    if intake is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert intake not configured",
        )
    return intake


async def _accept_alert(request: Request, intake: AlertIntake) -> JSONResponse:
    body = await request.body()
    try:
        payload = AlertPayload.from_raw(json.loads(body))
    except (ValueError, ValidationError) as e:
        log.warning("alert_invalid_payload", error=str(e), body=body.decode(errors="replace")[:200])
        raise HTTPException(status_code=400, detail="Invalid alert payload") from e

    intake.submit(payload)
    log.info(
        "alert_accepted",
        alert_id=payload.alert_id,
        pet_id=payload.pet_id,
        alert_type=payload.alert_type.value,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=AlertAcceptedResponse(alert_id=payload.alert_id).model_dump(),
    )


@router.post("/alert")
async def receive_alert(
    request: Request, intake: AlertIntake = Depends(get_alert_intake)
) -> JSONResponse:
    return await _accept_alert(request, intake)


@router.post("/alert/critical")
async def receive_critical_alert(
    request: Request, intake: AlertIntake = Depends(get_alert_intake)
) -> JSONResponse:
    return await _accept_alert(request, intake)


@router.get("/alerts/critical", response_model=list[AlertResponse])
async def get_critical_alerts(db: AsyncSession = Depends(get_session)) -> list[AlertResponse]:
    alerts = await alert_service.list_critical_alerts(db)
    return [AlertResponse.model_validate(alert) for alert in alerts]


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: uuid.UUID,
    body: AcknowledgeRequest,
    db: AsyncSession = Depends(get_session),
) -> AlertResponse:
    alert = await alert_service.acknowledge_alert(db, alert_id, body.response)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return AlertResponse.model_validate(alert)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: uuid.UUID, db: AsyncSession = Depends(get_session)
) -> AlertResponse:
    alert = await alert_service.resolve_alert(db, alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return AlertResponse.model_validate(alert)
