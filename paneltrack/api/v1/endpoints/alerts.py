"""
MO Alert API Endpoints.
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from paneltrack.api.deps import get_alert_service
from paneltrack.models.alert import AlertStatus
from paneltrack.schemas.alert import AlertAction, AlertEvaluationResponse, AlertListResponse, AlertResponse
from paneltrack.services.mo_alert_service import MOAlertService

router = APIRouter()


@router.get(
    "",
    response_model=AlertListResponse,
    summary="List Alerts"
)
async def list_alerts(
    mo_id: Optional[UUID] = None,
    status_filter: Optional[AlertStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    service: MOAlertService = Depends(get_alert_service),
):
    items, total = await service.list_alerts(
        mo_id=mo_id,
        status=status_filter.value if status_filter else None,
        skip=skip,
        limit=limit,
    )
    return AlertListResponse(items=[AlertResponse.model_validate(a) for a in items], total=total)


@router.post(
    "/evaluate/{mo_id}",
    response_model=AlertEvaluationResponse,
    summary="Evaluate MO Alerts"
)
async def evaluate_alerts(
    mo_id: UUID,
    service: MOAlertService = Depends(get_alert_service),
):
    """Raise alerts for current conditions and auto-resolve cleared ones."""
    evaluation = await service.evaluate_alerts(mo_id)
    return AlertEvaluationResponse(
        mo_id=evaluation.mo_id,
        raised=[AlertResponse.model_validate(a) for a in evaluation.raised],
        resolved=[AlertResponse.model_validate(a) for a in evaluation.resolved],
        active=[AlertResponse.model_validate(a) for a in evaluation.active],
    )


@router.post(
    "/{alert_id}/acknowledge",
    response_model=AlertResponse,
    summary="Acknowledge Alert"
)
async def acknowledge_alert(
    alert_id: UUID,
    data: AlertAction,
    service: MOAlertService = Depends(get_alert_service),
):
    return await service.acknowledge_alert(alert_id, data.user_id, data.notes)


@router.post(
    "/{alert_id}/resolve",
    response_model=AlertResponse,
    summary="Resolve Alert"
)
async def resolve_alert(
    alert_id: UUID,
    data: AlertAction,
    service: MOAlertService = Depends(get_alert_service),
):
    return await service.resolve_alert(alert_id, data.user_id, data.notes)


@router.post(
    "/{alert_id}/suppress",
    response_model=AlertResponse,
    summary="Suppress Alert"
)
async def suppress_alert(
    alert_id: UUID,
    data: AlertAction,
    service: MOAlertService = Depends(get_alert_service),
):
    return await service.suppress_alert(alert_id, data.user_id, data.notes)
