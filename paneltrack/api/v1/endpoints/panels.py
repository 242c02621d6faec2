"""
Panel API Endpoints.

- Register panels under a manufacturing order
- Lookup by id or barcode
- Specification override, electrical data, rework routing
- Inspection history
"""
from uuid import UUID

from fastapi import APIRouter, Depends, status

from paneltrack.api.deps import get_panel_service
from paneltrack.schemas.inspection import InspectionListResponse, InspectionResponse
from paneltrack.schemas.panel import (
    ElectricalDataRequest,
    PanelOverrideRequest,
    PanelRegister,
    PanelResponse,
    ReworkRouteRequest,
)
from paneltrack.services.panel_service import PanelService

router = APIRouter()


@router.post(
    "",
    response_model=PanelResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register Panel"
)
async def register_panel(
    data: PanelRegister,
    service: PanelService = Depends(get_panel_service),
):
    """Register a panel from a scanned barcode or a manual specification."""
    return await service.register_panel(data)


@router.get(
    "/by-barcode/{barcode}",
    response_model=PanelResponse,
    summary="Get Panel by Barcode"
)
async def get_panel_by_barcode(
    barcode: str,
    service: PanelService = Depends(get_panel_service),
):
    return await service.get_panel_by_barcode(barcode)


@router.get(
    "/{panel_id}",
    response_model=PanelResponse,
    summary="Get Panel"
)
async def get_panel(
    panel_id: UUID,
    service: PanelService = Depends(get_panel_service),
):
    return await service.get_panel(panel_id)


@router.post(
    "/{panel_id}/override",
    response_model=PanelResponse,
    summary="Override Panel Specification"
)
async def override_specification(
    panel_id: UUID,
    data: PanelOverrideRequest,
    service: PanelService = Depends(get_panel_service),
):
    """Correct the panel specification. Allowed once, always audited."""
    return await service.apply_specification_override(panel_id, data.overrides, data.audit)


@router.post(
    "/{panel_id}/electrical-data",
    response_model=PanelResponse,
    summary="Record Electrical Data"
)
async def record_electrical_data(
    panel_id: UUID,
    data: ElectricalDataRequest,
    service: PanelService = Depends(get_panel_service),
):
    return await service.record_electrical_data(panel_id, data)


@router.post(
    "/{panel_id}/rework",
    response_model=PanelResponse,
    summary="Route Failed Panel to Rework"
)
async def route_to_rework(
    panel_id: UUID,
    data: ReworkRouteRequest,
    service: PanelService = Depends(get_panel_service),
):
    return await service.route_failed_panel_to_rework(panel_id, data.reason, data.routed_by)


@router.get(
    "/{panel_id}/inspections",
    response_model=InspectionListResponse,
    summary="List Panel Inspections"
)
async def list_inspections(
    panel_id: UUID,
    service: PanelService = Depends(get_panel_service),
):
    inspections = await service.list_inspections(panel_id)
    return InspectionListResponse(
        items=[InspectionResponse.model_validate(i) for i in inspections],
        total=len(inspections),
    )
