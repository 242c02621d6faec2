"""
Inspection API Endpoints.
"""
from fastapi import APIRouter, Depends, status

from paneltrack.api.deps import get_inspection_service, get_rules
from paneltrack.core.exceptions import NotFoundError
from paneltrack.core.production_rules import ProductionRules
from paneltrack.schemas.inspection import (
    InspectionCreate,
    InspectionOutcome,
    InspectionResponse,
    StationCriteriaResponse,
)
from paneltrack.schemas.panel import PanelResponse
from paneltrack.services.inspection_service import InspectionService

router = APIRouter()


@router.post(
    "",
    response_model=InspectionOutcome,
    status_code=status.HTTP_201_CREATED,
    summary="Record Station Inspection"
)
async def record_inspection(
    data: InspectionCreate,
    service: InspectionService = Depends(get_inspection_service),
):
    """
    Record a PASS / FAIL / COSMETIC_DEFECT / REWORK result at a station.

    Rejected with 409 when the station is out of sequence or already passed,
    422 when notes, electrical data or a known checklist criterion are missing.
    """
    outcome = await service.record_inspection(data)
    return InspectionOutcome(
        inspection=InspectionResponse.model_validate(outcome.inspection),
        panel=PanelResponse.model_validate(outcome.panel),
        mo_closed=outcome.mo_closed,
    )


@router.get(
    "/stations/{station_number}/criteria",
    response_model=StationCriteriaResponse,
    summary="Get Station Checklist"
)
async def get_station_criteria(
    station_number: int,
    rules: ProductionRules = Depends(get_rules),
):
    """Pass and fail criteria for a station, including its line's own items."""
    line = rules.line_for_station(station_number)
    if line is None:
        raise NotFoundError(f"Station {station_number} is not on any line", "STATION_NOT_FOUND", field="station_number")
    checklist = rules.checklist_for(line.line_number, station_number)
    return StationCriteriaResponse(
        station_number=station_number,
        station_name=rules.station_name(station_number),
        line_name=line.line_name,
        pass_criteria=list(checklist.pass_criteria),
        fail_criteria=list(checklist.fail_criteria),
    )
