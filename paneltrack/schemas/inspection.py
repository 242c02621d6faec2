"""
Inspection Schemas
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from paneltrack.core.production_rules import StationCriterion
from paneltrack.models.inspection import InspectionResult
from paneltrack.schemas.base import BaseCreateSchema, BaseResponseSchema
from paneltrack.schemas.panel import PanelResponse


class InspectionCreate(BaseCreateSchema):
    panel_id: UUID
    station_number: int = Field(..., ge=1)
    inspector_id: str = Field(..., min_length=1, max_length=100)
    result: InspectionResult
    notes: Optional[str] = None
    criteria: List[str] = Field(default_factory=list)
    inspected_at: Optional[datetime] = None   # defaults to now


class InspectionResponse(BaseResponseSchema):
    id: UUID
    panel_id: UUID
    station_number: int
    line_position: int
    inspector_id: str
    inspected_at: datetime
    result: str
    passed: bool
    notes: Optional[str] = None
    criteria: List[str] = Field(default_factory=list)
    rework_cycle: int
    attempt: int


class InspectionOutcome(BaseResponseSchema):
    """Recorded inspection plus the panel state it produced."""
    inspection: InspectionResponse
    panel: PanelResponse
    mo_closed: bool = False


class InspectionListResponse(BaseResponseSchema):
    items: List[InspectionResponse]
    total: int


class StationCriteriaResponse(BaseResponseSchema):
    """The checklist an inspector works from at one station."""
    station_number: int
    station_name: str
    line_name: str
    pass_criteria: List[StationCriterion]
    fail_criteria: List[StationCriterion]
