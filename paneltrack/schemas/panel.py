"""
Panel Schemas
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field, model_validator

from paneltrack.schemas.base import BaseCreateSchema, BaseResponseSchema
from paneltrack.services.panel_specification import (
    ManualSpecificationInput,
    OverrideAudit,
    SpecificationOverrides,
)


class PanelRegister(BaseCreateSchema):
    """Register a panel under an MO from a scanned barcode or a manual specification."""
    mo_id: UUID
    registered_by: str = Field(..., min_length=1, max_length=100)
    barcode: Optional[str] = None
    manual_specification: Optional[ManualSpecificationInput] = None
    overrides: Optional[SpecificationOverrides] = None
    audit: Optional[OverrideAudit] = None

    @model_validator(mode="after")
    def check_source(self):
        if (self.barcode is None) == (self.manual_specification is None):
            raise ValueError("Provide exactly one of barcode or manual_specification")
        return self


class PanelOverrideRequest(BaseCreateSchema):
    overrides: SpecificationOverrides
    audit: OverrideAudit


class ElectricalDataRequest(BaseCreateSchema):
    """Performance station measurements."""
    wattage_pmax: Optional[float] = None
    vmp: Optional[float] = None
    imp: Optional[float] = None
    recorded_by: str = Field(..., min_length=1, max_length=100)


class ReworkRouteRequest(BaseCreateSchema):
    reason: str
    routed_by: str = Field(..., min_length=1, max_length=100)


class PanelResponse(BaseResponseSchema):
    id: UUID
    barcode: Optional[str] = None
    mo_id: UUID
    panel_type: str
    line_number: int
    nominal_wattage: Optional[float] = None
    construction_type: Optional[str] = None
    frame_color: Optional[str] = None
    production_year: Optional[int] = None
    quality_grade: Optional[str] = None
    factory_code: Optional[str] = None
    batch_code: Optional[str] = None
    sequence_number: Optional[int] = None
    manual_override: bool
    override_reason: Optional[str] = None
    override_by: Optional[str] = None
    override_at: Optional[datetime] = None
    special_instructions: Optional[str] = None
    qc_notes: Optional[str] = None

    status: str
    current_station: Optional[int] = None
    station_1_completed_at: Optional[datetime] = None
    station_2_completed_at: Optional[datetime] = None
    station_3_completed_at: Optional[datetime] = None
    station_4_completed_at: Optional[datetime] = None
    rework_cycle: int
    rework_count: int
    rework_reason: Optional[str] = None
    quality_notes: Optional[str] = None
    wattage_pmax: Optional[float] = None
    vmp: Optional[float] = None
    imp: Optional[float] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
