"""
MO Alert Schemas
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field

from paneltrack.schemas.base import BaseCreateSchema, BaseResponseSchema


class AlertAction(BaseCreateSchema):
    """Acknowledge / resolve / suppress request."""
    user_id: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = None


class AlertResponse(BaseResponseSchema):
    id: UUID
    mo_id: UUID
    alert_type: str
    severity: str
    status: str
    title: str
    message: str
    threshold_value: Optional[float] = None
    current_value: Optional[float] = None
    station_number: Optional[int] = None
    context: Optional[Dict[str, Any]] = None
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    auto_resolved: bool = False
    suppressed_at: Optional[datetime] = None
    suppressed_by: Optional[str] = None
    resolution_notes: Optional[str] = None


class AlertListResponse(BaseResponseSchema):
    items: List[AlertResponse]
    total: int


class AlertEvaluationResponse(BaseResponseSchema):
    mo_id: UUID
    raised: List[AlertResponse]
    resolved: List[AlertResponse]
    active: List[AlertResponse]
