"""
Manufacturing Order Schemas
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from paneltrack.models.manufacturing_order import MOPriority, MOStatus
from paneltrack.schemas.base import BaseCreateSchema, BaseResponseSchema
from paneltrack.schemas.progress import ProgressSnapshot


class ManufacturingOrderCreate(BaseCreateSchema):
    """Supervisor request for a batch of one panel type."""
    order_number: str = Field(..., min_length=1, max_length=50)
    panel_type: str = Field(..., max_length=3)
    quantity: int
    start_date: date
    end_date: date
    created_by: str = Field(..., min_length=1, max_length=100)
    priority: MOPriority = MOPriority.NORMAL
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class MOStatusChange(BaseCreateSchema):
    status: MOStatus
    changed_by: str = Field(..., min_length=1, max_length=100)
    reason: Optional[str] = None


class ManufacturingOrderResponse(BaseResponseSchema):
    id: UUID
    order_number: str
    panel_type: str
    quantity: int
    status: str
    priority: str
    start_date: date
    end_date: date
    panels_completed: int
    panels_failed: int
    panels_remaining: int
    notes: Optional[str] = None
    status_reason: Optional[str] = None
    created_by: str
    created_at: datetime
    completed_at: Optional[datetime] = None


class ManufacturingOrderListResponse(BaseResponseSchema):
    items: List[ManufacturingOrderResponse]
    total: int


class ClosureDecision(BaseResponseSchema):
    """Result of evaluating whether an MO can close."""
    mo_id: UUID
    closed: bool
    status: str
    panels_completed: int
    quantity: int
    reason: str
    pallets_finalized: int = 0


class ClosureCheck(BaseModel):
    """One readiness check; failed checks are the blockers."""
    name: str
    passed: bool
    severity: str = "info"          # critical | warning | info
    weight: int = 1
    reason: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ClosureRecommendation(BaseModel):
    type: str
    priority: str                   # high | medium | low | info
    message: str
    details: Optional[str] = None


class ClosureReadiness(BaseModel):
    """Read-only assessment of how close an MO is to a clean closure."""
    mo_id: UUID
    order_number: str
    status: str
    ready: bool
    readiness_percent: float
    checks: List[ClosureCheck]
    blockers: List[ClosureCheck]
    recommendations: List[ClosureRecommendation]
    failure_criteria: Dict[str, int] = Field(default_factory=dict)
    progress: ProgressSnapshot
    assessed_at: datetime


class ClosureAuditResponse(BaseResponseSchema):
    id: UUID
    mo_id: UUID
    trigger: str
    closed_by: str
    quantity: int
    panels_completed: int
    panels_failed: int
    failure_rate_percent: float
    pallets_finalized: int
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class ClosureHistoryResponse(BaseResponseSchema):
    items: List[ClosureAuditResponse]
    total: int
