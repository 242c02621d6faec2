"""
Manufacturing Order API Endpoints.

- Create / list / get orders
- Hold, resume, cancel
- Progress snapshot
- Closure evaluation, readiness assessment and audit history
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from paneltrack.api.deps import get_closure_service, get_mo_service, get_progress_service
from paneltrack.models.manufacturing_order import MOStatus
from paneltrack.schemas.manufacturing_order import (
    ClosureAuditResponse,
    ClosureDecision,
    ClosureHistoryResponse,
    ClosureReadiness,
    ManufacturingOrderCreate,
    ManufacturingOrderListResponse,
    ManufacturingOrderResponse,
    MOStatusChange,
)
from paneltrack.schemas.progress import ProgressSnapshot
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService
from paneltrack.services.mo_closure_service import MOClosureService
from paneltrack.services.mo_progress_service import MOProgressService

router = APIRouter()


@router.post(
    "",
    response_model=ManufacturingOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Manufacturing Order"
)
async def create_manufacturing_order(
    data: ManufacturingOrderCreate,
    service: ManufacturingOrderService = Depends(get_mo_service),
):
    return await service.create_manufacturing_order(data)


@router.get(
    "",
    response_model=ManufacturingOrderListResponse,
    summary="List Manufacturing Orders"
)
async def list_manufacturing_orders(
    status_filter: Optional[MOStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    service: ManufacturingOrderService = Depends(get_mo_service),
):
    items, total = await service.list_manufacturing_orders(
        status=status_filter.value if status_filter else None,
        skip=skip,
        limit=limit,
    )
    return ManufacturingOrderListResponse(
        items=[ManufacturingOrderResponse.model_validate(mo) for mo in items],
        total=total,
    )


@router.get(
    "/{mo_id}",
    response_model=ManufacturingOrderResponse,
    summary="Get Manufacturing Order"
)
async def get_manufacturing_order(
    mo_id: UUID,
    service: ManufacturingOrderService = Depends(get_mo_service),
):
    return await service.get_manufacturing_order(mo_id)


@router.post(
    "/{mo_id}/status",
    response_model=ManufacturingOrderResponse,
    summary="Change Manufacturing Order Status"
)
async def change_status(
    mo_id: UUID,
    data: MOStatusChange,
    service: ManufacturingOrderService = Depends(get_mo_service),
):
    """Hold, resume or cancel. COMPLETED cannot be requested."""
    return await service.change_status(mo_id, data.status, data.changed_by, data.reason)


@router.get(
    "/{mo_id}/progress",
    response_model=ProgressSnapshot,
    summary="Manufacturing Order Progress"
)
async def get_progress(
    mo_id: UUID,
    fresh: bool = Query(False, description="Bypass the progress cache"),
    service: MOProgressService = Depends(get_progress_service),
):
    return await service.compute_progress(mo_id, use_cache=not fresh)


@router.post(
    "/{mo_id}/closure",
    response_model=ClosureDecision,
    summary="Evaluate Manufacturing Order Closure"
)
async def evaluate_closure(
    mo_id: UUID,
    service: MOClosureService = Depends(get_closure_service),
):
    return await service.evaluate_closure(mo_id)


@router.get(
    "/{mo_id}/closure/readiness",
    response_model=ClosureReadiness,
    summary="Assess Manufacturing Order Closure Readiness"
)
async def assess_closure_readiness(
    mo_id: UUID,
    service: MOClosureService = Depends(get_closure_service),
):
    """Checks, blockers and recommendations. Read-only."""
    return await service.assess_closure_readiness(mo_id)


@router.get(
    "/{mo_id}/closure/history",
    response_model=ClosureHistoryResponse,
    summary="Manufacturing Order Closure History"
)
async def get_closure_history(
    mo_id: UUID,
    service: MOClosureService = Depends(get_closure_service),
):
    items, total = await service.get_closure_history(mo_id)
    return ClosureHistoryResponse(items=[ClosureAuditResponse.model_validate(a) for a in items], total=total)
