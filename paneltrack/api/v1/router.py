from fastapi import APIRouter

from paneltrack.api.v1.endpoints import (
    alerts,
    barcodes,
    inspections,
    manufacturing_orders,
    panels,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    barcodes.router,
    prefix="/barcodes",
    tags=["Barcodes"]
)
api_router.include_router(
    manufacturing_orders.router,
    prefix="/manufacturing-orders",
    tags=["Manufacturing Orders"]
)
api_router.include_router(
    panels.router,
    prefix="/panels",
    tags=["Panels"]
)
api_router.include_router(
    inspections.router,
    prefix="/inspections",
    tags=["Inspections"]
)
api_router.include_router(
    alerts.router,
    prefix="/alerts",
    tags=["Alerts"]
)
