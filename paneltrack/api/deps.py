"""
FastAPI dependencies: one service per request, bound to the request's session.

There is no authentication layer; the acting user travels in request bodies.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.database import get_db
from paneltrack.services.barcode_codec import BarcodeCodec
from paneltrack.services.inspection_service import InspectionService
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService
from paneltrack.services.mo_alert_service import MOAlertService
from paneltrack.services.mo_closure_service import MOClosureService
from paneltrack.services.mo_progress_service import MOProgressService
from paneltrack.services.panel_service import PanelService


def get_rules() -> ProductionRules:
    return get_production_rules()


def get_barcode_codec(rules: ProductionRules = Depends(get_rules)) -> BarcodeCodec:
    return BarcodeCodec(rules)


async def get_panel_service(
    db: AsyncSession = Depends(get_db),
    rules: ProductionRules = Depends(get_rules),
) -> PanelService:
    return PanelService(db, rules)


async def get_inspection_service(
    db: AsyncSession = Depends(get_db),
    rules: ProductionRules = Depends(get_rules),
) -> InspectionService:
    return InspectionService(db, rules)


async def get_mo_service(
    db: AsyncSession = Depends(get_db),
    rules: ProductionRules = Depends(get_rules),
) -> ManufacturingOrderService:
    return ManufacturingOrderService(db, rules)


async def get_progress_service(
    db: AsyncSession = Depends(get_db),
    rules: ProductionRules = Depends(get_rules),
) -> MOProgressService:
    return MOProgressService(db, rules)


async def get_alert_service(
    db: AsyncSession = Depends(get_db),
    rules: ProductionRules = Depends(get_rules),
) -> MOAlertService:
    return MOAlertService(db, rules=rules)


async def get_closure_service(
    db: AsyncSession = Depends(get_db),
    rules: ProductionRules = Depends(get_rules),
) -> MOClosureService:
    return MOClosureService(db, rules)
