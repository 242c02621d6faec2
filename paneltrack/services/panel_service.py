"""
Panel Service.

Registration of panels against a manufacturing order and the supervisor
operations on a registered panel:
- register_panel: from a scanned barcode or a fully manual specification
- apply_specification_override: one audited correction
- record_electrical_data: performance-station measurements
- route_failed_panel_to_rework: supervisor disposition for a FAILED panel
"""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from paneltrack.core.exceptions import (
    ErrorDetail,
    NotFoundError,
    PanelTrackError,
    SpecificationValidationError,
    StateConflictError,
)
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.db_types import utc_now
from paneltrack.models.inspection import Inspection
from paneltrack.models.manufacturing_order import ManufacturingOrder, MOStatus
from paneltrack.models.panel import Panel, PanelStatus
from paneltrack.schemas.panel import ElectricalDataRequest, PanelRegister
from paneltrack.services.barcode_codec import BarcodeCodec
from paneltrack.services.cache_service import get_cache
from paneltrack.services.event_publisher import PANEL_REGISTERED, EventBuffer
from paneltrack.services.inspection_workflow import InspectionWorkflow, PanelWorkflowState, electrical_violations
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService, ensure_mo_active
from paneltrack.services.panel_specification import (
    OverrideAudit,
    PanelSpecification,
    SpecificationOverrides,
)

logger = logging.getLogger(__name__)


SPECIFICATION_FIELDS = (
    "barcode",
    "panel_type",
    "nominal_wattage",
    "construction_type",
    "frame_color",
    "production_year",
    "quality_grade",
    "factory_code",
    "batch_code",
    "sequence_number",
    "manual_override",
    "override_reason",
    "override_by",
    "override_at",
    "special_instructions",
    "qc_notes",
)


def specification_from_panel(panel: Panel) -> PanelSpecification:
    return PanelSpecification.model_validate({f: getattr(panel, f) for f in SPECIFICATION_FIELDS})


def ensure_panel_not_terminal(panel: Panel) -> None:
    if panel.is_terminal:
        raise StateConflictError(
            f"Panel {panel.barcode or panel.id} is {panel.status}",
            "PANEL_TERMINAL",
            field="status",
        )


class PanelService:
    """Service for panel registration and supervisor corrections."""

    def __init__(self, db: AsyncSession, rules: Optional[ProductionRules] = None):
        self.db = db
        self.rules = rules or get_production_rules()
        self.codec = BarcodeCodec(self.rules)
        self.workflow = InspectionWorkflow(self.rules)
        self.orders = ManufacturingOrderService(db, self.rules)

    # ==================== Reads ====================

    async def get_panel(self, panel_id: uuid.UUID, for_update: bool = False) -> Panel:
        stmt = select(Panel).where(Panel.id == panel_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        panel = result.scalar_one_or_none()
        if panel is None:
            raise NotFoundError(f"Panel {panel_id} not found", "PANEL_NOT_FOUND", field="panel_id")
        return panel

    async def get_panel_by_barcode(self, barcode: str) -> Panel:
        result = await self.db.execute(select(Panel).where(Panel.barcode == barcode))
        panel = result.scalar_one_or_none()
        if panel is None:
            raise NotFoundError(f"Panel with barcode {barcode} not found", "PANEL_NOT_FOUND", field="barcode")
        return panel

    async def list_inspections(self, panel_id: uuid.UUID) -> List[Inspection]:
        await self.get_panel(panel_id)
        result = await self.db.execute(
            select(Inspection)
            .where(Inspection.panel_id == panel_id)
            .order_by(Inspection.inspected_at, Inspection.created_at)
        )
        return list(result.scalars().all())

    # ==================== Registration ====================

    def build_specification(self, data: PanelRegister) -> PanelSpecification:
        if data.barcode is not None:
            decoded = self.codec.decode(data.barcode)
            spec = PanelSpecification.from_barcode(decoded, data.overrides, data.audit, rules=self.rules)
        else:
            audit = data.audit or OverrideAudit()
            spec = PanelSpecification.create_manual(data.manual_specification, audit, rules=self.rules)
            if data.overrides is not None and data.overrides.supplied():
                raise SpecificationValidationError(
                    "Overrides apply to barcode registrations only; put the values in the manual specification",
                    "OVERRIDE_NOT_APPLICABLE",
                    field="overrides",
                )
        return spec.ensure_valid(self.rules)

    async def register_panel(self, data: PanelRegister) -> Panel:
        """Create a panel under an MO. The first registration starts a PENDING MO."""
        events = EventBuffer()
        try:
            spec = self.build_specification(data)
            line = spec.resolve_line_assignment(self.rules)

            mo = await self.orders.get_manufacturing_order(data.mo_id, for_update=True)
            ensure_mo_active(mo)
            if spec.panel_type != mo.panel_type:
                raise SpecificationValidationError(
                    f"Panel type {spec.panel_type} does not match MO {mo.order_number} ({mo.panel_type})",
                    "PANEL_TYPE_MISMATCH",
                    field="panel_type",
                )

            if spec.barcode is not None:
                existing = await self.db.execute(select(Panel.id).where(Panel.barcode == spec.barcode))
                if existing.scalar_one_or_none() is not None:
                    raise StateConflictError(
                        f"Barcode {spec.barcode} is already registered",
                        "DUPLICATE_BARCODE",
                        field="barcode",
                    )

            panel = Panel(
                id=uuid.uuid4(),
                mo_id=mo.id,
                line_number=line.line_number,
                status=PanelStatus.PENDING.value,
                rework_cycle=0,
                rework_count=0,
                created_by=data.registered_by,
                **spec.model_dump(include=set(SPECIFICATION_FIELDS)),
            )
            self.db.add(panel)

            if mo.status == MOStatus.PENDING.value:
                await self.db.execute(
                    update(ManufacturingOrder)
                    .where(ManufacturingOrder.id == mo.id, ManufacturingOrder.status == MOStatus.PENDING.value)
                    .values(status=MOStatus.IN_PROGRESS.value, updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                logger.info(f"MO {mo.order_number} started by first panel registration")

            await self.db.flush()
            events.add(
                PANEL_REGISTERED,
                panel_id=str(panel.id),
                barcode=panel.barcode,
                mo_id=str(mo.id),
                line_number=panel.line_number,
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise StateConflictError(
                f"Barcode {data.barcode} is already registered",
                "DUPLICATE_BARCODE",
                field="barcode",
            )
        except PanelTrackError as e:
            await self.db.rollback()
            logger.warning(f"Panel registration rejected: {e.kind}/{e.code}")
            raise

        await self.db.refresh(panel)
        logger.info(f"Registered panel {panel.barcode or panel.id} on LINE_{panel.line_number}")
        await get_cache().invalidate_mo(panel.mo_id)
        await events.flush()
        return panel

    # ==================== Corrections ====================

    async def apply_specification_override(
        self,
        panel_id: uuid.UUID,
        overrides: SpecificationOverrides,
        audit: OverrideAudit,
    ) -> Panel:
        """Correct the stored specification once, with a full audit stamp."""
        try:
            panel = await self.get_panel(panel_id, for_update=True)
            ensure_panel_not_terminal(panel)

            corrected = specification_from_panel(panel).with_overrides(overrides, audit)
            corrected.ensure_valid(self.rules)
            line = corrected.resolve_line_assignment(self.rules)

            mo = await self.orders.get_manufacturing_order(panel.mo_id)
            if corrected.panel_type != mo.panel_type:
                raise SpecificationValidationError(
                    f"Panel type {corrected.panel_type} does not match MO {mo.order_number} ({mo.panel_type})",
                    "PANEL_TYPE_MISMATCH",
                    field="panel_type",
                )

            for field in SPECIFICATION_FIELDS:
                setattr(panel, field, getattr(corrected, field))
            panel.line_number = line.line_number
            await self.db.commit()
        except PanelTrackError as e:
            await self.db.rollback()
            logger.warning(f"Specification override rejected for panel {panel_id}: {e.code}")
            raise

        await self.db.refresh(panel)
        logger.info(
            f"Specification override on panel {panel.barcode or panel.id} by {panel.override_by}: "
            f"{sorted(overrides.supplied())}"
        )
        return panel

    async def record_electrical_data(self, panel_id: uuid.UUID, data: ElectricalDataRequest) -> Panel:
        """Store performance-station measurements; every out-of-range value is reported."""
        values = data.model_dump(include={"wattage_pmax", "vmp", "imp"}, exclude_none=True)
        try:
            if not values:
                raise SpecificationValidationError(
                    "At least one electrical measurement is required",
                    "EMPTY_ELECTRICAL_DATA",
                    errors=[
                        ErrorDetail(field=f, code="REQUIRED", message=f"{f} is required")
                        for f in ("wattage_pmax", "vmp", "imp")
                    ],
                )
            violations = electrical_violations(values, self.rules, require_all=False)
            if violations:
                raise SpecificationValidationError(
                    "Electrical data out of range",
                    "INVALID_ELECTRICAL_DATA",
                    errors=violations,
                )

            panel = await self.get_panel(panel_id, for_update=True)
            ensure_panel_not_terminal(panel)
            for field, value in values.items():
                setattr(panel, field, value)
            panel.electrical_recorded_at = utc_now()
            await self.db.commit()
        except PanelTrackError as e:
            await self.db.rollback()
            logger.warning(f"Electrical data rejected for panel {panel_id}: {e.code}")
            raise

        await self.db.refresh(panel)
        logger.info(f"Electrical data recorded for panel {panel.barcode or panel.id} by {data.recorded_by}")
        return panel

    async def route_failed_panel_to_rework(self, panel_id: uuid.UUID, reason: str, routed_by: str) -> Panel:
        """Supervisor decision to send a FAILED panel back into the line."""
        try:
            panel = await self.get_panel(panel_id, for_update=True)
            mo = await self.orders.get_manufacturing_order(panel.mo_id)
            ensure_mo_active(mo)

            state = self.workflow.route_to_rework(PanelWorkflowState.from_panel(panel), reason)
            panel.status = state.status
            panel.current_station = state.current_station
            panel.rework_reason = state.rework_reason
            panel.rework_count = state.rework_count
            panel.rework_cycle = state.rework_cycle
            for position, value in enumerate(state.station_timestamps, start=1):
                panel.set_station_completed_at(position, value)

            await self.db.execute(
                update(ManufacturingOrder)
                .where(ManufacturingOrder.id == mo.id, ManufacturingOrder.panels_failed > 0)
                .values(panels_failed=ManufacturingOrder.panels_failed - 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except PanelTrackError as e:
            await self.db.rollback()
            logger.warning(f"Rework routing rejected for panel {panel_id}: {e.code}")
            raise

        await self.db.refresh(panel)
        logger.info(
            f"Panel {panel.barcode or panel.id} routed to rework by {routed_by}, "
            f"re-entering at station {panel.current_station}"
        )
        await get_cache().invalidate_mo(panel.mo_id)
        return panel
