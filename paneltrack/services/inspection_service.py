"""
Inspection Service.

Records station inspections atomically:
1. lock the panel row, then its MO row (SELECT ... FOR UPDATE)
2. load its inspection history and ask InspectionWorkflow for the transition
3. append the inspection and update the panel
4. on completion, bump the MO counter in the same transaction and run closure
5. commit; then invalidate the MO progress cache and publish events

Two concurrent attempts at the same station serialize on the panel lock; if
the store's uniqueness constraints still catch a collision, it surfaces as a
STATE_CONFLICT_ERROR, never as raw constraint text.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from paneltrack.core.exceptions import PanelTrackError, StateConflictError
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.db_types import utc_now
from paneltrack.models.inspection import Inspection
from paneltrack.models.manufacturing_order import ManufacturingOrder
from paneltrack.models.mo_closure_audit import ClosureTrigger
from paneltrack.models.panel import Panel
from paneltrack.schemas.inspection import InspectionCreate
from paneltrack.schemas.manufacturing_order import ClosureDecision
from paneltrack.services.cache_service import get_cache
from paneltrack.services.event_publisher import (
    INSPECTION_RECORDED,
    PANEL_COMPLETED,
    PANEL_FAILED,
    EventBuffer,
)
from paneltrack.services.inspection_workflow import (
    InspectionAttempt,
    InspectionRecord,
    InspectionWorkflow,
    PanelWorkflowState,
    WorkflowTransition,
)
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService, ensure_mo_active
from paneltrack.services.mo_closure_service import MOClosureService, PalletFinalizer
from paneltrack.services.panel_service import PanelService

logger = logging.getLogger(__name__)


class InspectionResultBundle:
    """What record_inspection hands back to its caller."""

    def __init__(self, inspection: Inspection, panel: Panel, closure: Optional[ClosureDecision] = None):
        self.inspection = inspection
        self.panel = panel
        self.closure = closure

    @property
    def mo_closed(self) -> bool:
        return bool(self.closure and self.closure.closed)


class InspectionService:
    """Service for station inspections."""

    def __init__(
        self,
        db: AsyncSession,
        rules: Optional[ProductionRules] = None,
        pallet_finalizer: Optional[PalletFinalizer] = None,
    ):
        self.db = db
        self.rules = rules or get_production_rules()
        self.workflow = InspectionWorkflow(self.rules)
        self.panels = PanelService(db, self.rules)
        self.orders = ManufacturingOrderService(db, self.rules)
        self.pallet_finalizer = pallet_finalizer

    async def _history(self, panel_id: uuid.UUID):
        result = await self.db.execute(
            select(Inspection)
            .where(Inspection.panel_id == panel_id)
            .order_by(Inspection.inspected_at, Inspection.created_at)
        )
        return [
            InspectionRecord(
                station_number=i.station_number,
                result=i.result,
                inspected_at=i.inspected_at,
                rework_cycle=i.rework_cycle,
            )
            for i in result.scalars().all()
        ]

    async def record_inspection(self, data: InspectionCreate) -> InspectionResultBundle:
        """Admit and record one inspection, or raise a classified error with state unchanged."""
        events = EventBuffer()
        closure = None
        try:
            panel = await self.panels.get_panel(data.panel_id, for_update=True)
            mo = await self.orders.get_manufacturing_order(panel.mo_id, for_update=True)
            ensure_mo_active(mo)

            attempt = InspectionAttempt(
                station_number=data.station_number,
                inspector_id=data.inspector_id,
                result=data.result,
                notes=data.notes,
                criteria=tuple(data.criteria),
                inspected_at=data.inspected_at or utc_now(),
            )
            transition = self.workflow.evaluate(
                PanelWorkflowState.from_panel(panel),
                await self._history(panel.id),
                attempt,
            )

            inspection = Inspection(
                id=uuid.uuid4(),
                panel_id=panel.id,
                station_number=transition.station_number,
                line_position=transition.line_position,
                inspector_id=attempt.inspector_id,
                inspected_at=attempt.inspected_at,
                result=transition.result,
                passed=transition.passed,
                notes=attempt.notes,
                criteria=list(attempt.criteria),
                rework_cycle=transition.rework_cycle,
                attempt=transition.attempt,
            )
            self.db.add(inspection)
            self._apply(panel, transition, attempt)
            await self.db.flush()

            if transition.completed or transition.failed:
                counter = "panels_completed" if transition.completed else "panels_failed"
                column = getattr(ManufacturingOrder, counter)
                await self.db.execute(
                    update(ManufacturingOrder)
                    .where(ManufacturingOrder.id == mo.id)
                    .values({counter: column + 1})
                    .execution_options(synchronize_session=False)
                )

            events.add(
                INSPECTION_RECORDED,
                inspection_id=str(inspection.id),
                panel_id=str(panel.id),
                station_number=transition.station_number,
                result=transition.result,
                inspector_id=attempt.inspector_id,
            )
            if transition.completed:
                events.add(PANEL_COMPLETED, panel_id=str(panel.id), barcode=panel.barcode, mo_id=str(mo.id))
                closure = await MOClosureService(self.db, self.rules, self.pallet_finalizer).evaluate_closure(
                    mo.id, events=events, commit=False, trigger=ClosureTrigger.INSPECTION
                )
            elif transition.failed:
                events.add(
                    PANEL_FAILED,
                    panel_id=str(panel.id),
                    barcode=panel.barcode,
                    mo_id=str(mo.id),
                    station_number=transition.station_number,
                    notes=attempt.notes,
                )

            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            events.discard()
            logger.warning(f"Concurrent inspection collision for panel {data.panel_id} station {data.station_number}")
            raise StateConflictError(
                f"Station {data.station_number} was inspected concurrently for this panel",
                "DUPLICATE_INSPECTION",
                field="station_number",
            )
        except PanelTrackError as e:
            await self.db.rollback()
            events.discard()
            logger.warning(
                f"Inspection rejected for panel {data.panel_id} station {data.station_number}: "
                f"{e.kind}/{e.code}"
            )
            raise

        await self.db.refresh(panel)
        await self.db.refresh(inspection)
        logger.info(
            f"Inspection {inspection.result} at station {inspection.station_number} "
            f"for panel {panel.barcode or panel.id} -> {panel.status}"
        )
        await get_cache().invalidate_mo(panel.mo_id)
        await events.flush()
        return InspectionResultBundle(inspection, panel, closure)

    @staticmethod
    def _apply(panel: Panel, transition: WorkflowTransition, attempt: InspectionAttempt) -> None:
        panel.status = transition.status
        panel.current_station = transition.current_station
        for position, value in enumerate(transition.station_timestamps, start=1):
            panel.set_station_completed_at(position, value)
        panel.rework_cycle = transition.next_rework_cycle
        panel.rework_count = transition.rework_count
        panel.rework_reason = transition.rework_reason
        panel.quality_notes = transition.quality_notes
        if transition.completed:
            panel.completed_at = attempt.inspected_at
