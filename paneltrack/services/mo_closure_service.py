"""
MO Closure Service.

The single place that sets a manufacturing order to COMPLETED. Closure runs
when panels_completed reaches quantity, normally inside the transaction of
the inspection that completed the last panel. The status flip is a
conditional UPDATE (status still open, counter at quantity), so concurrent
evaluators close the order exactly once.

Closing also finalizes the MO's open pallet assignments through a
PalletFinalizer collaborator, raises the mo_completed alert and writes a
closure audit record in the same transaction.

assess_closure_readiness() is the read-only side: it scores the order
against the closure checks and lists what still blocks a clean closure.
"""
import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paneltrack.config import settings
from paneltrack.core.exceptions import PanelTrackError
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.db_types import utc_now
from paneltrack.models.inspection import Inspection
from paneltrack.models.manufacturing_order import ManufacturingOrder, MOStatus
from paneltrack.models.mo_closure_audit import ClosureTrigger, MOClosureAudit
from paneltrack.models.panel import Panel, PanelStatus
from paneltrack.schemas.manufacturing_order import (
    ClosureCheck,
    ClosureDecision,
    ClosureReadiness,
    ClosureRecommendation,
)
from paneltrack.schemas.progress import ProgressSnapshot
from paneltrack.services.cache_service import get_cache
from paneltrack.services.event_publisher import MO_COMPLETED, EventBuffer
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService
from paneltrack.services.mo_alert_service import MOAlertService
from paneltrack.services.mo_progress_service import MOProgressService

logger = logging.getLogger(__name__)


class PalletFinalizer:
    """Pallet assignment collaborator. Packing itself lives outside this service."""

    async def finalize_for_mo(self, db: AsyncSession, mo: ManufacturingOrder) -> int:
        """Finalize open pallets for the MO; returns how many were finalized."""
        raise NotImplementedError


class NullPalletFinalizer(PalletFinalizer):
    """Used when no pallet system is attached."""

    async def finalize_for_mo(self, db: AsyncSession, mo: ManufacturingOrder) -> int:
        logger.debug(f"No pallet system attached; nothing to finalize for MO {mo.order_number}")
        return 0


class ClosureThresholds(BaseModel):
    max_failure_rate_percent: float = 15.0
    min_readiness_percent: float = 80.0

    @classmethod
    def from_settings(cls, app_settings=None) -> "ClosureThresholds":
        s = app_settings or settings
        return cls(
            max_failure_rate_percent=s.CLOSURE_MAX_FAILURE_RATE_PERCENT,
            min_readiness_percent=s.CLOSURE_MIN_READINESS_PERCENT,
        )


# check name -> (type, priority, message) shown when the check blocks closure
RECOMMENDATIONS: Dict[str, Tuple[str, str, str]] = {
    "order_status": ("action_required", "high", "Resume the order or review why it is not running"),
    "panel_completion": ("action_required", "high", "Complete the remaining panels"),
    "open_panels": ("action_required", "medium", "Finish or disposition panels still on the line"),
    "failure_rate": ("quality_review", "high", "Review failure causes and quality processes"),
    "quality_standards": ("data_completion", "high", "Complete or correct electrical data for completed panels"),
}

OPEN_PANEL_STATUSES = (PanelStatus.PENDING.value, PanelStatus.IN_PROGRESS.value, PanelStatus.REWORK.value)


def closure_failure_rate(panels_completed: int, panels_failed: int) -> float:
    """Failed share of the panels that reached a terminal result."""
    finished = panels_completed + panels_failed
    return round(panels_failed / finished * 100, 2) if finished else 0.0


# ==================== Readiness checks ====================

def check_order_status(mo: ManufacturingOrder) -> ClosureCheck:
    running = mo.status in (MOStatus.IN_PROGRESS.value, MOStatus.COMPLETED.value)
    return ClosureCheck(
        name="order_status",
        passed=running,
        severity="info" if running else "critical",
        weight=1,
        reason=f"Order is {mo.status}",
        details={"status": mo.status},
    )


def check_panel_completion(mo: ManufacturingOrder) -> ClosureCheck:
    remaining = max(mo.quantity - mo.panels_completed, 0)
    details = {"panels_completed": mo.panels_completed, "quantity": mo.quantity, "panels_remaining": remaining}
    if remaining:
        return ClosureCheck(
            name="panel_completion",
            passed=False,
            severity="critical",
            weight=2,
            reason=f"{remaining} panels remaining ({mo.panels_completed}/{mo.quantity} completed)",
            details=details,
        )
    return ClosureCheck(name="panel_completion", passed=True, weight=2, reason="Quantity reached", details=details)


def check_open_panels(progress: ProgressSnapshot) -> ClosureCheck:
    counts = progress.counts
    on_line = counts.pending + counts.in_progress + counts.rework
    if on_line:
        return ClosureCheck(
            name="open_panels",
            passed=False,
            severity="warning",
            weight=1,
            reason=f"{on_line} panels still on the line",
            details={"pending": counts.pending, "in_progress": counts.in_progress, "rework": counts.rework},
        )
    return ClosureCheck(name="open_panels", passed=True, weight=1, reason="No panels left on the line")


def check_failure_rate(progress: ProgressSnapshot, thresholds: ClosureThresholds) -> ClosureCheck:
    rate = progress.failure_rate_percent
    details = {"failure_rate_percent": rate, "threshold_percent": thresholds.max_failure_rate_percent}
    if rate > thresholds.max_failure_rate_percent:
        return ClosureCheck(
            name="failure_rate",
            passed=False,
            severity="critical",
            weight=2,
            reason=f"Failure rate ({rate}%) exceeds maximum threshold ({thresholds.max_failure_rate_percent:g}%)",
            details=details,
        )
    return ClosureCheck(
        name="failure_rate", passed=True, weight=2, reason="Failure rate within acceptable limits", details=details
    )


def check_quality_standards(
    mo: ManufacturingOrder,
    panels: Sequence[Panel],
    rules: ProductionRules,
) -> ClosureCheck:
    """Completed panels carry electrical data and their average power fits the panel type."""
    completed = [p for p in panels if p.status == PanelStatus.COMPLETED.value]
    missing = [p for p in completed if p.wattage_pmax is None or p.vmp is None or p.imp is None]
    if missing:
        return ClosureCheck(
            name="quality_standards",
            passed=False,
            severity="critical",
            weight=1,
            reason=f"{len(missing)} completed panels missing electrical data",
            details={"missing_electrical_data": len(missing)},
        )
    if not completed:
        return ClosureCheck(name="quality_standards", passed=True, weight=1, reason="No completed panels yet")

    average = round(sum(p.wattage_pmax for p in completed) / len(completed), 1)
    details = {"completed_panels": len(completed), "average_wattage": average}
    expected = rules.wattage_ranges.get(mo.panel_type)
    if expected is not None and not expected.contains(average):
        return ClosureCheck(
            name="quality_standards",
            passed=False,
            severity="warning",
            weight=1,
            reason=(
                f"Average wattage ({average:g}W) outside the {mo.panel_type}-cell range "
                f"{expected.min:g}-{expected.max:g}W"
            ),
            details=details,
        )
    return ClosureCheck(name="quality_standards", passed=True, weight=1, reason="Quality standards met", details=details)


def closure_recommendations(
    blockers: Sequence[ClosureCheck],
    ready: bool,
    readiness_percent: float,
) -> List[ClosureRecommendation]:
    recommendations = []
    for blocker in blockers:
        kind, priority, message = RECOMMENDATIONS[blocker.name]
        recommendations.append(
            ClosureRecommendation(type=kind, priority=priority, message=message, details=blocker.reason)
        )
    if ready:
        recommendations.append(ClosureRecommendation(
            type="ready_for_closure",
            priority="info",
            message="Manufacturing order is ready for closure",
            details=f"Readiness score: {readiness_percent:.1f}%",
        ))
    else:
        recommendations.append(ClosureRecommendation(
            type="not_ready",
            priority="info",
            message="Manufacturing order requires additional work before closure",
            details=f"{len(blockers)} blockers must be resolved",
        ))
    return recommendations


# ==================== Service ====================

class MOClosureService:
    """Decides and performs automatic MO completion."""

    def __init__(
        self,
        db: AsyncSession,
        rules: Optional[ProductionRules] = None,
        pallet_finalizer: Optional[PalletFinalizer] = None,
        thresholds: Optional[ClosureThresholds] = None,
    ):
        self.db = db
        self.rules = rules or get_production_rules()
        self.pallet_finalizer = pallet_finalizer or NullPalletFinalizer()
        self.thresholds = thresholds or ClosureThresholds.from_settings()
        self.orders = ManufacturingOrderService(db, self.rules)

    async def evaluate_closure(
        self,
        mo_id: uuid.UUID,
        events: Optional[EventBuffer] = None,
        commit: bool = True,
        trigger: ClosureTrigger = ClosureTrigger.REQUEST,
    ) -> ClosureDecision:
        """
        Close the MO if its quantity has been reached.

        With commit=False the caller owns the transaction and the event
        buffer; this is how InspectionService closes an order atomically
        with the panel completion that triggered it.
        """
        own_events = events is None
        events = events if events is not None else EventBuffer()
        try:
            mo = await self.orders.get_manufacturing_order(mo_id)
            decision = self._decision(mo, closed=False, reason="")
            if mo.status == MOStatus.COMPLETED.value:
                return decision.model_copy(update={"reason": "Already completed"})
            if mo.status != MOStatus.IN_PROGRESS.value:
                return decision.model_copy(update={"reason": f"Order is {mo.status}"})
            if mo.panels_completed < mo.quantity:
                remaining = mo.quantity - mo.panels_completed
                return decision.model_copy(update={"reason": f"{remaining} panels remaining"})

            now = utc_now()
            result = await self.db.execute(
                update(ManufacturingOrder)
                .where(
                    ManufacturingOrder.id == mo_id,
                    ManufacturingOrder.status == MOStatus.IN_PROGRESS.value,
                    ManufacturingOrder.panels_completed == ManufacturingOrder.quantity,
                )
                .values(status=MOStatus.COMPLETED.value, completed_at=now, updated_at=now, updated_by="system")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Another evaluator closed it first
                mo = await self.orders.get_manufacturing_order(mo_id)
                return self._decision(mo, closed=False, reason="Closed concurrently")

            mo = await self.orders.get_manufacturing_order(mo_id)
            pallets = await self.pallet_finalizer.finalize_for_mo(self.db, mo)
            self.db.add(self._audit_record(mo, ClosureTrigger(trigger), pallets, now))
            await MOAlertService(self.db, rules=self.rules).raise_completion_alert(mo, events)
            events.add(
                MO_COMPLETED,
                mo_id=str(mo.id),
                order_number=mo.order_number,
                quantity=mo.quantity,
                panels_completed=mo.panels_completed,
                pallets_finalized=pallets,
            )
            if commit:
                await self.db.commit()
        except PanelTrackError:
            if commit:
                await self.db.rollback()
            raise

        logger.info(
            f"MO {mo.order_number} completed ({ClosureTrigger(trigger).value}): "
            f"{mo.panels_completed}/{mo.quantity} panels"
        )
        if commit:
            await get_cache().invalidate_mo(mo.id)
            if own_events:
                await events.flush()
        return self._decision(mo, closed=True, reason="Quantity reached", pallets=pallets)

    @staticmethod
    def _audit_record(mo: ManufacturingOrder, trigger: ClosureTrigger, pallets: int, now: datetime) -> MOClosureAudit:
        return MOClosureAudit(
            id=uuid.uuid4(),
            mo_id=mo.id,
            trigger=trigger.value,
            closed_by="system",
            quantity=mo.quantity,
            panels_completed=mo.panels_completed,
            panels_failed=mo.panels_failed,
            failure_rate_percent=closure_failure_rate(mo.panels_completed, mo.panels_failed),
            pallets_finalized=pallets,
            details={
                "order_number": mo.order_number,
                "end_date": mo.end_date.isoformat(),
                "completed_on_time": now.date() <= mo.end_date,
            },
            created_at=now,
        )

    @staticmethod
    def _decision(mo: ManufacturingOrder, closed: bool, reason: str, pallets: int = 0) -> ClosureDecision:
        return ClosureDecision(
            mo_id=mo.id,
            closed=closed,
            status=mo.status,
            panels_completed=mo.panels_completed,
            quantity=mo.quantity,
            reason=reason,
            pallets_finalized=pallets,
        )

    # ---------- Readiness ----------

    async def assess_closure_readiness(self, mo_id: uuid.UUID, now: Optional[datetime] = None) -> ClosureReadiness:
        """Score the order against every closure check. Never writes."""
        now = now or utc_now()
        mo = await self.orders.get_manufacturing_order(mo_id)
        progress = await MOProgressService(self.db, self.rules).compute_progress(mo_id, use_cache=False, now=now)
        result = await self.db.execute(select(Panel).where(Panel.mo_id == mo_id))
        panels = list(result.scalars().all())

        checks = [
            check_order_status(mo),
            check_panel_completion(mo),
            check_open_panels(progress),
            check_failure_rate(progress, self.thresholds),
            check_quality_standards(mo, panels, self.rules),
        ]
        total_weight = sum(c.weight for c in checks)
        readiness_percent = round(sum(c.weight for c in checks if c.passed) / total_weight * 100, 1)
        blockers = [c for c in checks if not c.passed]
        ready = (
            readiness_percent >= self.thresholds.min_readiness_percent
            and not any(b.severity == "critical" for b in blockers)
        )

        logger.info(
            f"MO {mo.order_number} closure readiness {readiness_percent}% "
            f"(ready={ready}, blockers={len(blockers)})"
        )
        return ClosureReadiness(
            mo_id=mo.id,
            order_number=mo.order_number,
            status=mo.status,
            ready=ready,
            readiness_percent=readiness_percent,
            checks=checks,
            blockers=blockers,
            recommendations=closure_recommendations(blockers, ready, readiness_percent),
            failure_criteria=await self._failure_criteria(mo_id),
            progress=progress,
            assessed_at=now,
        )

    async def _failure_criteria(self, mo_id: uuid.UUID) -> Dict[str, int]:
        """How often each checklist criterion was cited by a non-passing inspection."""
        result = await self.db.execute(
            select(Inspection.criteria)
            .join(Panel, Panel.id == Inspection.panel_id)
            .where(Panel.mo_id == mo_id, Inspection.passed.is_(False))
        )
        counts = Counter(c for criteria in result.scalars().all() for c in (criteria or ()))
        return dict(counts.most_common())

    # ---------- Audit ----------

    async def get_closure_history(self, mo_id: uuid.UUID) -> Tuple[List[MOClosureAudit], int]:
        """Closure records for an MO, newest first."""
        await self.orders.get_manufacturing_order(mo_id)
        total = await self.db.execute(
            select(func.count(MOClosureAudit.id)).where(MOClosureAudit.mo_id == mo_id)
        )
        result = await self.db.execute(
            select(MOClosureAudit)
            .where(MOClosureAudit.mo_id == mo_id)
            .order_by(MOClosureAudit.created_at.desc())
        )
        return list(result.scalars().all()), total.scalar() or 0
