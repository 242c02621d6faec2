"""
MO Progress Service.

Rolls the panels of a manufacturing order up into a ProgressSnapshot:
- panel totals by status
- per-station throughput (passed, queued, average dwell time)
- percent complete, failure rate, panels remaining
- bottleneck station, production rate and on-time likelihood

compute_progress() is a read path. It never writes, and snapshots are
cached for MO_PROGRESS_CACHE_TTL seconds, so floor displays may see data a
few seconds old.
"""
import logging
import uuid
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paneltrack.core.exceptions import AggregationError
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.db_types import utc_now
from paneltrack.models.manufacturing_order import ManufacturingOrder, MOStatus
from paneltrack.models.panel import Panel, PanelStatus
from paneltrack.schemas.progress import ProgressSnapshot, StationMetrics, StatusCounts
from paneltrack.services.cache_service import CacheService, get_cache
from paneltrack.services.line_assignment import resolve_line_assignment
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService

logger = logging.getLogger(__name__)


WAITING_STATUSES = (PanelStatus.IN_PROGRESS.value, PanelStatus.REWORK.value)


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60


def on_time_likelihood(
    status: str,
    end_date,
    panels_remaining: int,
    panels_per_hour: Optional[float],
    now: datetime,
) -> int:
    """
    Bucketed likelihood of finishing by the end of end_date.

    100: done, or projected on time; 75: late by up to a day;
    50: late by up to three days; 25: later than that; 0: no projection.
    """
    if status == MOStatus.COMPLETED.value or panels_remaining == 0:
        return 100
    if not panels_per_hour:
        return 0
    projected = now + timedelta(hours=panels_remaining / panels_per_hour)
    deadline = datetime.combine(end_date, time.max, tzinfo=timezone.utc)
    late_by = projected - deadline
    if late_by <= timedelta(0):
        return 100
    if late_by <= timedelta(hours=24):
        return 75
    if late_by <= timedelta(hours=72):
        return 50
    return 25


def build_progress_snapshot(
    mo: ManufacturingOrder,
    panels: Sequence[Panel],
    now: Optional[datetime] = None,
    rules: Optional[ProductionRules] = None,
) -> ProgressSnapshot:
    """Pure aggregation of one MO's panels."""
    rules = rules or get_production_rules()
    now = now or utc_now()
    line = resolve_line_assignment(mo.panel_type, rules)

    counts = StatusCounts()
    for panel in panels:
        key = panel.status.lower()
        setattr(counts, key, getattr(counts, key) + 1)

    stations: List[StationMetrics] = []
    for position, station in enumerate(line.station_range, start=1):
        passed = [p for p in panels if p.station_completed_at(position) is not None]
        queue = sum(1 for p in panels if p.status in WAITING_STATUSES and p.current_station == station)
        if position == 1:
            queue += counts.pending

        dwell = []
        for p in passed:
            started = p.created_at if position == 1 else p.station_completed_at(position - 1)
            if started is not None:
                dwell.append(_minutes(p.station_completed_at(position) - started))

        stations.append(StationMetrics(
            station_number=station,
            station_name=rules.station_names[position - 1],
            completed=len(passed),
            queue=queue,
            avg_dwell_minutes=round(sum(dwell) / len(dwell), 2) if dwell else None,
        ))

    panels_completed = mo.panels_completed or 0
    panels_remaining = max(mo.quantity - panels_completed, 0)
    percent_complete = round(min(panels_completed / mo.quantity * 100, 100.0), 2) if mo.quantity else 0.0
    failure_rate = round(counts.failed / len(panels) * 100, 2) if panels else 0.0

    bottleneck = None
    queued = [s for s in stations if s.queue > 0]
    if queued:
        bottleneck = max(queued, key=lambda s: (s.queue, s.avg_dwell_minutes or 0.0)).station_number

    panels_per_hour = None
    estimated_hours = None
    if panels and panels_completed:
        started = min(p.created_at for p in panels)
        elapsed_hours = (now - started).total_seconds() / 3600
        if elapsed_hours > 0:
            panels_per_hour = round(panels_completed / elapsed_hours, 2)
            estimated_hours = round(panels_remaining / panels_per_hour, 2) if panels_per_hour else None

    return ProgressSnapshot(
        mo_id=mo.id,
        order_number=mo.order_number,
        status=mo.status,
        panel_type=mo.panel_type,
        line_number=line.line_number,
        quantity=mo.quantity,
        panels_registered=len(panels),
        panels_completed=panels_completed,
        panels_failed=counts.failed,
        panels_remaining=panels_remaining,
        counts=counts,
        stations=stations,
        percent_complete=percent_complete,
        failure_rate_percent=failure_rate,
        panels_per_hour=panels_per_hour,
        estimated_hours_remaining=estimated_hours,
        bottleneck_station=bottleneck,
        on_time_likelihood=on_time_likelihood(mo.status, mo.end_date, panels_remaining, panels_per_hour, now),
        days_remaining=(mo.end_date - now.date()).days,
        computed_at=now,
    )


class MOProgressService:
    """Read-side aggregation for manufacturing orders."""

    def __init__(
        self,
        db: AsyncSession,
        rules: Optional[ProductionRules] = None,
        cache: Optional[CacheService] = None,
    ):
        self.db = db
        self.rules = rules or get_production_rules()
        self.cache = cache or get_cache()

    async def compute_progress(
        self,
        mo_id: uuid.UUID,
        use_cache: bool = True,
        now: Optional[datetime] = None,
    ) -> ProgressSnapshot:
        """Progress snapshot for one MO, served from cache when fresh."""
        if use_cache:
            cached = await self.cache.get_mo_progress(mo_id)
            if cached:
                return ProgressSnapshot.model_validate(cached)

        snapshot = await self._compute(mo_id, now)
        await self.cache.set_mo_progress(mo_id, snapshot.model_dump(mode="json"))
        return snapshot

    async def _compute(self, mo_id: uuid.UUID, now: Optional[datetime]) -> ProgressSnapshot:
        mo = await ManufacturingOrderService(self.db, self.rules).get_manufacturing_order(mo_id)
        try:
            result = await self.db.execute(
                select(Panel)
                .where(Panel.mo_id == mo_id)
                .execution_options(populate_existing=True)
            )
            panels = list(result.scalars().all())
            return build_progress_snapshot(mo, panels, now, self.rules)
        except (OperationalError, InterfaceError):
            raise
        except (SQLAlchemyError, ValueError, TypeError, ZeroDivisionError) as e:
            logger.error(f"Progress computation failed for MO {mo_id}: {e}")
            raise AggregationError(
                f"Progress for manufacturing order {mo_id} could not be computed",
                "PROGRESS_COMPUTATION_FAILED",
                field="mo_id",
            ) from e
