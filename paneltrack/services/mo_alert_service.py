"""
MO Alert Service.

Derives alert conditions from an MO's progress snapshot and keeps the
alert table in step with them:
- a condition with no open alert raises one (unless an alert of the same
  type was resolved or suppressed within the de-duplication window)
- an open alert whose condition no longer holds is auto-resolved
- at most one open alert per (MO, type), enforced by the unique dedup_key

Also owns the operator actions on alerts (acknowledge / resolve / suppress)
and the retention cleanup run by the scheduler.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paneltrack.config import settings
from paneltrack.core.exceptions import AggregationError, NotFoundError, PanelTrackError, StateConflictError
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.db_types import utc_now
from paneltrack.models.alert import (
    CLOSED_ALERT_STATUSES,
    OPEN_ALERT_STATUSES,
    AlertSeverity,
    AlertStatus,
    AlertType,
    MOAlert,
    alert_dedup_key,
)
from paneltrack.models.manufacturing_order import ManufacturingOrder, MOStatus
from paneltrack.schemas.progress import ProgressSnapshot
from paneltrack.services.cache_service import CacheService
from paneltrack.services.event_publisher import ALERT_RAISED, ALERT_RESOLVED, EventBuffer
from paneltrack.services.manufacturing_order_service import ManufacturingOrderService
from paneltrack.services.mo_progress_service import MOProgressService

logger = logging.getLogger(__name__)


# ==================== Conditions ====================

class AlertThresholds(BaseModel):
    panels_remaining: int = 50
    low_progress_percent: float = 25.0
    high_failure_rate_percent: float = 10.0
    bottleneck_queue: int = 5
    slow_station_minutes: float = 10.0
    dedup_window_seconds: int = 300

    @classmethod
    def from_settings(cls, app_settings=None) -> "AlertThresholds":
        s = app_settings or settings
        return cls(
            panels_remaining=s.ALERT_PANELS_REMAINING_THRESHOLD,
            low_progress_percent=s.ALERT_LOW_PROGRESS_PERCENT,
            high_failure_rate_percent=s.ALERT_HIGH_FAILURE_RATE_PERCENT,
            bottleneck_queue=s.ALERT_BOTTLENECK_QUEUE_THRESHOLD,
            slow_station_minutes=s.ALERT_SLOW_STATION_MINUTES,
            dedup_window_seconds=s.ALERT_DEDUP_WINDOW_SECONDS,
        )


class AlertCondition(BaseModel):
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    threshold_value: Optional[float] = None
    current_value: Optional[float] = None
    station_number: Optional[int] = None
    context: Optional[dict] = None


def derive_alert_conditions(
    snapshot: ProgressSnapshot,
    thresholds: AlertThresholds,
    end_date: date,
    today: date,
) -> Dict[AlertType, AlertCondition]:
    """Every condition that currently holds for an MO, one per alert type."""
    conditions: Dict[AlertType, AlertCondition] = {}
    order = snapshot.order_number
    if snapshot.status in (MOStatus.COMPLETED.value, MOStatus.CANCELLED.value):
        return conditions

    if 0 < snapshot.panels_remaining <= thresholds.panels_remaining:
        conditions[AlertType.PANELS_REMAINING] = AlertCondition(
            alert_type=AlertType.PANELS_REMAINING,
            severity=AlertSeverity.WARNING,
            title="Panels remaining",
            message=f"Only {snapshot.panels_remaining} panels remaining in MO {order}",
            threshold_value=thresholds.panels_remaining,
            current_value=snapshot.panels_remaining,
        )

    if snapshot.status == MOStatus.IN_PROGRESS.value and snapshot.percent_complete < thresholds.low_progress_percent:
        conditions[AlertType.LOW_PROGRESS] = AlertCondition(
            alert_type=AlertType.LOW_PROGRESS,
            severity=AlertSeverity.WARNING,
            title="Low progress",
            message=f"Low progress: {snapshot.percent_complete}% completed for MO {order}",
            threshold_value=thresholds.low_progress_percent,
            current_value=snapshot.percent_complete,
        )

    if snapshot.failure_rate_percent > thresholds.high_failure_rate_percent:
        conditions[AlertType.HIGH_FAILURE_RATE] = AlertCondition(
            alert_type=AlertType.HIGH_FAILURE_RATE,
            severity=AlertSeverity.CRITICAL,
            title="High failure rate",
            message=f"High failure rate: {snapshot.failure_rate_percent}% for MO {order}",
            threshold_value=thresholds.high_failure_rate_percent,
            current_value=snapshot.failure_rate_percent,
        )

    # One alert per type: report the worst station
    congested = [s for s in snapshot.stations if s.queue > thresholds.bottleneck_queue]
    if congested:
        worst = max(congested, key=lambda s: s.queue)
        conditions[AlertType.STATION_BOTTLENECK] = AlertCondition(
            alert_type=AlertType.STATION_BOTTLENECK,
            severity=AlertSeverity.WARNING,
            title="Station bottleneck",
            message=f"Bottleneck detected at {worst.station_name}: {worst.queue} panels queued",
            threshold_value=thresholds.bottleneck_queue,
            current_value=worst.queue,
            station_number=worst.station_number,
            context={"stations": {str(s.station_number): s.queue for s in congested}},
        )

    slow = [
        s for s in snapshot.stations
        if s.avg_dwell_minutes is not None and s.avg_dwell_minutes > thresholds.slow_station_minutes
    ]
    if slow:
        worst = max(slow, key=lambda s: s.avg_dwell_minutes)
        conditions[AlertType.SLOW_STATION] = AlertCondition(
            alert_type=AlertType.SLOW_STATION,
            severity=AlertSeverity.WARNING,
            title="Slow station",
            message=f"Slow performance at {worst.station_name}: {worst.avg_dwell_minutes:.1f} minutes per panel",
            threshold_value=thresholds.slow_station_minutes,
            current_value=worst.avg_dwell_minutes,
            station_number=worst.station_number,
        )

    if snapshot.panels_remaining == 0:
        conditions[AlertType.READY_FOR_COMPLETION] = AlertCondition(
            alert_type=AlertType.READY_FOR_COMPLETION,
            severity=AlertSeverity.INFO,
            title="Ready for completion",
            message=f"MO {order} is ready for completion",
            current_value=0,
        )

    if today > end_date:
        days_late = (today - end_date).days
        conditions[AlertType.MO_DELAYED] = AlertCondition(
            alert_type=AlertType.MO_DELAYED,
            severity=AlertSeverity.CRITICAL,
            title="MO delayed",
            message=f"MO {order} is {days_late} day(s) past its end date",
            current_value=days_late,
            context={"end_date": end_date.isoformat()},
        )

    return conditions


@dataclass
class AlertEvaluation:
    mo_id: uuid.UUID
    raised: List[MOAlert] = field(default_factory=list)
    resolved: List[MOAlert] = field(default_factory=list)
    active: List[MOAlert] = field(default_factory=list)


# ==================== Service ====================

class MOAlertService:
    """Service for MO alert evaluation and alert lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        thresholds: Optional[AlertThresholds] = None,
        rules: Optional[ProductionRules] = None,
        cache: Optional[CacheService] = None,
    ):
        self.db = db
        self.thresholds = thresholds or AlertThresholds.from_settings()
        self.rules = rules or get_production_rules()
        self.cache = cache
        self.orders = ManufacturingOrderService(db, self.rules)

    # ---------- Evaluation ----------

    async def evaluate_alerts(self, mo_id: uuid.UUID, now: Optional[datetime] = None) -> AlertEvaluation:
        """
        Raise alerts for conditions that hold, auto-resolve the ones that cleared.

        All-or-nothing: on failure nothing is committed and the caller gets a
        typed error.
        """
        now = now or utc_now()
        events = EventBuffer()
        try:
            snapshot = await MOProgressService(self.db, self.rules, self.cache).compute_progress(
                mo_id, use_cache=False, now=now
            )
            mo = await self.orders.get_manufacturing_order(mo_id)
            conditions = derive_alert_conditions(snapshot, self.thresholds, mo.end_date, now.date())
            evaluation = await self._reconcile(mo, conditions, now, events)
            await self.db.commit()
        except (OperationalError, InterfaceError):
            await self.db.rollback()
            raise
        except PanelTrackError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Alert evaluation failed for MO {mo_id}: {e}")
            raise AggregationError(
                f"Alerts for manufacturing order {mo_id} could not be evaluated",
                "ALERT_EVALUATION_FAILED",
                field="mo_id",
            ) from e

        for alert in evaluation.raised:
            logger.info(f"Alert raised: {alert.alert_type} ({alert.severity}) for MO {mo.order_number}")
        for alert in evaluation.resolved:
            logger.info(f"Alert auto-resolved: {alert.alert_type} for MO {mo.order_number}")
        await events.flush()
        return evaluation

    async def _open_alerts(self, mo_id: uuid.UUID) -> List[MOAlert]:
        result = await self.db.execute(
            select(MOAlert)
            .where(MOAlert.mo_id == mo_id, MOAlert.status.in_(OPEN_ALERT_STATUSES))
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _recently_closed(self, mo_id: uuid.UUID, alert_type: str, now: datetime) -> bool:
        """True when an alert of this type was resolved or suppressed inside the dedup window."""
        since = now - timedelta(seconds=self.thresholds.dedup_window_seconds)
        closed_at = func.coalesce(MOAlert.resolved_at, MOAlert.suppressed_at)
        result = await self.db.execute(
            select(func.count(MOAlert.id)).where(
                MOAlert.mo_id == mo_id,
                MOAlert.alert_type == alert_type,
                MOAlert.status.in_(CLOSED_ALERT_STATUSES),
                closed_at >= since,
            )
        )
        return (result.scalar() or 0) > 0

    async def _reconcile(
        self,
        mo: ManufacturingOrder,
        conditions: Dict[AlertType, AlertCondition],
        now: datetime,
        events: EventBuffer,
    ) -> AlertEvaluation:
        evaluation = AlertEvaluation(mo_id=mo.id)
        open_alerts = await self._open_alerts(mo.id)
        open_types = set()

        for alert in open_alerts:
            if alert.alert_type == AlertType.MO_COMPLETED.value:
                evaluation.active.append(alert)
                continue
            condition = conditions.get(AlertType(alert.alert_type))
            if condition is None:
                self._close(alert, AlertStatus.RESOLVED, "system", "Condition cleared", now, auto=True)
                evaluation.resolved.append(alert)
                events.add(ALERT_RESOLVED, **self._payload(alert))
                continue
            alert.current_value = condition.current_value
            alert.message = condition.message
            alert.station_number = condition.station_number
            open_types.add(alert.alert_type)
            evaluation.active.append(alert)

        # Closures must be flushed before any insert savepoint
        await self.db.flush()

        for alert_type, condition in conditions.items():
            if alert_type.value in open_types:
                continue
            if await self._recently_closed(mo.id, alert_type.value, now):
                continue
            alert = await self._insert_alert(mo.id, condition, now)
            if alert is not None:
                evaluation.raised.append(alert)
                evaluation.active.append(alert)
                events.add(ALERT_RAISED, **self._payload(alert))

        await self.db.flush()
        return evaluation

    async def _insert_alert(self, mo_id: uuid.UUID, condition: AlertCondition, now: datetime) -> Optional[MOAlert]:
        """Insert under a savepoint; losing the race to a concurrent evaluator is not an error."""
        alert = MOAlert(
            id=uuid.uuid4(),
            mo_id=mo_id,
            alert_type=condition.alert_type.value,
            severity=condition.severity.value,
            status=AlertStatus.ACTIVE.value,
            title=condition.title,
            message=condition.message,
            threshold_value=condition.threshold_value,
            current_value=condition.current_value,
            station_number=condition.station_number,
            context=condition.context,
            dedup_key=alert_dedup_key(mo_id, condition.alert_type),
            created_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(alert)
                await self.db.flush()
        except IntegrityError:
            logger.info(f"Alert {condition.alert_type.value} for MO {mo_id} already open, skipping")
            return None
        return alert

    async def raise_completion_alert(self, mo: ManufacturingOrder, events: EventBuffer) -> Optional[MOAlert]:
        """
        Called by closure inside its transaction: resolve every open alert
        and raise the single mo_completed alert.
        """
        now = utc_now()
        for alert in await self._open_alerts(mo.id):
            if alert.alert_type == AlertType.MO_COMPLETED.value:
                return None
            self._close(alert, AlertStatus.RESOLVED, "system", "Manufacturing order completed", now, auto=True)
            events.add(ALERT_RESOLVED, **self._payload(alert))

        await self.db.flush()
        existing = await self.db.execute(
            select(func.count(MOAlert.id)).where(
                MOAlert.mo_id == mo.id, MOAlert.alert_type == AlertType.MO_COMPLETED.value
            )
        )
        if existing.scalar():
            return None

        alert = await self._insert_alert(
            mo.id,
            AlertCondition(
                alert_type=AlertType.MO_COMPLETED,
                severity=AlertSeverity.INFO,
                title="MO completed",
                message=f"MO {mo.order_number} completed: {mo.panels_completed}/{mo.quantity} panels",
                current_value=mo.panels_completed,
                threshold_value=mo.quantity,
            ),
            now,
        )
        if alert is not None:
            events.add(ALERT_RAISED, **self._payload(alert))
        return alert

    # ---------- Operator actions ----------

    async def get_alert(self, alert_id: uuid.UUID) -> MOAlert:
        result = await self.db.execute(
            select(MOAlert).where(MOAlert.id == alert_id).execution_options(populate_existing=True)
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found", "ALERT_NOT_FOUND", field="alert_id")
        return alert

    async def list_alerts(
        self,
        mo_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[MOAlert], int]:
        query = select(MOAlert)
        count_query = select(func.count(MOAlert.id))
        if mo_id:
            query = query.where(MOAlert.mo_id == mo_id)
            count_query = count_query.where(MOAlert.mo_id == mo_id)
        if status:
            query = query.where(MOAlert.status == status)
            count_query = count_query.where(MOAlert.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(MOAlert.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def acknowledge_alert(self, alert_id: uuid.UUID, user_id: str, notes: Optional[str] = None) -> MOAlert:
        now = utc_now()
        result = await self.db.execute(
            update(MOAlert)
            .where(MOAlert.id == alert_id, MOAlert.status == AlertStatus.ACTIVE.value)
            .values(
                status=AlertStatus.ACKNOWLEDGED.value,
                acknowledged_at=now,
                acknowledged_by=user_id,
                resolution_notes=notes,
            )
        )
        if result.rowcount == 0:
            await self._raise_not_transitionable(alert_id, "acknowledged")
        await self.db.commit()
        alert = await self.get_alert(alert_id)
        logger.info(f"Alert {alert.alert_type} acknowledged by {user_id}")
        return alert

    async def resolve_alert(self, alert_id: uuid.UUID, user_id: str, notes: Optional[str] = None) -> MOAlert:
        """Resolve an open alert. A second resolve is rejected."""
        now = utc_now()
        result = await self.db.execute(
            update(MOAlert)
            .where(MOAlert.id == alert_id, MOAlert.status.in_(OPEN_ALERT_STATUSES))
            .values(
                status=AlertStatus.RESOLVED.value,
                resolved_at=now,
                resolved_by=user_id,
                resolution_notes=notes,
                dedup_key=None,
            )
        )
        if result.rowcount == 0:
            await self._raise_not_transitionable(alert_id, "resolved")
        await self.db.commit()
        alert = await self.get_alert(alert_id)
        logger.info(f"Alert {alert.alert_type} resolved by {user_id}")
        events = EventBuffer()
        events.add(ALERT_RESOLVED, **self._payload(alert))
        await events.flush()
        return alert

    async def suppress_alert(self, alert_id: uuid.UUID, user_id: str, notes: Optional[str] = None) -> MOAlert:
        now = utc_now()
        result = await self.db.execute(
            update(MOAlert)
            .where(MOAlert.id == alert_id, MOAlert.status.in_(OPEN_ALERT_STATUSES))
            .values(
                status=AlertStatus.SUPPRESSED.value,
                suppressed_at=now,
                suppressed_by=user_id,
                resolution_notes=notes,
                dedup_key=None,
            )
        )
        if result.rowcount == 0:
            await self._raise_not_transitionable(alert_id, "suppressed")
        await self.db.commit()
        alert = await self.get_alert(alert_id)
        logger.info(f"Alert {alert.alert_type} suppressed by {user_id}")
        return alert

    async def _raise_not_transitionable(self, alert_id: uuid.UUID, action: str):
        await self.db.rollback()
        alert = await self.get_alert(alert_id)
        if alert.status == AlertStatus.RESOLVED.value:
            code = "ALERT_ALREADY_RESOLVED"
        elif alert.status == AlertStatus.SUPPRESSED.value:
            code = "ALERT_SUPPRESSED"
        else:
            code = "ALERT_ALREADY_ACKNOWLEDGED"
        raise StateConflictError(f"Alert is {alert.status} and cannot be {action}", code, field="status")

    # ---------- Maintenance ----------

    async def cleanup_resolved_alerts(self, older_than_days: Optional[int] = None) -> int:
        """Delete closed alerts past the retention period."""
        days = older_than_days if older_than_days is not None else settings.ALERT_RETENTION_DAYS
        cutoff = utc_now() - timedelta(days=days)
        closed_at = func.coalesce(MOAlert.resolved_at, MOAlert.suppressed_at)
        result = await self.db.execute(
            delete(MOAlert).where(MOAlert.status.in_(CLOSED_ALERT_STATUSES), closed_at < cutoff)
        )
        await self.db.commit()
        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Cleaned up {deleted} alerts closed before {cutoff.isoformat()}")
        return deleted

    # ---------- Helpers ----------

    @staticmethod
    def _close(alert: MOAlert, status: AlertStatus, by: str, notes: str, now: datetime, auto: bool = False):
        alert.status = status.value
        alert.dedup_key = None
        alert.resolution_notes = notes
        alert.auto_resolved = auto
        if status == AlertStatus.SUPPRESSED:
            alert.suppressed_at = now
            alert.suppressed_by = by
        else:
            alert.resolved_at = now
            alert.resolved_by = by

    @staticmethod
    def _payload(alert: MOAlert) -> dict:
        return {
            "alert_id": str(alert.id),
            "mo_id": str(alert.mo_id),
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "status": alert.status,
            "message": alert.message,
        }
