"""
Manufacturing Order Jobs

Background jobs that keep open orders current:
- Progress refresh, alert evaluation and closure for every IN_PROGRESS order
- Retention cleanup of closed alerts
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from paneltrack.core.exceptions import PanelTrackError
from paneltrack.database import get_db_session
from paneltrack.models.manufacturing_order import ManufacturingOrder, MOStatus
from paneltrack.models.mo_closure_audit import ClosureTrigger
from paneltrack.services.mo_alert_service import MOAlertService
from paneltrack.services.mo_closure_service import MOClosureService
from paneltrack.services.mo_progress_service import MOProgressService

logger = logging.getLogger(__name__)


async def _active_order_ids() -> List[uuid.UUID]:
    async with get_db_session() as session:
        result = await session.execute(
            select(ManufacturingOrder.id)
            .where(ManufacturingOrder.status == MOStatus.IN_PROGRESS.value)
            .order_by(ManufacturingOrder.created_at.asc())
        )
        return list(result.scalars().all())


async def monitor_order(mo_id: uuid.UUID) -> Dict[str, Any]:
    """Refresh progress, evaluate alerts and attempt closure for one order."""
    async with get_db_session() as session:
        snapshot = await MOProgressService(session).compute_progress(mo_id, use_cache=False)
        evaluation = await MOAlertService(session).evaluate_alerts(mo_id)
        decision = await MOClosureService(session).evaluate_closure(mo_id, trigger=ClosureTrigger.MONITOR)

    return {
        "mo_id": str(mo_id),
        "percent_complete": snapshot.percent_complete,
        "alerts_raised": len(evaluation.raised),
        "alerts_resolved": len(evaluation.resolved),
        "closed": decision.closed,
    }


async def monitor_active_orders() -> Dict[str, Any]:
    """
    Sweep every IN_PROGRESS order.

    Each order runs in its own session; a failure on one order is logged
    and the sweep moves on to the next.
    """
    start_time = datetime.now(timezone.utc)
    mo_ids = await _active_order_ids()
    results: List[Dict[str, Any]] = []
    failed = 0

    for mo_id in mo_ids:
        try:
            results.append(await monitor_order(mo_id))
        except (PanelTrackError, SQLAlchemyError) as e:
            failed += 1
            logger.error(f"Monitoring MO {mo_id} failed: {e}")

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    closed = sum(1 for r in results if r["closed"])
    logger.info(
        f"MO monitor: {len(results)}/{len(mo_ids)} orders processed, "
        f"{closed} closed, {failed} failed in {duration:.2f}s"
    )
    return {
        "order_count": len(mo_ids),
        "successful": len(results),
        "failed": failed,
        "closed": closed,
        "results": results,
    }


async def cleanup_resolved_alerts() -> int:
    """Delete closed alerts older than the retention period."""
    async with get_db_session() as session:
        return await MOAlertService(session).cleanup_resolved_alerts()
