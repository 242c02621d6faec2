"""
Background Jobs Module

Handles scheduled tasks for:
- MO progress refresh, alert evaluation and automatic closure
- Closed alert retention cleanup
"""

from paneltrack.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from paneltrack.jobs.mo_jobs import monitor_active_orders, cleanup_resolved_alerts

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "monitor_active_orders",
    "cleanup_resolved_alerts",
]
