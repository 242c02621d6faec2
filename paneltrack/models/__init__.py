from paneltrack.models.manufacturing_order import ManufacturingOrder, MOPriority, MOStatus
from paneltrack.models.panel import Panel, PanelStatus
from paneltrack.models.inspection import Inspection, InspectionResult
from paneltrack.models.alert import AlertSeverity, AlertStatus, AlertType, MOAlert
from paneltrack.models.mo_closure_audit import ClosureTrigger, MOClosureAudit

__all__ = [
    "ManufacturingOrder",
    "MOPriority",
    "MOStatus",
    "Panel",
    "PanelStatus",
    "Inspection",
    "InspectionResult",
    "MOAlert",
    "AlertType",
    "AlertSeverity",
    "AlertStatus",
    "MOClosureAudit",
    "ClosureTrigger",
]
