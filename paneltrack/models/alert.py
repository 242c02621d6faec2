"""
Manufacturing Order Alert Model.

dedup_key holds "<mo_id>:<alert_type>" while the alert is open (ACTIVE or
ACKNOWLEDGED) and is cleared when it is resolved or suppressed. The unique
constraint on it is what guarantees a single open alert per (MO, type).
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paneltrack.database import Base
from paneltrack.db_types import JSONType, UTCDateTime, UUIDType, utc_now

if TYPE_CHECKING:
    from paneltrack.models.manufacturing_order import ManufacturingOrder


class AlertType(str, Enum):
    PANELS_REMAINING = "panels_remaining"
    LOW_PROGRESS = "low_progress"
    HIGH_FAILURE_RATE = "high_failure_rate"
    STATION_BOTTLENECK = "station_bottleneck"
    SLOW_STATION = "slow_station"
    READY_FOR_COMPLETION = "ready_for_completion"
    MO_DELAYED = "mo_delayed"
    MO_COMPLETED = "mo_completed"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"


OPEN_ALERT_STATUSES = (AlertStatus.ACTIVE.value, AlertStatus.ACKNOWLEDGED.value)
CLOSED_ALERT_STATUSES = (AlertStatus.RESOLVED.value, AlertStatus.SUPPRESSED.value)


def alert_dedup_key(mo_id, alert_type) -> str:
    alert_type = alert_type.value if isinstance(alert_type, AlertType) else alert_type
    return f"{mo_id}:{alert_type}"


class MOAlert(Base):
    __tablename__ = "mo_alerts"
    __table_args__ = (
        Index("ix_mo_alert_mo_type", "mo_id", "alert_type"),
        Index("ix_mo_alert_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mo_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("manufacturing_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False, default=AlertSeverity.INFO.value)
    status: Mapped[str] = mapped_column(String(15), nullable=False, default=AlertStatus.ACTIVE.value)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    threshold_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    station_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    context: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # NULL once closed, so a new open alert of the same type can be raised later
    dedup_key: Mapped[Optional[str]] = mapped_column(String(80), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    auto_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    suppressed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    suppressed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    manufacturing_order: Mapped["ManufacturingOrder"] = relationship(
        "ManufacturingOrder", back_populates="alerts"
    )

    def __repr__(self):
        return f"<MOAlert {self.alert_type} {self.severity} {self.status} mo={self.mo_id}>"
