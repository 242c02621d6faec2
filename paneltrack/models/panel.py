"""
Panel Model - the aggregate root of the inspection workflow.

A panel is identified by its barcode (manual panels have none), carries its
specification, its workflow status and the completion timestamp of each of
its line's four stations. Station timestamps are stored by line position
(1..4), so station 5 on LINE_2 is position 1.

The store enforces the status invariants with CHECK constraints so no code
path can persist a COMPLETED panel without a full, ordered set of station
timestamps and electrical data.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, CheckConstraint, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paneltrack.database import Base
from paneltrack.db_types import UTCDateTime, UUIDType, utc_now

if TYPE_CHECKING:
    from paneltrack.models.manufacturing_order import ManufacturingOrder
    from paneltrack.models.inspection import Inspection


class PanelStatus(str, Enum):
    """Workflow status of a panel."""
    PENDING = "PENDING"             # Registered, no inspection yet
    IN_PROGRESS = "IN_PROGRESS"     # On the line
    COMPLETED = "COMPLETED"         # Terminal: all stations passed
    FAILED = "FAILED"               # Terminal unless routed to rework by a supervisor
    REWORK = "REWORK"               # Recoverable, re-enters at the re-entry station


TERMINAL_PANEL_STATUSES = (PanelStatus.COMPLETED.value, PanelStatus.FAILED.value)

STATION_POSITIONS = (1, 2, 3, 4)


class Panel(Base):
    __tablename__ = "panels"
    __table_args__ = (
        CheckConstraint(
            "status <> 'COMPLETED' OR ("
            "station_1_completed_at IS NOT NULL AND station_2_completed_at IS NOT NULL AND "
            "station_3_completed_at IS NOT NULL AND station_4_completed_at IS NOT NULL AND "
            "wattage_pmax IS NOT NULL AND vmp IS NOT NULL AND imp IS NOT NULL)",
            name="ck_panel_completed_requires_data",
        ),
        CheckConstraint(
            "status <> 'FAILED' OR (quality_notes IS NOT NULL AND quality_notes <> '')",
            name="ck_panel_failed_requires_notes",
        ),
        CheckConstraint(
            "status <> 'REWORK' OR (rework_reason IS NOT NULL AND rework_reason <> '')",
            name="ck_panel_rework_requires_reason",
        ),
        CheckConstraint("station_2_completed_at >= station_1_completed_at", name="ck_panel_station_2_order"),
        CheckConstraint("station_3_completed_at >= station_2_completed_at", name="ck_panel_station_3_order"),
        CheckConstraint("station_4_completed_at >= station_3_completed_at", name="ck_panel_station_4_order"),
        CheckConstraint(
            "(panel_type IN ('36', '40', '60', '72') AND line_number = 1) "
            "OR (panel_type = '144' AND line_number = 2)",
            name="ck_panel_type_matches_line",
        ),
        Index("ix_panel_mo_status", "mo_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    barcode: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True)
    mo_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("manufacturing_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Specification
    panel_type: Mapped[str] = mapped_column(String(3), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    nominal_wattage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    construction_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    frame_color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    production_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quality_grade: Mapped[Optional[str]] = mapped_column(String(1), nullable=True, default="A")
    factory_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    batch_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    sequence_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qc_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Override audit
    manual_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    override_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    override_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Workflow
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PanelStatus.PENDING.value)
    current_station: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    station_1_completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    station_2_completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    station_3_completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    station_4_completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    rework_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rework_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rework_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Electrical test data (performance station)
    wattage_pmax: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vmp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    imp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    electrical_recorded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, onupdate=utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    manufacturing_order: Mapped["ManufacturingOrder"] = relationship(
        "ManufacturingOrder", back_populates="panels"
    )
    inspections: Mapped[List["Inspection"]] = relationship(
        "Inspection",
        back_populates="panel",
        order_by="Inspection.inspected_at",
    )

    def station_completed_at(self, position: int) -> Optional[datetime]:
        return getattr(self, f"station_{position}_completed_at")

    def set_station_completed_at(self, position: int, value: Optional[datetime]) -> None:
        setattr(self, f"station_{position}_completed_at", value)

    @property
    def station_timestamps(self) -> List[Optional[datetime]]:
        return [self.station_completed_at(p) for p in STATION_POSITIONS]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PANEL_STATUSES

    def __repr__(self):
        return f"<Panel {self.barcode or self.id} {self.status} station={self.current_station}>"
