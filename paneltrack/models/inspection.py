"""
Inspection Model - append-only station inspection events.

Uniqueness is enforced by the store rather than by check-then-insert:
- one row per (panel, station, rework cycle, attempt), so two concurrent
  attempts computed against the same history collide;
- at most one pass-equivalent result per (panel, station, rework cycle).
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paneltrack.database import Base
from paneltrack.db_types import JSONType, UTCDateTime, UUIDType, utc_now

if TYPE_CHECKING:
    from paneltrack.models.panel import Panel


class InspectionResult(str, Enum):
    """Outcome of a station inspection."""
    PASS = "PASS"
    FAIL = "FAIL"
    COSMETIC_DEFECT = "COSMETIC_DEFECT"     # Pass-equivalent, notes required
    REWORK = "REWORK"                       # Recoverable, reason required


PASS_EQUIVALENT_RESULTS = (InspectionResult.PASS.value, InspectionResult.COSMETIC_DEFECT.value)
NOTES_REQUIRED_RESULTS = (
    InspectionResult.FAIL.value,
    InspectionResult.REWORK.value,
    InspectionResult.COSMETIC_DEFECT.value,
)


class Inspection(Base):
    __tablename__ = "inspections"
    __table_args__ = (
        UniqueConstraint(
            "panel_id", "station_number", "rework_cycle", "attempt",
            name="uq_inspection_attempt",
        ),
        Index(
            "uq_inspection_pass_per_station",
            "panel_id", "station_number", "rework_cycle",
            unique=True,
            postgresql_where=text("passed"),
            sqlite_where=text("passed = 1"),
        ),
        Index("ix_inspection_panel_station", "panel_id", "station_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    panel_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("panels.id", ondelete="RESTRICT"),
        nullable=False,
    )
    station_number: Mapped[int] = mapped_column(Integer, nullable=False)
    line_position: Mapped[int] = mapped_column(Integer, nullable=False)
    inspector_id: Mapped[str] = mapped_column(String(100), nullable=False)
    inspected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    result: Mapped[str] = mapped_column(String(20), nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    criteria: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    rework_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    panel: Mapped["Panel"] = relationship("Panel", back_populates="inspections")

    def __repr__(self):
        return f"<Inspection panel={self.panel_id} station={self.station_number} {self.result}>"
