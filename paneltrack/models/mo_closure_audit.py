"""
MO Closure Audit Model - one row per completed manufacturing order.

Written in the same transaction as the status flip, so an order is COMPLETED
exactly when it has a closure record.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from paneltrack.database import Base
from paneltrack.db_types import JSONType, UTCDateTime, UUIDType, utc_now


class ClosureTrigger(str, Enum):
    """What ran the closure evaluation that completed the order."""
    INSPECTION = "INSPECTION"   # Final-station pass of the last panel
    MONITOR = "MONITOR"         # Scheduled progress sweep
    REQUEST = "REQUEST"         # Explicit API call


class MOClosureAudit(Base):
    __tablename__ = "mo_closure_audits"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mo_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("manufacturing_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    closed_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")

    # Final statistics at the moment of closure
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    panels_completed: Mapped[int] = mapped_column(Integer, nullable=False)
    panels_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_rate_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    pallets_finalized: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    def __repr__(self):
        return f"<MOClosureAudit mo={self.mo_id} {self.trigger} {self.panels_completed}/{self.quantity}>"
