"""
Manufacturing Order Model.

An MO is a batch production request for a target quantity of one panel type.
COMPLETED is system-derived: only MO closure sets it, and only once
panels_completed has reached quantity.
"""
import uuid
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, Date, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paneltrack.database import Base
from paneltrack.db_types import UTCDateTime, UUIDType, utc_now

if TYPE_CHECKING:
    from paneltrack.models.panel import Panel
    from paneltrack.models.alert import MOAlert


class MOStatus(str, Enum):
    """Manufacturing order lifecycle status."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"     # Set by closure only
    CANCELLED = "CANCELLED"


class MOPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


TERMINAL_MO_STATUSES = (MOStatus.COMPLETED.value, MOStatus.CANCELLED.value)
ACTIVE_MO_STATUSES = (MOStatus.PENDING.value, MOStatus.IN_PROGRESS.value)


class ManufacturingOrder(Base):
    __tablename__ = "manufacturing_orders"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_mo_quantity_positive"),
        CheckConstraint("start_date <= end_date", name="ck_mo_date_order"),
        CheckConstraint("panels_completed >= 0", name="ck_mo_completed_nonneg"),
        CheckConstraint("panels_completed <= quantity", name="ck_mo_completed_le_quantity"),
        CheckConstraint(
            "status <> 'COMPLETED' OR panels_completed = quantity",
            name="ck_mo_completed_requires_quantity",
        ),
        Index("ix_mo_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    panel_type: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MOStatus.PENDING.value)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default=MOPriority.NORMAL.value)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Updated in the same transaction as the panel transition that completes a panel
    panels_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    panels_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, onupdate=utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    panels: Mapped[List["Panel"]] = relationship("Panel", back_populates="manufacturing_order")
    alerts: Mapped[List["MOAlert"]] = relationship("MOAlert", back_populates="manufacturing_order")

    @property
    def panels_remaining(self) -> int:
        return max(self.quantity - (self.panels_completed or 0), 0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_MO_STATUSES

    def __repr__(self):
        return f"<ManufacturingOrder {self.order_number} {self.status} {self.panels_completed}/{self.quantity}>"
