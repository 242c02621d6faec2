"""
MO Progress Schemas
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class StatusCounts(BaseModel):
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    rework: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.in_progress + self.completed + self.failed + self.rework


class StationMetrics(BaseModel):
    """Throughput of one physical station for an MO."""
    station_number: int
    station_name: str
    completed: int = 0              # panels that have passed the station
    queue: int = 0                  # panels currently waiting at the station
    avg_dwell_minutes: Optional[float] = None


class ProgressSnapshot(BaseModel):
    mo_id: UUID
    order_number: str
    status: str
    panel_type: str
    line_number: int
    quantity: int
    panels_registered: int
    panels_completed: int
    panels_failed: int
    panels_remaining: int
    counts: StatusCounts
    stations: List[StationMetrics]
    percent_complete: float
    failure_rate_percent: float
    panels_per_hour: Optional[float] = None
    estimated_hours_remaining: Optional[float] = None
    bottleneck_station: Optional[int] = None
    on_time_likelihood: int                 # 0, 25, 50, 75 or 100
    days_remaining: int
    computed_at: datetime
