from typing import List

from pydantic import BaseModel, ConfigDict


class LineAssignment(BaseModel):
    """Derived from panel type; never persisted on its own."""
    model_config = ConfigDict(frozen=True)

    line_number: int
    line_name: str
    panel_type: str
    station_range: List[int]
    is_valid: bool = True

    @property
    def first_station(self) -> int:
        return self.station_range[0]

    @property
    def final_station(self) -> int:
        return self.station_range[-1]
