"""
Production rule tables for the solar panel line.

All of the tables the workflow depends on (panel types, wattage ranges,
line/station map, barcode code tables, electrical limits, year window,
station checklists) live in one immutable ProductionRules value. It is built
once at process start from settings; pure functions take an optional `rules`
argument so tests can pin the tables instead of depending on the wall clock.
"""
from datetime import date
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class ReworkReentryPolicy(str, Enum):
    """Where a panel re-enters the line after a REWORK result."""
    FAILED_STATION = "FAILED_STATION"   # Re-queued at the station that raised the rework
    LINE_START = "LINE_START"           # Restarts the line in a new rework cycle


class WattageRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float
    nominal: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


class ElectricalRange(BaseModel):
    """Open lower bound, closed upper bound: (min, max]."""
    model_config = ConfigDict(frozen=True)

    min_exclusive: float
    max: float
    unit: str

    def contains(self, value: float) -> bool:
        return self.min_exclusive < value <= self.max


class LineDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_number: int
    line_name: str
    panel_types: Tuple[str, ...]
    stations: Tuple[int, ...]


DEFAULT_WATTAGE_RANGES = {
    "36": WattageRange(min=180, max=220, nominal=200),
    "40": WattageRange(min=200, max=240, nominal=220),
    "60": WattageRange(min=280, max=340, nominal=310),
    "72": WattageRange(min=350, max=420, nominal=385),
    "144": WattageRange(min=500, max=600, nominal=550),
}

DEFAULT_LINES = {
    1: LineDefinition(line_number=1, line_name="LINE_1", panel_types=("36", "40", "60", "72"), stations=(1, 2, 3, 4)),
    2: LineDefinition(line_number=2, line_name="LINE_2", panel_types=("144",), stations=(5, 6, 7, 8)),
}

DEFAULT_ELECTRICAL_RANGES = {
    "wattage_pmax": ElectricalRange(min_exclusive=0, max=1000, unit="W"),
    "vmp": ElectricalRange(min_exclusive=0, max=100, unit="V"),
    "imp": ElectricalRange(min_exclusive=0, max=20, unit="A"),
}


class StationCriterion(BaseModel):
    """One checklist item an inspector can tick at a station."""
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    notes_required: bool = False


class StationChecklist(BaseModel):
    """
    Pass and fail criteria for one station position.

    line_pass_criteria / line_fail_criteria hold the items only one line adds,
    keyed by line number.
    """
    model_config = ConfigDict(frozen=True)

    pass_criteria: Tuple[StationCriterion, ...] = ()
    fail_criteria: Tuple[StationCriterion, ...] = ()
    line_pass_criteria: Dict[int, Tuple[StationCriterion, ...]] = {}
    line_fail_criteria: Dict[int, Tuple[StationCriterion, ...]] = {}

    def for_line(self, line_number: int) -> "StationChecklist":
        """The merged checklist a station on `line_number` works from."""
        return StationChecklist(
            pass_criteria=self.pass_criteria + self.line_pass_criteria.get(line_number, ()),
            fail_criteria=self.fail_criteria + self.line_fail_criteria.get(line_number, ()),
        )

    def find(self, criterion_id: str) -> Optional[StationCriterion]:
        for criterion in self.pass_criteria + self.fail_criteria:
            if criterion.id == criterion_id:
                return criterion
        return None


def _passing(*items):
    return tuple(StationCriterion(id=i, label=label) for i, label in items)


def _failing(*items):
    return tuple(StationCriterion(id=i, label=label, notes_required=True) for i, label in items)


OTHER_FAILURE = ("other", "Other")

# Keyed by station position within a line (1-4)
DEFAULT_STATION_CRITERIA = {
    1: StationChecklist(
        pass_criteria=_passing(
            ("el_test_passed", "EL test passed"),
            ("assembly_complete", "Assembly complete"),
            ("no_visible_defects", "No visible defects"),
            ("electrical_continuity", "Electrical continuity verified"),
        ),
        fail_criteria=_failing(
            ("el_test_failed", "EL test failed"),
            ("assembly_incomplete", "Assembly incomplete"),
            ("visible_defects", "Visible defects found"),
            ("electrical_continuity_failed", "Electrical continuity failed"),
            ("component_missing", "Component missing"),
            OTHER_FAILURE,
        ),
        line_pass_criteria={2: _passing(("large_panel_handling", "Large panel handling verified"))},
        line_fail_criteria={2: _failing(("large_panel_handling_failed", "Large panel handling issues"))},
    ),
    2: StationChecklist(
        pass_criteria=_passing(
            ("frame_properly_assembled", "Frame properly assembled"),
            ("no_frame_damage", "No frame damage"),
            ("corner_joints_secure", "Corner joints secure"),
            ("frame_alignment_correct", "Frame alignment correct"),
        ),
        fail_criteria=_failing(
            ("frame_misaligned", "Frame misaligned"),
            ("frame_damage", "Frame damage detected"),
            ("loose_corner_joints", "Loose corner joints"),
            ("missing_frame_components", "Missing frame components"),
            ("frame_warping", "Frame warping"),
            OTHER_FAILURE,
        ),
        line_pass_criteria={
            1: _passing(("mirror_examination_passed", "Mirror examination passed")),
            2: _passing(("large_panel_handling_verified", "Large panel handling verified")),
        },
        line_fail_criteria={
            1: _failing(("mirror_examination_failed", "Mirror examination failed")),
            2: _failing(("large_panel_handling_issues", "Large panel handling issues")),
        },
    ),
    3: StationChecklist(
        pass_criteria=_passing(
            ("junction_box_properly_installed", "Junction box properly installed"),
            ("wiring_correctly_connected", "Wiring correctly connected"),
            ("sealing_complete", "Sealing complete"),
            ("no_electrical_shorts", "No electrical shorts"),
        ),
        fail_criteria=_failing(
            ("junction_box_misaligned", "Junction box misaligned"),
            ("wiring_disconnected", "Wiring disconnected"),
            ("incomplete_sealing", "Incomplete sealing"),
            ("electrical_short_detected", "Electrical short detected"),
            ("missing_components", "Missing components"),
            OTHER_FAILURE,
        ),
        line_pass_criteria={2: _passing(("large_panel_wiring_verified", "Large panel wiring verified"))},
        line_fail_criteria={2: _failing(("large_panel_wiring_issues", "Large panel wiring issues"))},
    ),
    4: StationChecklist(
        pass_criteria=_passing(
            ("performance_within_specifications", "Performance within specifications"),
            ("visual_inspection_passed", "Visual inspection passed"),
            ("all_tests_completed", "All tests completed"),
            ("quality_standards_met", "Quality standards met"),
        ),
        fail_criteria=_failing(
            ("performance_below_specifications", "Performance below specifications"),
            ("visual_defects_found", "Visual defects found"),
            ("test_failures", "Test failures"),
            ("quality_standards_not_met", "Quality standards not met"),
            ("calibration_issues", "Calibration issues"),
            OTHER_FAILURE,
        ),
        line_pass_criteria={
            1: _passing(("second_el_test_passed", "Second EL test passed")),
            2: _passing(("extended_performance_testing_passed", "Extended performance testing passed")),
        },
        line_fail_criteria={
            1: _failing(("second_el_test_failed", "Second EL test failed")),
            2: _failing(("extended_performance_testing_failed", "Extended performance testing failed")),
        },
    ),
}


class ProductionRules(BaseModel):
    """Immutable rule tables consumed by the codec, specification and workflow."""
    model_config = ConfigDict(frozen=True)

    company_prefix: str = "CRS"
    sequence_digits: int = 5
    panel_types: Tuple[str, ...] = ("36", "40", "60", "72", "144")
    wattage_ranges: Dict[str, WattageRange] = DEFAULT_WATTAGE_RANGES
    lines: Dict[int, LineDefinition] = DEFAULT_LINES
    stations_per_line: int = 4
    station_names: Tuple[str, ...] = ("Assembly & EL", "Framing", "Junction Box", "Performance & Final")

    # Barcode code tables
    frame_codes: Dict[str, str] = {"W": "silver", "B": "black"}
    backsheet_codes: Dict[str, str] = {"T": "transparent", "W": "white", "B": "black"}
    bifacial_backsheet_codes: Tuple[str, ...] = ("T",)

    # Specification enumerations
    construction_types: Tuple[str, ...] = ("bifacial", "monofacial")
    frame_colors: Tuple[str, ...] = ("silver", "black", "white", "clear")
    quality_grades: Tuple[str, ...] = ("A", "B", "C")
    min_production_year: int = 2020
    max_production_year: int = 2030

    electrical_ranges: Dict[str, ElectricalRange] = DEFAULT_ELECTRICAL_RANGES

    # Manufacturing order window
    mo_quantity_min: int = 1
    mo_quantity_max: int = 10000
    mo_start_lookback_days: int = 365
    mo_end_lookahead_days: int = 730

    rework_reentry_policy: ReworkReentryPolicy = ReworkReentryPolicy.FAILED_STATION

    # Station checklists
    station_criteria: Dict[int, StationChecklist] = DEFAULT_STATION_CRITERIA
    require_fail_criteria: bool = False  # FAIL / REWORK must name at least one fail criterion

    def line_for_panel_type(self, panel_type: str) -> Optional[LineDefinition]:
        for line in self.lines.values():
            if panel_type in line.panel_types:
                return line
        return None

    def station_position(self, line: LineDefinition, station_number: int) -> Optional[int]:
        """1-based position of a physical station within its line, or None."""
        if station_number not in line.stations:
            return None
        return line.stations.index(station_number) + 1

    def checklist_for(self, line_number: int, station_number: int) -> StationChecklist:
        """Criteria for a physical station, with its line's additions merged in."""
        line = self.lines.get(line_number)
        position = self.station_position(line, station_number) if line else None
        checklist = self.station_criteria.get(position) if position else None
        if checklist is None:
            return StationChecklist()
        return checklist.for_line(line_number)

    def line_for_station(self, station_number: int) -> Optional[LineDefinition]:
        for line in self.lines.values():
            if station_number in line.stations:
                return line
        return None

    def station_name(self, station_number: int) -> str:
        line = self.line_for_station(station_number)
        if line is None:
            return f"Station {station_number}"
        return self.station_names[line.stations.index(station_number)]


def build_production_rules(settings=None, today: Optional[date] = None) -> ProductionRules:
    """Build rules from settings; the year window is anchored on `today`."""
    if settings is None:
        from paneltrack.config import settings as app_settings
        settings = app_settings
    today = today or date.today()
    return ProductionRules(
        min_production_year=settings.PRODUCTION_YEAR_MIN,
        max_production_year=today.year + settings.PRODUCTION_YEAR_LOOKAHEAD,
        rework_reentry_policy=ReworkReentryPolicy(settings.REWORK_REENTRY_POLICY),
        require_fail_criteria=settings.REQUIRE_FAIL_CRITERIA,
    )


@lru_cache()
def get_production_rules() -> ProductionRules:
    """Rules loaded once at process start."""
    return build_production_rules()
