"""
Station Inspection State Machine.

Pure decision logic for the 4-station inspection workflow. Given a snapshot
of a panel's workflow state, its inspection history and a proposed
inspection, evaluate() either returns the transition to apply or raises a
classified error carrying every violated rule. Nothing here touches the
database; InspectionService loads the snapshot under a row lock and persists
the transition.

States:
    PENDING -> IN_PROGRESS -> COMPLETED | FAILED
    REWORK is recoverable: the panel re-enters at the station chosen by the
    rework re-entry policy.

Progression: station N (beyond the line's first station) is admissible only
when station N-1 has a pass-equivalent result (PASS or COSMETIC_DEFECT) in
the current rework cycle. A second inspection at a station that already
passed in the cycle is a DUPLICATE_INSPECTION.

Criteria: an inspection may name checklist items for its station. Pass-
equivalent results draw from the pass checklist, FAIL and REWORK from the
fail checklist; the panel's line adds its own items to both.
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from paneltrack.core.exceptions import (
    DataIncompleteError,
    DocumentationError,
    ErrorDetail,
    SpecificationValidationError,
    StateConflictError,
    StationSequenceError,
)
from paneltrack.core.production_rules import (
    ProductionRules,
    ReworkReentryPolicy,
    StationChecklist,
    get_production_rules,
)
from paneltrack.models.inspection import (
    NOTES_REQUIRED_RESULTS,
    PASS_EQUIVALENT_RESULTS,
    InspectionResult,
)
from paneltrack.models.panel import PanelStatus
from paneltrack.schemas.line import LineAssignment
from paneltrack.services.line_assignment import resolve_line_assignment


# ==================== Snapshots ====================

class InspectionRecord(BaseModel):
    """An inspection already in the panel's history."""
    model_config = ConfigDict(frozen=True)

    station_number: int
    result: str
    inspected_at: datetime
    rework_cycle: int = 0

    @property
    def passed(self) -> bool:
        return self.result in PASS_EQUIVALENT_RESULTS


class PanelWorkflowState(BaseModel):
    """Everything the state machine needs to know about a panel."""
    model_config = ConfigDict(frozen=True)

    panel_type: str
    status: str = PanelStatus.PENDING.value
    current_station: Optional[int] = None
    station_timestamps: Tuple[Optional[datetime], ...] = (None, None, None, None)
    rework_cycle: int = 0
    rework_count: int = 0
    rework_reason: Optional[str] = None
    quality_notes: Optional[str] = None
    wattage_pmax: Optional[float] = None
    vmp: Optional[float] = None
    imp: Optional[float] = None

    @classmethod
    def from_panel(cls, panel) -> "PanelWorkflowState":
        return cls(
            panel_type=panel.panel_type,
            status=panel.status,
            current_station=panel.current_station,
            station_timestamps=tuple(panel.station_timestamps),
            rework_cycle=panel.rework_cycle or 0,
            rework_count=panel.rework_count or 0,
            rework_reason=panel.rework_reason,
            quality_notes=panel.quality_notes,
            wattage_pmax=panel.wattage_pmax,
            vmp=panel.vmp,
            imp=panel.imp,
        )


class InspectionAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    station_number: int
    inspector_id: str
    result: InspectionResult
    inspected_at: datetime
    notes: Optional[str] = None
    criteria: Tuple[str, ...] = ()   # checklist ids the inspector selected

    @field_validator("inspected_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

    @field_validator("criteria", mode="before")
    @classmethod
    def drop_repeats(cls, v):
        return tuple(dict.fromkeys(v or ()))


class WorkflowTransition(BaseModel):
    """The accepted outcome of one inspection."""
    model_config = ConfigDict(frozen=True)

    station_number: int
    line_position: int
    result: str
    passed: bool
    attempt: int
    rework_cycle: int                   # cycle the inspection is recorded in
    status: str
    current_station: Optional[int]
    station_timestamps: Tuple[Optional[datetime], ...]
    next_rework_cycle: int
    rework_count: int
    rework_reason: Optional[str] = None
    quality_notes: Optional[str] = None
    completed: bool = False
    failed: bool = False
    entered_rework: bool = False


# ==================== Electrical data ====================

ELECTRICAL_FIELDS = ("wattage_pmax", "vmp", "imp")


def electrical_violations(
    values: dict,
    rules: Optional[ProductionRules] = None,
    require_all: bool = True,
) -> List[ErrorDetail]:
    """Missing or out-of-range electrical measurements, one entry per field."""
    rules = rules or get_production_rules()
    violations = []
    for field in ELECTRICAL_FIELDS:
        value = values.get(field)
        limits = rules.electrical_ranges[field]
        if value is None:
            if require_all:
                violations.append(ErrorDetail(
                    field=field,
                    code="MISSING",
                    message=f"{field} is required before final station completion",
                ))
            continue
        if not limits.contains(value):
            violations.append(ErrorDetail(
                field=field,
                code="OUT_OF_RANGE",
                message=f"{field} must be greater than {limits.min_exclusive:g} and at most {limits.max:g} {limits.unit}",
            ))
    return violations


# ==================== State Machine ====================

class InspectionWorkflow:
    """Decides whether an inspection is admissible and what it does to the panel."""

    def __init__(self, rules: Optional[ProductionRules] = None):
        self.rules = rules or get_production_rules()

    def line_for(self, state: PanelWorkflowState) -> LineAssignment:
        return resolve_line_assignment(state.panel_type, self.rules)

    def reentry_station(self, line: LineAssignment, failed_station: int) -> int:
        if self.rules.rework_reentry_policy == ReworkReentryPolicy.LINE_START:
            return line.first_station
        return failed_station

    def checklist_for(self, line: LineAssignment, station_number: int) -> StationChecklist:
        return self.rules.checklist_for(line.line_number, station_number)

    def _check_criteria(self, line: LineAssignment, attempt: InspectionAttempt, passed: bool) -> StationChecklist:
        """Selected criteria must come from the station's pass or fail checklist."""
        checklist = self.checklist_for(line, attempt.station_number)
        kind = "pass" if passed else "fail"
        allowed = {c.id for c in (checklist.pass_criteria if passed else checklist.fail_criteria)}
        unknown = [c for c in attempt.criteria if c not in allowed]
        if unknown:
            raise SpecificationValidationError(
                f"Unknown {kind} criteria for station {attempt.station_number}: {', '.join(unknown)}",
                "UNKNOWN_CRITERION",
                errors=[
                    ErrorDetail(
                        field="criteria",
                        code="UNKNOWN_CRITERION",
                        message=f"'{c}' is not a {kind} criterion at station {attempt.station_number} on {line.line_name}",
                    )
                    for c in unknown
                ],
            )
        return checklist

    def evaluate(
        self,
        state: PanelWorkflowState,
        history: Iterable[InspectionRecord],
        attempt: InspectionAttempt,
    ) -> WorkflowTransition:
        if state.status in (PanelStatus.COMPLETED.value, PanelStatus.FAILED.value):
            hint = " (route it to rework first)" if state.status == PanelStatus.FAILED.value else ""
            raise StateConflictError(
                f"Panel is {state.status} and accepts no further inspections{hint}",
                "PANEL_TERMINAL",
                field="status",
            )

        line = self.line_for(state)
        if attempt.station_number not in line.station_range:
            raise SpecificationValidationError(
                f"Station {attempt.station_number} is not on {line.line_name} "
                f"(stations {line.first_station}-{line.final_station})",
                "STATION_NOT_ON_LINE",
                field="station_number",
            )

        position = line.station_range.index(attempt.station_number) + 1
        result = InspectionResult(attempt.result).value
        passed = result in PASS_EQUIVALENT_RESULTS
        checklist = self._check_criteria(line, attempt, passed)
        cycle = state.rework_cycle
        cycle_history = [h for h in history if h.rework_cycle == cycle]

        sequence_errors: List[ErrorDetail] = []
        documentation_errors: List[ErrorDetail] = []
        data_errors: List[ErrorDetail] = []

        if any(h.station_number == attempt.station_number and h.passed for h in cycle_history):
            sequence_errors.append(ErrorDetail(
                field="station_number",
                code="DUPLICATE_INSPECTION",
                message=f"Station {attempt.station_number} has already passed for this panel",
            ))
        elif position > 1:
            previous_station = line.station_range[position - 2]
            if not any(h.station_number == previous_station and h.passed for h in cycle_history):
                sequence_errors.append(ErrorDetail(
                    field="station_number",
                    code="STATION_SEQUENCE_VIOLATION",
                    message=f"Station {previous_station} must pass before station {attempt.station_number}",
                ))

        if position > 1:
            previous_completed = state.station_timestamps[position - 2]
            if previous_completed is not None and attempt.inspected_at < previous_completed:
                sequence_errors.append(ErrorDetail(
                    field="inspected_at",
                    code="STATION_TIMESTAMP_OUT_OF_ORDER",
                    message=(
                        f"Inspection time {attempt.inspected_at.isoformat()} is earlier than "
                        f"station {line.station_range[position - 2]} completion"
                    ),
                ))

        has_notes = bool(attempt.notes and attempt.notes.strip())
        if result in NOTES_REQUIRED_RESULTS and not has_notes:
            documentation_errors.append(ErrorDetail(
                field="notes",
                code="NOTES_REQUIRED",
                message=f"Notes are required for a {result} result",
            ))
        elif not has_notes:
            needs_notes = [c for c in attempt.criteria if checklist.find(c).notes_required]
            if needs_notes:
                documentation_errors.append(ErrorDetail(
                    field="notes",
                    code="CRITERION_NOTES_REQUIRED",
                    message=f"Notes are required when selecting {', '.join(needs_notes)}",
                ))
        if not passed and self.rules.require_fail_criteria and not attempt.criteria:
            documentation_errors.append(ErrorDetail(
                field="criteria",
                code="CRITERIA_REQUIRED",
                message=f"Select at least one fail criterion for a {result} result",
            ))

        if passed and position == len(line.station_range):
            data_errors = electrical_violations(
                {"wattage_pmax": state.wattage_pmax, "vmp": state.vmp, "imp": state.imp},
                self.rules,
            )

        self._raise_violations(sequence_errors, documentation_errors, data_errors)

        attempt_number = sum(1 for h in cycle_history if h.station_number == attempt.station_number) + 1
        return self._transition(state, line, attempt, position, result, passed, attempt_number)

    def _raise_violations(self, sequence_errors, documentation_errors, data_errors):
        """Raise the most fundamental kind, carrying every violation found."""
        everything = sequence_errors + documentation_errors + data_errors
        if not everything:
            return
        if sequence_errors:
            error_cls, primary = StationSequenceError, sequence_errors[0]
        elif documentation_errors:
            error_cls, primary = DocumentationError, documentation_errors[0]
        else:
            raise DataIncompleteError(
                "Final station requires complete, in-range electrical data",
                "INCOMPLETE_ELECTRICAL_DATA",
                errors=everything,
            )
        raise error_cls(primary.message, primary.code, field=primary.field, errors=everything)

    def _transition(self, state, line, attempt, position, result, passed, attempt_number):
        timestamps = list(state.station_timestamps)
        next_cycle = state.rework_cycle
        rework_count = state.rework_count
        rework_reason = state.rework_reason
        quality_notes = state.quality_notes
        completed = failed = entered_rework = False

        if passed:
            timestamps[position - 1] = attempt.inspected_at
            if position == len(line.station_range):
                status = PanelStatus.COMPLETED.value
                current_station = attempt.station_number
                completed = True
            else:
                status = PanelStatus.IN_PROGRESS.value
                current_station = line.station_range[position]
        elif result == InspectionResult.FAIL.value:
            status = PanelStatus.FAILED.value
            current_station = attempt.station_number
            quality_notes = attempt.notes
            failed = True
        else:
            status = PanelStatus.REWORK.value
            rework_reason = attempt.notes
            rework_count += 1
            entered_rework = True
            current_station = self.reentry_station(line, attempt.station_number)
            if self.rules.rework_reentry_policy == ReworkReentryPolicy.LINE_START:
                next_cycle += 1
                timestamps = [None] * len(timestamps)

        return WorkflowTransition(
            station_number=attempt.station_number,
            line_position=position,
            result=result,
            passed=passed,
            attempt=attempt_number,
            rework_cycle=state.rework_cycle,
            status=status,
            current_station=current_station,
            station_timestamps=tuple(timestamps),
            next_rework_cycle=next_cycle,
            rework_count=rework_count,
            rework_reason=rework_reason,
            quality_notes=quality_notes,
            completed=completed,
            failed=failed,
            entered_rework=entered_rework,
        )

    def route_to_rework(self, state: PanelWorkflowState, reason: Optional[str]) -> PanelWorkflowState:
        """Supervisor disposition: send a FAILED panel back into the workflow."""
        if state.status != PanelStatus.FAILED.value:
            raise StateConflictError(
                f"Only FAILED panels can be routed to rework (panel is {state.status})",
                "PANEL_NOT_FAILED",
                field="status",
            )
        if not (reason and reason.strip()):
            raise DocumentationError("A rework reason is required", "REWORK_REASON_REQUIRED", field="reason")

        line = self.line_for(state)
        failed_station = state.current_station or line.first_station
        update = {
            "status": PanelStatus.REWORK.value,
            "rework_reason": reason,
            "rework_count": state.rework_count + 1,
            "current_station": self.reentry_station(line, failed_station),
        }
        if self.rules.rework_reentry_policy == ReworkReentryPolicy.LINE_START:
            update["rework_cycle"] = state.rework_cycle + 1
            update["station_timestamps"] = (None,) * len(state.station_timestamps)
        return state.model_copy(update=update)

    @staticmethod
    def apply(state: PanelWorkflowState, transition: WorkflowTransition) -> PanelWorkflowState:
        """The panel state after a transition."""
        return state.model_copy(update={
            "status": transition.status,
            "current_station": transition.current_station,
            "station_timestamps": transition.station_timestamps,
            "rework_cycle": transition.next_rework_cycle,
            "rework_count": transition.rework_count,
            "rework_reason": transition.rework_reason,
            "quality_notes": transition.quality_notes,
        })

    @staticmethod
    def record_for(transition: WorkflowTransition, attempt: InspectionAttempt) -> InspectionRecord:
        return InspectionRecord(
            station_number=transition.station_number,
            result=transition.result,
            inspected_at=attempt.inspected_at,
            rework_cycle=transition.rework_cycle,
        )
