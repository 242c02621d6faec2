"""
Domain error taxonomy for the panel workflow core.

Every error raised out of a service carries:
- kind: the taxonomy bucket (FORMAT_ERROR, VALIDATION_ERROR, ...)
- code: a stable machine-readable code (INVALID_LENGTH, DUPLICATE_INSPECTION, ...)
- errors: every violated rule found, each tagged with the offending field

Store details (constraint names, SQL text) never appear in these errors.
"""
from typing import List, Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """A single violated rule."""
    field: Optional[str] = None
    code: str
    message: str


class PanelTrackError(Exception):
    """Base class for all classified domain errors."""

    kind = "PANELTRACK_ERROR"

    def __init__(
        self,
        message: str,
        code: str,
        field: Optional[str] = None,
        errors: Optional[List[ErrorDetail]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.field = field
        if errors:
            self.errors = list(errors)
        else:
            self.errors = [ErrorDetail(field=field, code=code, message=message)]

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "errors": [e.model_dump() for e in self.errors],
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.kind}/{self.code}: {self.message}>"


class BarcodeFormatError(PanelTrackError):
    """Malformed barcode (INVALID_FORMAT, INVALID_LENGTH, INVALID_PANEL_TYPE)."""
    kind = "FORMAT_ERROR"


class SpecificationValidationError(PanelTrackError):
    """Field out of range or outside its enumeration."""
    kind = "VALIDATION_ERROR"


class StationSequenceError(PanelTrackError):
    """Station inspected out of order or a second time."""
    kind = "SEQUENCE_ERROR"


class DocumentationError(PanelTrackError):
    """Required notes or reason missing for a FAIL/REWORK/COSMETIC_DEFECT result."""
    kind = "DOCUMENTATION_ERROR"


class DataIncompleteError(PanelTrackError):
    """Completion attempted without the required electrical data."""
    kind = "DATA_INCOMPLETE_ERROR"


class StateConflictError(PanelTrackError):
    """A concurrent mutation won, or the entity is in a state that forbids the operation."""
    kind = "STATE_CONFLICT_ERROR"


class LineConfigurationError(PanelTrackError):
    """Unknown panel type or a panel type that maps to no line."""
    kind = "CONFIG_ERROR"


class NotFoundError(PanelTrackError):
    kind = "NOT_FOUND"


class AggregationError(PanelTrackError):
    """Progress or alert evaluation failed; nothing was committed."""
    kind = "AGGREGATION_ERROR"


def raise_for_violations(violations: List[ErrorDetail], error_cls, message: str, code: str):
    """Raise error_cls carrying every violation, if there are any."""
    if not violations:
        return
    if len(violations) == 1:
        v = violations[0]
        raise error_cls(v.message, v.code, field=v.field, errors=violations)
    raise error_cls(message, code, errors=violations)
