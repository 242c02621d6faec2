"""
Line Assignment Resolver.

Single owner of the panel type -> production line / station range mapping:
- 36, 40, 60, 72 -> LINE_1, stations 1-4
- 144            -> LINE_2, stations 5-8

There is no default line; anything else is a CONFIG_ERROR.
"""
from typing import Optional

from paneltrack.core.exceptions import LineConfigurationError
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.schemas.line import LineAssignment


def resolve_line_assignment(panel_type, rules: Optional[ProductionRules] = None) -> LineAssignment:
    """Resolve the production line for a panel type."""
    rules = rules or get_production_rules()
    if panel_type is None or panel_type == "":
        raise LineConfigurationError(
            "Panel type is required for line assignment",
            "MISSING_PANEL_TYPE",
            field="panel_type",
        )

    panel_type = str(panel_type)
    line = rules.line_for_panel_type(panel_type)
    if line is None:
        raise LineConfigurationError(
            f"Cannot determine line assignment for panel type '{panel_type}'. "
            f"Valid types: {', '.join(rules.panel_types)}",
            "INVALID_PANEL_TYPE_FOR_LINE",
            field="panel_type",
        )

    return LineAssignment(
        line_number=line.line_number,
        line_name=line.line_name,
        panel_type=panel_type,
        station_range=list(line.stations),
    )
