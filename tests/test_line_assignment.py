import pytest

from paneltrack.core.exceptions import LineConfigurationError
from paneltrack.services.line_assignment import resolve_line_assignment


@pytest.mark.parametrize("panel_type", ["36", "40", "60", "72"])
def test_line_1_panel_types(rules, panel_type):
    line = resolve_line_assignment(panel_type, rules)

    assert line.line_number == 1
    assert line.line_name == "LINE_1"
    assert line.station_range == [1, 2, 3, 4]
    assert line.first_station == 1
    assert line.final_station == 4
    assert line.is_valid


def test_line_2_panel_type(rules):
    line = resolve_line_assignment("144", rules)

    assert line.line_number == 2
    assert line.station_range == [5, 6, 7, 8]
    assert line.first_station == 5
    assert line.final_station == 8


@pytest.mark.parametrize("panel_type", ["48", "1440", "abc", "36 ", 144.0])
def test_unknown_panel_type_has_no_default_line(rules, panel_type):
    with pytest.raises(LineConfigurationError) as exc_info:
        resolve_line_assignment(panel_type, rules)

    assert exc_info.value.kind == "CONFIG_ERROR"
    assert exc_info.value.code == "INVALID_PANEL_TYPE_FOR_LINE"


@pytest.mark.parametrize("panel_type", [None, ""])
def test_missing_panel_type(rules, panel_type):
    with pytest.raises(LineConfigurationError) as exc_info:
        resolve_line_assignment(panel_type, rules)
    assert exc_info.value.code == "MISSING_PANEL_TYPE"


def test_integer_panel_type_is_accepted(rules):
    assert resolve_line_assignment(144, rules).line_number == 2
