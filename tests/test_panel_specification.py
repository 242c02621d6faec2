from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from paneltrack.core.exceptions import (
    DocumentationError,
    LineConfigurationError,
    SpecificationValidationError,
    StateConflictError,
)
from paneltrack.services.barcode_codec import BarcodeCodec
from paneltrack.services.panel_specification import (
    ManualSpecificationInput,
    OverrideAudit,
    PanelSpecification,
    SpecificationOverrides,
)

FIXED_NOW = datetime(2025, 6, 1, 8, 30, tzinfo=timezone.utc)


@pytest.fixture
def decoded(rules):
    return BarcodeCodec(rules).decode("CRS25WT3600123")


def manual_input(**overrides):
    values = {
        "panel_type": "60",
        "nominal_wattage": 310,
        "construction_type": "monofacial",
        "frame_color": "black",
        "production_year": 2025,
        "quality_grade": "A",
    }
    values.update(overrides)
    return ManualSpecificationInput(**values)


AUDIT = OverrideAudit(reason="Label damaged in lamination", user_id="op-7")


class TestFromBarcode:
    def test_builds_from_decoded_fields(self, decoded, rules):
        spec = PanelSpecification.from_barcode(decoded, rules=rules)

        assert spec.barcode == "CRS25WT3600123"
        assert spec.panel_type == "36"
        assert spec.nominal_wattage == 200
        assert spec.construction_type == "bifacial"
        assert spec.frame_color == "silver"
        assert spec.production_year == 2025
        assert spec.quality_grade == "A"
        assert spec.batch_code == "25WT"
        assert spec.sequence_number == 123
        assert spec.manual_override is False
        assert spec.validate_rules(rules).is_valid

    def test_overrides_are_merged_and_audited(self, decoded, rules):
        spec = PanelSpecification.from_barcode(
            decoded,
            SpecificationOverrides(nominal_wattage=210, quality_grade="B"),
            AUDIT,
            rules=rules,
            now=FIXED_NOW,
        )

        assert spec.nominal_wattage == 210
        assert spec.quality_grade == "B"
        assert spec.panel_type == "36"
        assert spec.manual_override is True
        assert spec.override_reason == AUDIT.reason
        assert spec.override_by == "op-7"
        assert spec.override_at == FIXED_NOW

    def test_empty_overrides_leave_spec_unaudited(self, decoded, rules):
        spec = PanelSpecification.from_barcode(decoded, SpecificationOverrides(), rules=rules)
        assert spec.manual_override is False

    def test_override_without_audit_is_rejected(self, decoded, rules):
        with pytest.raises(DocumentationError) as exc_info:
            PanelSpecification.from_barcode(decoded, SpecificationOverrides(frame_color="black"), rules=rules)

        assert exc_info.value.code == "OVERRIDE_AUDIT_REQUIRED"
        assert {e.field for e in exc_info.value.errors} == {"reason", "user_id"}

    def test_unknown_override_field_is_rejected(self):
        with pytest.raises(ValidationError):
            SpecificationOverrides(colour="red")


class TestWithOverrides:
    def test_returns_new_value(self, decoded, rules):
        original = PanelSpecification.from_barcode(decoded, rules=rules)
        corrected = original.with_overrides(SpecificationOverrides(frame_color="black"), AUDIT, now=FIXED_NOW)

        assert corrected is not original
        assert original.frame_color == "silver"
        assert original.manual_override is False
        assert corrected.frame_color == "black"
        assert corrected.override_at == FIXED_NOW

    def test_allowed_exactly_once(self, decoded, rules):
        corrected = PanelSpecification.from_barcode(decoded, rules=rules).with_overrides(
            SpecificationOverrides(frame_color="black"), AUDIT
        )

        with pytest.raises(StateConflictError) as exc_info:
            corrected.with_overrides(SpecificationOverrides(frame_color="white"), AUDIT)
        assert exc_info.value.code == "OVERRIDE_ALREADY_APPLIED"

    def test_empty_override_is_rejected(self, decoded, rules):
        with pytest.raises(SpecificationValidationError) as exc_info:
            PanelSpecification.from_barcode(decoded, rules=rules).with_overrides(SpecificationOverrides(), AUDIT)
        assert exc_info.value.code == "EMPTY_OVERRIDE"

    def test_blank_reason_counts_as_missing(self, decoded, rules):
        with pytest.raises(DocumentationError) as exc_info:
            PanelSpecification.from_barcode(decoded, rules=rules).with_overrides(
                SpecificationOverrides(frame_color="black"),
                OverrideAudit(reason="   ", user_id="op-7"),
            )
        assert [e.field for e in exc_info.value.errors] == ["reason"]


class TestCreateManual:
    def test_valid_manual_specification(self, rules):
        spec = PanelSpecification.create_manual(manual_input(), AUDIT, rules=rules, now=FIXED_NOW)

        assert spec.barcode is None
        assert spec.manual_override is True
        assert spec.override_by == "op-7"
        assert spec.override_at == FIXED_NOW
        assert spec.resolve_line_assignment(rules).line_number == 1

    def test_wattage_out_of_range_reports_single_error(self, rules):
        with pytest.raises(SpecificationValidationError) as exc_info:
            PanelSpecification.create_manual(
                manual_input(panel_type="36", nominal_wattage=999), AUDIT, rules=rules
            )

        error = exc_info.value
        assert error.code == "MANUAL_SPECIFICATION_INVALID"
        assert error.kind == "VALIDATION_ERROR"
        assert len(error.errors) == 1
        assert error.errors[0].code == "INVALID_WATTAGE_RANGE"
        assert error.errors[0].field == "nominal_wattage"

    def test_reports_every_violation(self, rules):
        with pytest.raises(SpecificationValidationError) as exc_info:
            PanelSpecification.create_manual(
                manual_input(
                    construction_type="trifacial",
                    frame_color="gold",
                    production_year=2019,
                    quality_grade="Z",
                ),
                OverrideAudit(),
                rules=rules,
            )

        codes = [e.code for e in exc_info.value.errors]
        assert codes == [
            "REQUIRED",
            "REQUIRED",
            "INVALID_CONSTRUCTION_TYPE",
            "INVALID_FRAME_COLOR",
            "INVALID_PRODUCTION_YEAR",
            "INVALID_QUALITY_GRADE",
        ]

    def test_unknown_panel_type(self, rules):
        with pytest.raises(SpecificationValidationError) as exc_info:
            PanelSpecification.create_manual(manual_input(panel_type="50"), AUDIT, rules=rules)
        assert [e.code for e in exc_info.value.errors] == ["INVALID_PANEL_TYPE"]


class TestValidation:
    def test_validation_is_idempotent(self, decoded, rules):
        spec = PanelSpecification.from_barcode(decoded, rules=rules).model_copy(
            update={"nominal_wattage": 50, "quality_grade": "D"}
        )

        first = spec.validate_rules(rules)
        second = spec.validate_rules(rules)

        assert first == second
        assert not first.is_valid
        assert [e.code for e in first.errors] == ["INVALID_WATTAGE_RANGE", "INVALID_QUALITY_GRADE"]

    def test_year_window_comes_from_rules(self, decoded, rules):
        spec = PanelSpecification.from_barcode(decoded, rules=rules)
        narrow = rules.model_copy(update={"max_production_year": 2024})

        assert spec.validate_rules(rules).is_valid
        assert [e.code for e in spec.validate_rules(narrow).errors] == ["INVALID_PRODUCTION_YEAR"]

    def test_ensure_valid_raises_with_all_errors(self, decoded, rules):
        spec = PanelSpecification.from_barcode(decoded, rules=rules).model_copy(update={"frame_color": "pink"})

        with pytest.raises(SpecificationValidationError) as exc_info:
            spec.ensure_valid(rules)
        assert exc_info.value.code == "SPECIFICATION_INVALID"

    def test_manual_override_requires_reason_and_author(self):
        with pytest.raises(ValidationError):
            PanelSpecification(panel_type="36", manual_override=True, override_by="op-7")

    def test_line_assignment_for_unknown_type(self, rules):
        spec = PanelSpecification(panel_type="50")
        with pytest.raises(LineConfigurationError):
            spec.resolve_line_assignment(rules)
