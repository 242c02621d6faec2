"""
Panel Specification

A richer panel descriptor built from a decoded barcode or, for damaged and
unreadable labels, from fully manual input.

Specifications are immutable values. Corrections never mutate an existing
specification: with_overrides() builds a new one from old + overrides and
stamps the audit trail (who / when / why) as part of that construction.
A specification may be corrected exactly once.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from paneltrack.core.exceptions import (
    DocumentationError,
    ErrorDetail,
    SpecificationValidationError,
    StateConflictError,
)
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.db_types import utc_now
from paneltrack.schemas.barcode import DecodedBarcode
from paneltrack.schemas.line import LineAssignment
from paneltrack.services.line_assignment import resolve_line_assignment

logger = logging.getLogger(__name__)


# ==================== Option Structs ====================

class SpecificationOverrides(BaseModel):
    """Fields an operator may correct. Unset fields keep their current value."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    panel_type: Optional[str] = None
    nominal_wattage: Optional[float] = None
    construction_type: Optional[str] = None
    frame_color: Optional[str] = None
    production_year: Optional[int] = None
    quality_grade: Optional[str] = None
    special_instructions: Optional[str] = None
    qc_notes: Optional[str] = None

    def supplied(self) -> dict:
        return self.model_dump(exclude_none=True)


class OverrideAudit(BaseModel):
    """Who corrected a specification and why. Both fields are required for any override."""
    model_config = ConfigDict(frozen=True)

    reason: Optional[str] = None
    user_id: Optional[str] = None

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.reason or not self.reason.strip():
            missing.append("reason")
        if not self.user_id or not str(self.user_id).strip():
            missing.append("user_id")
        return missing


class ManualSpecificationInput(BaseModel):
    """Operator-entered specification for a panel without a readable barcode."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    panel_type: Optional[str] = None
    nominal_wattage: Optional[float] = None
    construction_type: Optional[str] = None
    frame_color: Optional[str] = None
    production_year: Optional[int] = None
    quality_grade: str = "A"
    factory_code: Optional[str] = None
    batch_code: Optional[str] = None
    sequence_number: Optional[int] = None
    special_instructions: Optional[str] = None
    qc_notes: Optional[str] = None


class SpecificationValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: List[ErrorDetail] = []


# ==================== Panel Specification ====================

class PanelSpecification(BaseModel):
    model_config = ConfigDict(frozen=True)

    barcode: Optional[str] = None
    panel_type: Optional[str] = None
    nominal_wattage: Optional[float] = None
    construction_type: Optional[str] = None
    frame_color: Optional[str] = None
    production_year: Optional[int] = None
    quality_grade: Optional[str] = "A"
    factory_code: Optional[str] = None
    batch_code: Optional[str] = None
    sequence_number: Optional[int] = None

    manual_override: bool = False
    override_reason: Optional[str] = None
    override_by: Optional[str] = None
    override_at: Optional[datetime] = None

    special_instructions: Optional[str] = None
    qc_notes: Optional[str] = None

    @model_validator(mode="after")
    def check_override_audit(self):
        if self.manual_override and not (self.override_reason and self.override_by):
            raise ValueError("manual_override requires override_reason and override_by")
        return self

    # ---------- Construction ----------

    @classmethod
    def from_barcode(
        cls,
        decoded: DecodedBarcode,
        overrides: Optional[SpecificationOverrides] = None,
        audit: Optional[OverrideAudit] = None,
        rules: Optional[ProductionRules] = None,
        now: Optional[datetime] = None,
    ) -> "PanelSpecification":
        """Build from decoded fields; nominal wattage comes from the per-type range table."""
        rules = rules or get_production_rules()
        wattage = rules.wattage_ranges.get(decoded.panel_type)
        base = cls(
            barcode=decoded.raw,
            panel_type=decoded.panel_type,
            nominal_wattage=wattage.nominal if wattage else None,
            construction_type=decoded.construction_type,
            frame_color=decoded.frame_color,
            production_year=decoded.year,
            quality_grade="A",
            factory_code=decoded.factory_code,
            batch_code=decoded.batch_code,
            sequence_number=decoded.sequence_number,
        )
        if overrides is None or not overrides.supplied():
            return base
        return base.with_overrides(overrides, audit, now=now)

    @classmethod
    def create_manual(
        cls,
        spec_input: ManualSpecificationInput,
        metadata: OverrideAudit,
        rules: Optional[ProductionRules] = None,
        now: Optional[datetime] = None,
    ) -> "PanelSpecification":
        """
        Build a specification with no barcode at all.

        Manual specifications are validated immediately and never returned
        invalid: every violation, including missing audit metadata, is
        reported in a single MANUAL_SPECIFICATION_INVALID error.
        """
        errors = [
            ErrorDetail(field=f, code="REQUIRED", message=f"{f} is required for a manual specification")
            for f in metadata.missing_fields()
        ]

        spec = cls.model_construct(
            barcode=None,
            **spec_input.model_dump(),
            manual_override=True,
            override_reason=metadata.reason,
            override_by=metadata.user_id,
            override_at=now or utc_now(),
        )
        errors.extend(spec.validate_rules(rules).errors)

        if errors:
            logger.warning(f"Manual specification rejected: {[e.code for e in errors]}")
            raise SpecificationValidationError(
                "Manual specification is invalid",
                "MANUAL_SPECIFICATION_INVALID",
                errors=errors,
            )
        return cls.model_validate(spec.model_dump())

    def with_overrides(
        self,
        overrides: SpecificationOverrides,
        audit: Optional[OverrideAudit],
        now: Optional[datetime] = None,
    ) -> "PanelSpecification":
        """New specification = self + overrides, with the audit stamp. Allowed once."""
        if self.manual_override:
            raise StateConflictError(
                "Specification override has already been applied",
                "OVERRIDE_ALREADY_APPLIED",
                field="manual_override",
            )
        changes = overrides.supplied()
        if not changes:
            raise SpecificationValidationError(
                "At least one field must be overridden", "EMPTY_OVERRIDE", field="overrides"
            )
        audit = audit or OverrideAudit()
        missing = audit.missing_fields()
        if missing:
            raise DocumentationError(
                "Override requires a reason and the acting user",
                "OVERRIDE_AUDIT_REQUIRED",
                errors=[
                    ErrorDetail(field=f, code="REQUIRED", message=f"{f} is required for an override")
                    for f in missing
                ],
            )

        return self.model_copy(
            update={
                **changes,
                "manual_override": True,
                "override_reason": audit.reason,
                "override_by": audit.user_id,
                "override_at": now or utc_now(),
            }
        )

    # ---------- Validation ----------

    def validate_rules(self, rules: Optional[ProductionRules] = None) -> SpecificationValidation:
        """Check every field against the rule tables and return all violations."""
        rules = rules or get_production_rules()
        errors: List[ErrorDetail] = []

        if self.panel_type not in rules.panel_types:
            errors.append(ErrorDetail(
                field="panel_type",
                code="INVALID_PANEL_TYPE",
                message=f"Panel type must be one of: {', '.join(rules.panel_types)}",
            ))
        else:
            wattage = rules.wattage_ranges[self.panel_type]
            if self.nominal_wattage is None or not wattage.contains(self.nominal_wattage):
                errors.append(ErrorDetail(
                    field="nominal_wattage",
                    code="INVALID_WATTAGE_RANGE",
                    message=(
                        f"Wattage for {self.panel_type}-cell panel must be between "
                        f"{wattage.min:g}W and {wattage.max:g}W"
                    ),
                ))

        if self.construction_type not in rules.construction_types:
            errors.append(ErrorDetail(
                field="construction_type",
                code="INVALID_CONSTRUCTION_TYPE",
                message=f"Construction type must be one of: {', '.join(rules.construction_types)}",
            ))

        if self.frame_color not in rules.frame_colors:
            errors.append(ErrorDetail(
                field="frame_color",
                code="INVALID_FRAME_COLOR",
                message=f"Frame color must be one of: {', '.join(rules.frame_colors)}",
            ))

        if (
            self.production_year is None
            or not rules.min_production_year <= self.production_year <= rules.max_production_year
        ):
            errors.append(ErrorDetail(
                field="production_year",
                code="INVALID_PRODUCTION_YEAR",
                message=(
                    f"Production year must be between {rules.min_production_year} "
                    f"and {rules.max_production_year}"
                ),
            ))

        if self.quality_grade not in rules.quality_grades:
            errors.append(ErrorDetail(
                field="quality_grade",
                code="INVALID_QUALITY_GRADE",
                message=f"Quality grade must be one of: {', '.join(rules.quality_grades)}",
            ))

        return SpecificationValidation(is_valid=not errors, errors=errors)

    def ensure_valid(self, rules: Optional[ProductionRules] = None) -> "PanelSpecification":
        result = self.validate_rules(rules)
        if not result.is_valid:
            raise SpecificationValidationError(
                "Panel specification is invalid",
                "SPECIFICATION_INVALID",
                errors=result.errors,
            )
        return self

    def resolve_line_assignment(self, rules: Optional[ProductionRules] = None) -> LineAssignment:
        return resolve_line_assignment(self.panel_type, rules)
