"""
Barcode Codec for Solar Panel Tracking

Format: CRSYYFBPP#####
- CRS: Company prefix (fixed)
- YY: Production year (2 digits, 20YY)
- F: Frame code (W=Silver, B=Black)
- B: Backsheet code (T=Transparent, W=White, B=Black)
- PP: Panel type token (36, 40, 60, 72 or 144)
- #####: Sequence number (5 digits, zero padded)

The fixed fields take 12 characters and the panel type token adds 2 or 3,
so a valid barcode is 14 characters (36/40/60/72) or 15 characters (144).

Decoding is pure: a barcode either matches the exact pattern and decodes to
every field, or it is rejected with a classified error. Input is never
trimmed, upper-cased or otherwise coerced.
"""
import re
from typing import List, Optional

from paneltrack.core.exceptions import BarcodeFormatError
from paneltrack.core.production_rules import ProductionRules, get_production_rules
from paneltrack.schemas.barcode import DecodedBarcode


class BarcodeCodec:
    """Decode, encode and generate panel barcodes."""

    FIXED_FIELDS_LENGTH = 12  # CRS + YY + F + B + #####

    def __init__(self, rules: Optional[ProductionRules] = None):
        self.rules = rules or get_production_rules()
        prefix = re.escape(self.rules.company_prefix)
        frames = "".join(sorted(self.rules.frame_codes))
        backsheets = "".join(sorted(self.rules.backsheet_codes))
        types = "|".join(sorted(self.rules.panel_types, key=len, reverse=True))
        digits = self.rules.sequence_digits

        self._pattern = re.compile(
            rf"{prefix}([0-9]{{2}})([{frames}])([{backsheets}])({types})([0-9]{{{digits}}})"
        )
        # Same layout with any 2-3 digit token, to tell a bad panel type apart from a bad format
        self._loose_pattern = re.compile(
            rf"{prefix}([0-9]{{2}})([{frames}])([{backsheets}])([0-9]{{2,3}})([0-9]{{{digits}}})"
        )
        token_lengths = {len(t) for t in self.rules.panel_types}
        self.valid_lengths = sorted(self.FIXED_FIELDS_LENGTH + n for n in token_lengths)

    # ==================== Decoding ====================

    def decode(self, raw) -> DecodedBarcode:
        """Parse a raw barcode string into structured fields."""
        if not isinstance(raw, str) or not raw:
            raise BarcodeFormatError("Barcode must be a non-empty string", "INVALID_FORMAT", field="barcode")

        if len(raw) not in self.valid_lengths:
            raise BarcodeFormatError(
                f"Invalid barcode length. Expected {' or '.join(map(str, self.valid_lengths))}, got {len(raw)}",
                "INVALID_LENGTH",
                field="barcode",
            )

        match = self._pattern.fullmatch(raw)
        if match is None:
            loose = self._loose_pattern.fullmatch(raw)
            if loose is not None:
                raise BarcodeFormatError(
                    f"Invalid panel type '{loose.group(4)}'. Valid types: {', '.join(self.rules.panel_types)}",
                    "INVALID_PANEL_TYPE",
                    field="panel_type",
                )
            raise BarcodeFormatError(
                f"Barcode '{raw}' does not match format {self.rules.company_prefix}YYFBPP#####",
                "INVALID_FORMAT",
                field="barcode",
            )

        year_code, frame_code, backsheet_code, panel_type, sequence_code = match.groups()
        construction = (
            "bifacial" if backsheet_code in self.rules.bifacial_backsheet_codes else "monofacial"
        )
        return DecodedBarcode(
            raw=raw,
            company_prefix=self.rules.company_prefix,
            year_code=year_code,
            year=2000 + int(year_code),
            frame_code=frame_code,
            backsheet_code=backsheet_code,
            panel_type=panel_type,
            sequence_code=sequence_code,
            sequence_number=int(sequence_code),
            factory_code=self.rules.company_prefix,
            batch_code=f"{year_code}{frame_code}{backsheet_code}",
            frame_color=self.rules.frame_codes.get(frame_code),
            backsheet_type=self.rules.backsheet_codes.get(backsheet_code),
            construction_type=construction,
        )

    def is_valid(self, raw) -> bool:
        try:
            self.decode(raw)
        except BarcodeFormatError:
            return False
        return True

    # ==================== Encoding / Generation ====================

    def encode(self, decoded: DecodedBarcode) -> str:
        """Rebuild the wire string from decoded fields."""
        return (
            f"{decoded.company_prefix}{decoded.year_code}{decoded.frame_code}"
            f"{decoded.backsheet_code}{decoded.panel_type}"
            f"{decoded.sequence_number:0{self.rules.sequence_digits}d}"
        )

    def generate_barcode(
        self,
        year: int,
        frame_code: str,
        backsheet_code: str,
        panel_type: str,
        sequence: int,
    ) -> str:
        """
        Generate a barcode and verify it decodes.

        Example: generate_barcode(2025, "W", "T", "36", 123) -> CRS25WT3600123
        """
        max_sequence = 10 ** self.rules.sequence_digits - 1
        if sequence < 1 or sequence > max_sequence:
            raise BarcodeFormatError(
                f"Sequence {sequence} out of range 1-{max_sequence}",
                "INVALID_SEQUENCE",
                field="sequence",
            )
        if year < 2000 or year > 2099:
            raise BarcodeFormatError(f"Year {year} cannot be encoded", "INVALID_YEAR", field="year")

        barcode = (
            f"{self.rules.company_prefix}{year % 100:02d}{frame_code}{backsheet_code}"
            f"{panel_type}{sequence:0{self.rules.sequence_digits}d}"
        )
        self.decode(barcode)
        return barcode

    def generate_mo_range(
        self,
        year: int,
        frame_code: str,
        backsheet_code: str,
        panel_type: str,
        start_sequence: int,
        count: int,
    ) -> List[str]:
        """Contiguous block of barcodes for label printing."""
        if count < 1:
            raise BarcodeFormatError("Count must be at least 1", "INVALID_COUNT", field="count")
        return [
            self.generate_barcode(year, frame_code, backsheet_code, panel_type, start_sequence + i)
            for i in range(count)
        ]

    def format_info(self) -> dict:
        return {
            "format": f"{self.rules.company_prefix}YYFBPP#####",
            "valid_lengths": self.valid_lengths,
            "panel_types": list(self.rules.panel_types),
            "frame_codes": dict(self.rules.frame_codes),
            "backsheet_codes": dict(self.rules.backsheet_codes),
        }


def decode_barcode(raw, rules: Optional[ProductionRules] = None) -> DecodedBarcode:
    """Decode with the process-wide rules unless others are given."""
    return BarcodeCodec(rules).decode(raw)


def encode_barcode(decoded: DecodedBarcode, rules: Optional[ProductionRules] = None) -> str:
    return BarcodeCodec(rules).encode(decoded)
