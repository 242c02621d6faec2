"""
Barcode Schemas

Pydantic schemas for barcode decoding and generation.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from paneltrack.schemas.line import LineAssignment


class DecodedBarcode(BaseModel):
    """Structured fields of a CRSYYFBPP##### barcode. Immutable once parsed."""
    model_config = ConfigDict(frozen=True)

    raw: str
    company_prefix: str
    year_code: str              # YY as printed
    year: int                   # 20YY
    frame_code: str             # W | B
    backsheet_code: str         # T | W | B
    panel_type: str             # 36 | 40 | 60 | 72 | 144
    sequence_code: str          # 5 digits as printed
    sequence_number: int
    factory_code: str
    batch_code: str
    frame_color: Optional[str] = None
    backsheet_type: Optional[str] = None
    construction_type: str


class BarcodeDecodeRequest(BaseModel):
    barcode: str


class BarcodeDecodeResponse(BaseModel):
    decoded: DecodedBarcode
    line_assignment: LineAssignment


class BarcodeGenerateRequest(BaseModel):
    """Label block for a manufacturing order."""
    year: int = Field(..., ge=2000, le=2099)
    frame_code: str = Field("W", max_length=1)
    backsheet_code: str = Field("T", max_length=1)
    panel_type: str
    start_sequence: int = Field(1, ge=1, le=99999)
    count: int = Field(1, ge=1, le=10000)


class BarcodeGenerateResponse(BaseModel):
    barcodes: List[str]
    first: str
    last: str
    count: int
