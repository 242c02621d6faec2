"""
Barcode API Endpoints.

- Decode a scanned barcode and show its line assignment
- Generate a block of barcodes for label printing
- Describe the barcode format
"""
from fastapi import APIRouter, Depends, status

from paneltrack.api.deps import get_barcode_codec
from paneltrack.schemas.barcode import (
    BarcodeDecodeRequest,
    BarcodeDecodeResponse,
    BarcodeGenerateRequest,
    BarcodeGenerateResponse,
)
from paneltrack.services.barcode_codec import BarcodeCodec
from paneltrack.services.line_assignment import resolve_line_assignment

router = APIRouter()


@router.post(
    "/decode",
    response_model=BarcodeDecodeResponse,
    summary="Decode Barcode"
)
async def decode_barcode(
    data: BarcodeDecodeRequest,
    codec: BarcodeCodec = Depends(get_barcode_codec),
):
    """Decode a CRSYYFBPP##### barcode into fields and its production line."""
    decoded = codec.decode(data.barcode)
    return BarcodeDecodeResponse(
        decoded=decoded,
        line_assignment=resolve_line_assignment(decoded.panel_type, codec.rules),
    )


@router.post(
    "/generate",
    response_model=BarcodeGenerateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate Barcodes"
)
async def generate_barcodes(
    data: BarcodeGenerateRequest,
    codec: BarcodeCodec = Depends(get_barcode_codec),
):
    """Generate a contiguous block of barcodes for an MO's labels."""
    barcodes = codec.generate_mo_range(
        year=data.year,
        frame_code=data.frame_code,
        backsheet_code=data.backsheet_code,
        panel_type=data.panel_type,
        start_sequence=data.start_sequence,
        count=data.count,
    )
    return BarcodeGenerateResponse(
        barcodes=barcodes,
        first=barcodes[0],
        last=barcodes[-1],
        count=len(barcodes),
    )


@router.get("/format", summary="Barcode Format")
async def barcode_format(codec: BarcodeCodec = Depends(get_barcode_codec)):
    return codec.format_info()
