import pytest

from paneltrack.core.exceptions import BarcodeFormatError
from paneltrack.services.barcode_codec import BarcodeCodec, decode_barcode, encode_barcode
from paneltrack.services.line_assignment import resolve_line_assignment


@pytest.fixture
def codec(rules):
    return BarcodeCodec(rules)


def test_decodes_worked_example(codec, rules):
    decoded = codec.decode("CRS25WT3600123")

    assert decoded.panel_type == "36"
    assert decoded.year == 2025
    assert decoded.year_code == "25"
    assert decoded.sequence_number == 123
    assert decoded.sequence_code == "00123"
    assert decoded.frame_code == "W"
    assert decoded.frame_color == "silver"
    assert decoded.backsheet_code == "T"
    assert decoded.backsheet_type == "transparent"
    assert decoded.construction_type == "bifacial"
    assert decoded.factory_code == "CRS"
    assert decoded.batch_code == "25WT"

    line = resolve_line_assignment(decoded.panel_type, rules)
    assert line.line_number == 1
    assert line.station_range == [1, 2, 3, 4]


def test_decodes_144_cell_barcode(codec):
    decoded = codec.decode("CRS26BB14400007")

    assert decoded.panel_type == "144"
    assert decoded.frame_color == "black"
    assert decoded.construction_type == "monofacial"
    assert decoded.sequence_number == 7


@pytest.mark.parametrize("raw", ["CRS25WT3600123", "CRS25BW4099999", "CRS30BB6000001", "CRS21WW7212345", "CRS25WT14400042"])
def test_decode_then_encode_reproduces_input(codec, raw):
    assert codec.encode(codec.decode(raw)) == raw


@pytest.mark.parametrize(
    "raw, code",
    [
        ("", "INVALID_FORMAT"),
        (None, "INVALID_FORMAT"),
        (12345678901234, "INVALID_FORMAT"),
        ("CRS25WT360012", "INVALID_LENGTH"),
        ("CRS25WT36001234567", "INVALID_LENGTH"),
        ("CRS25WT5000123", "INVALID_PANEL_TYPE"),
        ("CRS25WT9900123", "INVALID_PANEL_TYPE"),
        ("ABC25WT3600123", "INVALID_FORMAT"),
        ("CRS25XT3600123", "INVALID_FORMAT"),
        ("CRS25WX3600123", "INVALID_FORMAT"),
        ("CRSAAWT3600123", "INVALID_FORMAT"),
        ("CRS25WT36001A3", "INVALID_FORMAT"),
    ],
)
def test_rejects_malformed_barcodes(codec, raw, code):
    with pytest.raises(BarcodeFormatError) as exc_info:
        codec.decode(raw)

    assert exc_info.value.code == code
    assert exc_info.value.kind == "FORMAT_ERROR"


def test_never_coerces_input(codec):
    with pytest.raises(BarcodeFormatError):
        codec.decode("crs25wt3600123")
    with pytest.raises(BarcodeFormatError) as exc_info:
        codec.decode(" CRS25WT3600123 ")
    assert exc_info.value.code == "INVALID_LENGTH"


def test_rejects_trailing_newline(codec):
    # 15 characters is a legal length, so only the pattern can catch this
    with pytest.raises(BarcodeFormatError) as exc_info:
        codec.decode("CRS25WT3600123\n")
    assert exc_info.value.code == "INVALID_FORMAT"


@pytest.mark.parametrize("raw", ["CRS٢٥WT36٠٠١٢٣", "CRS25WT3600١٢٣", "CRS25WT٣٦00123"])
def test_rejects_non_ascii_digits(codec, raw):
    with pytest.raises(BarcodeFormatError) as exc_info:
        codec.decode(raw)
    assert exc_info.value.code == "INVALID_FORMAT"


def test_is_valid(codec):
    assert codec.is_valid("CRS25WT3600123")
    assert not codec.is_valid("CRS25WT3600")


def test_generate_barcode(codec):
    assert codec.generate_barcode(2025, "W", "T", "36", 123) == "CRS25WT3600123"


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"sequence": 0}, "INVALID_SEQUENCE"),
        ({"sequence": 100000}, "INVALID_SEQUENCE"),
        ({"year": 1999}, "INVALID_YEAR"),
        ({"panel_type": "50"}, "INVALID_PANEL_TYPE"),
    ],
)
def test_generate_barcode_rejects_bad_input(codec, kwargs, code):
    args = {"year": 2025, "frame_code": "W", "backsheet_code": "T", "panel_type": "36", "sequence": 1}
    args.update(kwargs)

    with pytest.raises(BarcodeFormatError) as exc_info:
        codec.generate_barcode(**args)
    assert exc_info.value.code == code


def test_generate_mo_range_is_contiguous(codec):
    barcodes = codec.generate_mo_range(2025, "B", "W", "72", start_sequence=98, count=3)

    assert barcodes == ["CRS25BW7200098", "CRS25BW7200099", "CRS25BW7200100"]


def test_generate_mo_range_rejects_zero_count(codec):
    with pytest.raises(BarcodeFormatError) as exc_info:
        codec.generate_mo_range(2025, "W", "T", "36", start_sequence=1, count=0)
    assert exc_info.value.code == "INVALID_COUNT"


def test_generate_mo_range_stops_at_sequence_limit(codec):
    with pytest.raises(BarcodeFormatError) as exc_info:
        codec.generate_mo_range(2025, "W", "T", "36", start_sequence=99999, count=2)
    assert exc_info.value.code == "INVALID_SEQUENCE"


def test_module_level_helpers(rules):
    decoded = decode_barcode("CRS25WT6000010", rules)
    assert encode_barcode(decoded, rules) == "CRS25WT6000010"


def test_valid_lengths(codec):
    assert codec.valid_lengths == [14, 15]
    assert codec.format_info()["format"] == "CRSYYFBPP#####"
