"""Solar panel production tracking: barcodes, station inspections, manufacturing orders."""

__version__ = "1.0.0"
