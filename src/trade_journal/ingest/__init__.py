"""Raw execution data -> canonical fills."""

from .csv_import import CsvImporter, ImportReport, SkippedRow
from .normalizer import CSV_LAYOUT_V1, normalize_api_fill, normalize_csv_row

__all__ = [
    "CSV_LAYOUT_V1",
    "CsvImporter",
    "ImportReport",
    "SkippedRow",
    "normalize_api_fill",
    "normalize_csv_row",
]
