"""
Mapping file import module.

Parses uploaded delimited text and JSON arrays into validated row records.
"""

from src.importer.import_pipeline import (
    ImportConfig,
    ImportPipeline,
    ImportResult,
    RowError,
    detect_syntax_family,
)
from src.importer.record_parser import ParsedRow, RecordParser
from src.importer.validator import ImportValidator

__all__ = [
    "ImportConfig",
    "ImportPipeline",
    "ImportResult",
    "ImportValidator",
    "ParsedRow",
    "RecordParser",
    "RowError",
    "detect_syntax_family",
]
