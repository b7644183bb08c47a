"""
Mapping export module.

Writes registry snapshots to CSV, Excel or JSON files.
"""

from src.exporter.mapping_exporter import (
    MappingExporter,
    records_to_csv,
    records_to_dataframe,
)

__all__ = [
    "MappingExporter",
    "records_to_csv",
    "records_to_dataframe",
]
