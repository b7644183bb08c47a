"""
SKU to MSKU mapping module.

Holds the mapping registry and its record, result and notification types.
"""

from src.mapping.mapping_registry import (
    BulkImportSummary,
    MappingEvent,
    MappingRegistry,
    MappingResult,
    RegistryErrorCode,
    SkuRecord,
)

__all__ = [
    "BulkImportSummary",
    "MappingEvent",
    "MappingRegistry",
    "MappingResult",
    "RegistryErrorCode",
    "SkuRecord",
]
