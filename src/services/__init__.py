"""
Services layer for the SKU Mapper.

Contains business logic extracted from routes for better testability.
"""

from src.services.mapping_import_service import MappingImportReport, MappingImportService

__all__ = ["MappingImportReport", "MappingImportService"]
