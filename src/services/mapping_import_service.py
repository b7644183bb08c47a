"""
Mapping import service.

Connects the import pipeline to the mapping registry: an uploaded file is
parsed and validated, the accepted rows become SKU records, and the records
are bulk-added to the registry.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from src.importer.import_pipeline import ImportConfig, ImportPipeline, ImportResult
from src.importer.validator import FIELD_ALIASES
from src.mapping.mapping_registry import BulkImportSummary, MappingRegistry, SkuRecord
from src.utils.config_loader import AppConfig

logger = logging.getLogger(__name__)


def find_field(row: Dict[str, Any], candidates: List[str]) -> Optional[str]:
    """Return the first non-blank value among the candidate keys."""
    for candidate in candidates:
        value = row.get(candidate)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


@dataclass
class MappingImportReport:
    """
    Combined outcome of parsing a file and adding its rows to the registry.

    Attributes:
        import_result: Parse/validation result for the file.
        summary: Registry bulk-import summary for the accepted rows.
        incomplete: Accepted rows that could not become SKU records
            (no SKU or no MSKU), one message each.
    """
    import_result: ImportResult
    summary: BulkImportSummary
    incomplete: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.import_result.success and self.summary.success and not self.incomplete

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "import": self.import_result.to_dict(),
            "mappings": self.summary.to_dict(),
            "incomplete": self.incomplete,
        }


class MappingImportService:
    """
    Service for importing mapping files into the registry.

    Handles:
    - Import configuration defaults
    - Header aliases (SKU, Master SKU, Channel, ...)
    - Marketplace detection for rows without a marketplace
    - Bulk add to the registry
    """

    def __init__(
        self,
        registry: MappingRegistry,
        app_config: Optional[AppConfig] = None,
        pipeline: Optional[ImportPipeline] = None,
    ) -> None:
        """
        Initialize the import service.

        Args:
            registry: Registry that receives the imported mappings.
            app_config: Application configuration.
            pipeline: Import pipeline (shares the registry's catalog if omitted).
        """
        self.registry = registry
        self.app_config = app_config or AppConfig()
        self.pipeline = pipeline or ImportPipeline(catalog=registry.catalog)

    def build_config(self, **overrides: Any) -> ImportConfig:
        """Build a run configuration from the app defaults plus overrides."""
        return ImportConfig.from_app_config(self.app_config, **overrides)

    def rows_to_records(self, rows: List[Dict[str, Any]]) -> Tuple[List[SkuRecord], List[str]]:
        """
        Convert accepted rows to SKU records.

        Rows without a marketplace get the catalog's detected marketplace,
        or stay blank when no format matches. The MSKU is taken from the
        row as uploaded; no MSKU is ever inferred.

        Returns:
            Tuple of (records, messages for rows missing a SKU or MSKU).
        """
        records: List[SkuRecord] = []
        incomplete: List[str] = []

        for position, row in enumerate(rows, start=1):
            sku = find_field(row, FIELD_ALIASES["sku"])
            msku = find_field(row, FIELD_ALIASES["msku"])
            if sku is None or msku is None:
                missing = "sku" if sku is None else "msku"
                incomplete.append(f"Record {position}: Missing required field: {missing}")
                continue

            marketplace = find_field(row, FIELD_ALIASES["marketplace"])
            if marketplace is None:
                marketplace = self.registry.detect_marketplace(sku) or ""
                if marketplace:
                    logger.debug(f"Detected marketplace {marketplace} for SKU {sku}")

            records.append(SkuRecord(sku=sku, msku=msku, marketplace=marketplace))

        return records, incomplete

    def apply_result(self, import_result: ImportResult) -> MappingImportReport:
        """Add the accepted rows of an import result to the registry."""
        records, incomplete = self.rows_to_records(import_result.data)
        if incomplete:
            logger.warning(f"{len(incomplete)} accepted rows lack a SKU or MSKU")

        outcome = self.registry.import_mappings(records)
        return MappingImportReport(
            import_result=import_result,
            summary=outcome.data,
            incomplete=incomplete,
        )

    def import_bytes(
        self,
        content: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        import_config: Optional[ImportConfig] = None,
    ) -> MappingImportReport:
        """
        Parse an uploaded payload and add its mappings to the registry.

        Raises:
            StructuralError: If the payload is malformed as a whole.
        """
        import_config = import_config or self.build_config()
        import_result = self.pipeline.run_bytes(
            content, import_config, filename=filename, content_type=content_type
        )
        return self.apply_result(import_result)

    async def import_upload(
        self,
        source: Any,
        import_config: Optional[ImportConfig] = None,
    ) -> MappingImportReport:
        """
        Read an uploaded file and add its mappings to the registry.

        Raises:
            FileReadError: If the upload cannot be read.
            StructuralError: If the payload is malformed as a whole.
        """
        import_config = import_config or self.build_config()
        import_result = await self.pipeline.run_source(source, import_config)
        return self.apply_result(import_result)
