"""
Mapping exporter module.

Writes registry snapshots to CSV, Excel or JSON files. Exported CSV and
JSON files use the same column names the importer reads, so an export can
be uploaded again as-is.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from src.exceptions import ValidationError
from src.mapping.mapping_registry import SkuRecord
from src.utils.config_loader import AppConfig


logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ["sku", "msku", "marketplace", "last_updated"]
SUPPORTED_FORMATS = ("csv", "xlsx", "json")


def records_to_dataframe(records: Iterable[SkuRecord]) -> pd.DataFrame:
    """
    Convert SKU records to a DataFrame with the export columns.

    last_updated is rendered as an ISO-8601 string.
    """
    rows = [record.to_dict() for record in records]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def records_to_csv(records: Iterable[SkuRecord]) -> str:
    """Render SKU records as CSV text."""
    return records_to_dataframe(records).to_csv(index=False)


class MappingExporter:
    """
    Exporter for SKU mapping snapshots.

    Attributes:
        config: Application configuration.
        output_dir: Directory for generated files.
    """

    def __init__(self, config: Optional[AppConfig] = None, output_dir: Optional[Path] = None) -> None:
        """
        Initialize the exporter.

        Args:
            config: Application configuration.
            output_dir: Directory for output files. Uses config default if not provided.
        """
        self.config = config or AppConfig()
        self.output_dir = Path(output_dir) if output_dir else Path(self.config.paths.export_dir)

    def generate_filename(self, file_format: str = "csv", prefix: str = "sku_mappings") -> str:
        """
        Generate a timestamped filename for the export.

        Args:
            file_format: File extension without the dot.
            prefix: Filename prefix.

        Returns:
            str: Filename with timestamp.
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{prefix}_{timestamp}.{file_format}"

    def export(
        self,
        records: List[SkuRecord],
        output_path: Optional[Path] = None,
        file_format: Optional[str] = None,
    ) -> Path:
        """
        Write records to a file.

        The format comes from file_format, else from output_path's
        extension, else CSV.

        Args:
            records: Records to export (typically registry.export_mappings()).
            output_path: Full path for output file. Auto-generated if not provided.
            file_format: "csv", "xlsx" or "json".

        Returns:
            Path: Path to the created file.

        Raises:
            ValidationError: If the format is not supported.
        """
        if file_format is None:
            file_format = Path(output_path).suffix.lstrip(".").lower() if output_path else "csv"
        file_format = file_format.lower()

        if file_format not in SUPPORTED_FORMATS:
            raise ValidationError(
                f"Unsupported export format: {file_format}",
                details={"supported": list(SUPPORTED_FORMATS)},
            )

        if output_path is None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            output_path = self.output_dir / self.generate_filename(file_format)
        else:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Exporting {len(records)} mappings to {output_path}")

        if file_format == "json":
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in records], f, indent=2)
        elif file_format == "xlsx":
            self._write_excel(records, output_path)
        else:
            records_to_dataframe(records).to_csv(output_path, index=False)

        return output_path

    def _write_excel(self, records: List[SkuRecord], output_path: Path) -> None:
        df = records_to_dataframe(records)

        summary_rows = [{"Metric": k, "Value": str(v)} for k, v in self.build_summary(records).items()]
        summary_df = pd.DataFrame(summary_rows)

        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Mappings", index=False)
            summary_df.to_excel(writer, sheet_name="Summary", index=False)

    @staticmethod
    def build_summary(records: List[SkuRecord]) -> Dict[str, Any]:
        """Summary statistics written alongside Excel exports."""
        df = records_to_dataframe(records)
        summary: Dict[str, Any] = {
            "Exported At": datetime.now().isoformat(timespec="seconds"),
            "Total SKUs": len(df),
            "Distinct MSKUs": int(df["msku"].nunique()) if not df.empty else 0,
        }
        if not df.empty:
            counts = df["marketplace"].replace("", "Unknown").value_counts()
            for marketplace, count in counts.items():
                summary[f"SKUs ({marketplace})"] = int(count)
        return summary
