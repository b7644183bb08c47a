"""
Import pipeline for uploaded mapping files.

Turns uploaded delimited text or a JSON array into field-named row records,
validating each row on the way. A bad row never aborts the batch: it is
recorded in the result's error list and the pipeline moves on. Only a
malformed input as a whole (or a failed read) is fatal for the invocation.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from src.catalog.marketplace_formats import MarketplaceFormatCatalog
from src.exceptions import (
    ConfigurationError,
    FileReadError,
    RowParseError,
    StructuralError,
)
from src.importer.record_parser import QUOTE, RecordParser
from src.importer.validator import ImportValidator
from src.utils.config_loader import DEFAULT_SKU_PATTERN, AppConfig
from src.utils.logging_config import import_context


logger = logging.getLogger(__name__)

DELIMITED = "delimited"
JSON = "json"

PARSE_ERROR_PREFIX = "Error parsing row: "
INVALID_OBJECT_MESSAGE = "Invalid row format, expected object"
NOT_AN_ARRAY_MESSAGE = "JSON data must be an array of objects"
BOM = "\ufeff"

CONTENT_TYPE_FAMILIES = {
    "text/csv": DELIMITED,
    "application/csv": DELIMITED,
    "text/tab-separated-values": DELIMITED,
    "application/json": JSON,
    "text/json": JSON,
}

EXTENSION_FAMILIES = {
    ".csv": DELIMITED,
    ".txt": DELIMITED,
    ".tsv": DELIMITED,
    ".json": JSON,
}

# Binary spreadsheet containers are not decoded
SPREADSHEET_EXTENSIONS = {".xls", ".xlsx", ".xlsm", ".ods"}
SPREADSHEET_CONTENT_TYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.oasis.opendocument.spreadsheet",
}


@dataclass(frozen=True)
class ImportConfig:
    """
    Settings for one import run.

    Frozen: a run never sees its configuration change. Use with_overrides()
    to derive a modified copy.

    auto_match_sku is carried for callers but has no matching algorithm
    behind it; rows keep whatever msku they were uploaded with.
    """

    encoding: str = "utf-8"
    field_delimiter: str = ","
    has_header_row: bool = True
    trim_whitespace: bool = True
    skip_empty_rows: bool = True
    validate_sku: bool = True
    auto_match_sku: bool = True
    strict_quotes: bool = False
    required_fields: Tuple[str, ...] = ()
    sku_pattern: str = DEFAULT_SKU_PATTERN

    def __post_init__(self) -> None:
        if not isinstance(self.field_delimiter, str) or len(self.field_delimiter) != 1:
            raise ConfigurationError(
                f"Field delimiter must be a single character, got {self.field_delimiter!r}"
            )
        if self.field_delimiter == QUOTE:
            raise ConfigurationError("Field delimiter cannot be the quote character")
        object.__setattr__(self, "required_fields", tuple(self.required_fields))

    @classmethod
    def from_app_config(cls, config: AppConfig, **overrides: Any) -> "ImportConfig":
        """Build a run configuration from the application defaults."""
        defaults = config.import_defaults
        values = dict(
            encoding=defaults.encoding,
            field_delimiter=defaults.field_delimiter,
            has_header_row=defaults.has_header_row,
            trim_whitespace=defaults.trim_whitespace,
            skip_empty_rows=defaults.skip_empty_rows,
            validate_sku=defaults.validate_sku,
            auto_match_sku=defaults.auto_match_sku,
            strict_quotes=defaults.strict_quotes,
            required_fields=tuple(defaults.required_fields),
            sku_pattern=defaults.sku_pattern,
        )
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "ImportConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


@dataclass
class RowError:
    """
    A row that was not accepted.

    Attributes:
        row: 1-based row number within the data region (header excluded).
        message: What went wrong.
        data: The offending row record, when one could be built.
    """
    row: int
    message: str
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"row": self.row, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass
class ImportResult:
    """
    Outcome of one import run.

    Every data row ends up in exactly one place: data (accepted), errors
    (invalid), or empty_rows (skipped because blank). skipped_rows counts
    both blank and invalid rows.
    """
    total_rows: int = 0
    processed_rows: int = 0
    skipped_rows: int = 0
    errors: List[RowError] = field(default_factory=list)
    data: List[Dict[str, Any]] = field(default_factory=list)
    empty_rows: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "skipped_rows": self.skipped_rows,
            "empty_rows": self.empty_rows,
            "errors": [e.to_dict() for e in self.errors],
            "data": self.data,
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Accepted rows as a DataFrame, for previews."""
        return pd.DataFrame(self.data)


def _media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def detect_syntax_family(filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
    """
    Guess whether an upload is delimited text or a JSON array.

    An explicit content type wins over the file extension. Anything that
    cannot be classified is treated as delimited text.

    Raises:
        StructuralError: For binary spreadsheet files.
    """
    media_type = _media_type(content_type)
    suffix = PurePath(filename).suffix.lower() if filename else ""

    if media_type in SPREADSHEET_CONTENT_TYPES or suffix in SPREADSHEET_EXTENSIONS:
        raise StructuralError(
            "Spreadsheet files are not supported; save the sheet as CSV or JSON",
            details={"filename": filename, "content_type": content_type},
        )

    if media_type in CONTENT_TYPE_FAMILIES:
        return CONTENT_TYPE_FAMILIES[media_type]
    return EXTENSION_FAMILIES.get(suffix, DELIMITED)


def is_tab_separated(filename: Optional[str] = None, content_type: Optional[str] = None) -> bool:
    """Check whether an upload is declared or named as tab-separated."""
    if _media_type(content_type) == "text/tab-separated-values":
        return True
    return bool(filename) and PurePath(filename).suffix.lower() == ".tsv"


class ImportPipeline:
    """
    Runs the parser and validator over an uploaded payload.

    Attributes:
        catalog: Marketplace formats used for per-row SKU checks.
    """

    def __init__(self, catalog: Optional[MarketplaceFormatCatalog] = None) -> None:
        self.catalog = catalog if catalog is not None else MarketplaceFormatCatalog()

    def run(self, payload: Any, config: Optional[ImportConfig] = None) -> ImportResult:
        """
        Import raw delimited text or an already-parsed JSON array.

        Args:
            payload: Text (str) or a list of row objects.
            config: Run configuration (defaults if not provided).

        Returns:
            ImportResult: Aggregate result.

        Raises:
            StructuralError: If the payload is neither text nor a list.
        """
        config = config or ImportConfig()
        if isinstance(payload, str):
            return self.run_text(payload, config)
        if isinstance(payload, list):
            return self.run_records(payload, config)
        raise StructuralError(NOT_AN_ARRAY_MESSAGE, details={"type": type(payload).__name__})

    def run_text(self, text: str, config: Optional[ImportConfig] = None) -> ImportResult:
        """
        Import delimited text.

        Args:
            text: Decoded file content.
            config: Run configuration (defaults if not provided).

        Returns:
            ImportResult: Aggregate result.
        """
        config = config or ImportConfig()
        parser = RecordParser.from_config(config)
        validator = ImportValidator.from_config(config, catalog=self.catalog)

        lines = [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]

        headers: List[str] = []
        start = 0
        if config.has_header_row:
            headers = parser.parse_line(lines[0])
            start = 1
            logger.debug(f"Header columns: {headers}")

        result = ImportResult(total_rows=len(lines) - start)

        for row_number, line in enumerate(lines[start:], start=1):
            if config.skip_empty_rows and not line.strip():
                result.empty_rows += 1
                result.skipped_rows += 1
                continue

            try:
                parsed = parser.parse_row(line, line_number=start + row_number)
            except RowParseError as e:
                logger.debug(f"Row {row_number} could not be parsed: {e}")
                result.errors.append(RowError(row=row_number, message=f"{PARSE_ERROR_PREFIX}{e}"))
                result.skipped_rows += 1
                continue

            if config.has_header_row:
                # Ragged rows: missing trailing fields become "", extras are dropped
                fields = parsed.fields
                record = {
                    header: fields[i] if i < len(fields) else ""
                    for i, header in enumerate(headers)
                }
            else:
                record = {f"column{i}": value for i, value in enumerate(parsed.fields)}

            message = validator.validate(record, check_sku=config.validate_sku)
            if message is not None:
                result.errors.append(RowError(row=row_number, message=message, data=record))
                result.skipped_rows += 1
                continue

            result.data.append(record)

        result.processed_rows = len(result.data)
        self._log_summary(result)
        return result

    def run_records(self, items: List[Any], config: Optional[ImportConfig] = None) -> ImportResult:
        """
        Import an already-parsed array of row objects.

        Args:
            items: Parsed JSON array.
            config: Run configuration (defaults if not provided).

        Returns:
            ImportResult: Aggregate result.

        Raises:
            StructuralError: If items is not a list.
        """
        if not isinstance(items, list):
            raise StructuralError(NOT_AN_ARRAY_MESSAGE, details={"type": type(items).__name__})

        config = config or ImportConfig()
        validator = ImportValidator.from_config(config, catalog=self.catalog)
        result = ImportResult(total_rows=len(items))

        for row_number, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                result.errors.append(RowError(row=row_number, message=INVALID_OBJECT_MESSAGE))
                result.skipped_rows += 1
                continue

            message = validator.validate(item, check_sku=config.validate_sku)
            if message is not None:
                result.errors.append(RowError(row=row_number, message=message, data=item))
                result.skipped_rows += 1
                continue

            result.data.append(item)

        result.processed_rows = len(result.data)
        self._log_summary(result)
        return result

    def run_json(self, text: str, config: Optional[ImportConfig] = None) -> ImportResult:
        """
        Import JSON text holding an array of row objects.

        Raises:
            StructuralError: If the text is not valid JSON or its root is
                not an array.
        """
        try:
            items = json.loads(text)
        except json.JSONDecodeError as e:
            raise StructuralError(
                f"Invalid JSON: {e.msg}",
                details={"line": e.lineno, "column": e.colno},
            )
        return self.run_records(items, config)

    def run_bytes(
        self,
        content: Union[bytes, str],
        config: Optional[ImportConfig] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> ImportResult:
        """
        Decode an uploaded payload and import it.

        The syntax family comes from the content type or file extension.
        Tab-separated uploads switch the delimiter to a tab unless the
        configuration already sets a non-comma delimiter.

        Raises:
            StructuralError: If the bytes cannot be decoded or the payload is
                malformed as a whole.
            ConfigurationError: If the configured encoding is unknown.
        """
        config = config or ImportConfig()
        family = detect_syntax_family(filename, content_type)

        if isinstance(content, str):
            text = content
        else:
            try:
                text = content.decode(config.encoding)
            except LookupError:
                raise ConfigurationError(f"Unknown encoding: {config.encoding}")
            except UnicodeDecodeError as e:
                raise StructuralError(
                    f"File is not valid {config.encoding} text: {e.reason}",
                    details={"filename": filename, "position": e.start},
                )

        if text.startswith(BOM):
            text = text[1:]

        if isinstance(content, bytes):
            size = f"{len(content)} bytes"
        else:
            size = f"{len(text)} characters"

        with import_context(filename=filename or "<upload>", family=family):
            logger.info(f"Importing {filename or 'upload'} ({family}, {size})")
            if family == JSON:
                return self.run_json(text, config)

            if is_tab_separated(filename, content_type) and config.field_delimiter == ",":
                config = config.with_overrides(field_delimiter="\t")
            return self.run_text(text, config)

    async def run_source(
        self,
        source: Any,
        config: Optional[ImportConfig] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> ImportResult:
        """
        Read an uploaded file and import it.

        Awaits the byte source, then parses synchronously. A read failure
        is fatal for the invocation; there is no partial-read recovery.

        Args:
            source: Object with an async read() returning bytes or str
                (e.g. a FastAPI UploadFile).
            config: Run configuration (defaults if not provided).
            filename: Name used for syntax-family detection. Defaults to
                source.filename when present.
            content_type: Declared content type. Defaults to
                source.content_type when present.

        Raises:
            FileReadError: If reading the source fails.
        """
        filename = filename or getattr(source, "filename", None)
        content_type = content_type or getattr(source, "content_type", None)

        try:
            content = await source.read()
        except Exception as e:
            logger.error(f"Failed to read upload {filename}: {e}")
            raise FileReadError(f"Error reading file: {e}", filename=filename) from e

        return self.run_bytes(content, config, filename=filename, content_type=content_type)

    @staticmethod
    def _log_summary(result: ImportResult) -> None:
        logger.info(
            f"Import finished: {result.processed_rows}/{result.total_rows} rows accepted, "
            f"{result.skipped_rows} skipped, {len(result.errors)} errors",
            extra={
                "total_rows": result.total_rows,
                "processed_rows": result.processed_rows,
                "skipped_rows": result.skipped_rows,
                "error_count": len(result.errors),
            },
        )
        if result.errors:
            logger.warning(f"First import error: row {result.errors[0].row}: {result.errors[0].message}")
