"""
Logging setup for the SKU Mapper.

Console output (plus an optional rotating file) in text or JSON. Log records
emitted while an import runs carry that run's file name and syntax family
through import_context(); the JSON format writes them as top-level keys, the
text format appends them as key=value pairs.
"""

import contextvars
import logging
import logging.handlers
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator

from pythonjsonlogger import jsonlogger


TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

RUN_FIELDS_ATTR = "run_fields"

# Third-party loggers held at WARNING
QUIET_LOGGERS = ("multipart", "python_multipart", "uvicorn.access", "httpx")

# Marks handlers installed by setup_logging, so a second call replaces only those
_OWNED_HANDLER_ATTR = "_sku_mapper_handler"

# Context variables follow each asyncio task and thread, so concurrent
# imports never see each other's fields.
_run_fields: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("run_fields", default={})


@contextmanager
def import_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """
    Tag log records emitted inside the block with import-run fields.

    Nested blocks add to (and may override) the enclosing block's fields.
    The previous fields are restored on exit.

    Yields:
        The merged fields now in effect.
    """
    merged = {**_run_fields.get(), **fields}
    token = _run_fields.set(merged)
    try:
        yield merged
    finally:
        _run_fields.reset(token)


def current_run_fields() -> Dict[str, Any]:
    """Copy of the fields set by the innermost active import_context()."""
    return dict(_run_fields.get())


class RunContextFilter(logging.Filter):
    """Attach the active import-run fields to every record a handler sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        setattr(record, RUN_FIELDS_ATTR, current_run_fields())
        return True


class RunTextFormatter(logging.Formatter):
    """Plain text lines with run fields appended in brackets."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, RUN_FIELDS_ATTR, None)
        if fields:
            line += " [" + " ".join(f"{key}={value}" for key, value in fields.items()) + "]"
        return line


class RunJsonFormatter(jsonlogger.JsonFormatter):
    """
    One JSON object per record.

    Run fields are flattened into the object. Values passed with
    extra={...} (such as the row counts of an import summary) are added by
    python-json-logger itself.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["location"] = f"{record.module}:{record.lineno}"

        fields = log_record.pop(RUN_FIELDS_ATTR, None) or getattr(record, RUN_FIELDS_ATTR, None)
        if fields:
            log_record.update(fields)


def build_formatter(log_format: str = "text") -> logging.Formatter:
    """Formatter for "json" or "text" output."""
    if log_format.lower() == "json":
        return RunJsonFormatter("%(message)s")
    return RunTextFormatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def _install(root_logger: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    handler.addFilter(RunContextFilter())
    setattr(handler, _OWNED_HANDLER_ATTR, True)
    root_logger.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Configure application logging.

    Safe to call more than once: handlers from an earlier call are replaced,
    handlers installed by anything else (a server, a test harness) are left
    alone.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "text" for human-readable, "json" for structured.
        log_file: Optional file path for log output.
        max_bytes: Max log file size before rotation.
        backup_count: Number of backup files to keep.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root_logger.handlers):
        if getattr(handler, _OWNED_HANDLER_ATTR, False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = build_formatter(log_format)
    _install(root_logger, logging.StreamHandler(sys.stdout), formatter)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _install(
            root_logger,
            logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            ),
            formatter,
        )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(f"Logging configured: level={level}, format={log_format}")
