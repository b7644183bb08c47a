"""
Configuration loader module.

Loads application configuration from YAML files and environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


DEFAULT_SKU_PATTERN = r"^[A-Za-z0-9\-_]+$"


@dataclass
class PathsConfig:
    """File path configuration."""

    data_dir: str = "data"
    export_dir: str = "data/export"
    mapping_store_file: str = "data/mappings/mappings.json"
    logs_dir: str = "logs"


@dataclass
class ImportDefaultsConfig:
    """Default settings for each import run."""

    encoding: str = "utf-8"
    field_delimiter: str = ","
    has_header_row: bool = True
    trim_whitespace: bool = True
    skip_empty_rows: bool = True
    validate_sku: bool = True
    auto_match_sku: bool = True
    strict_quotes: bool = False
    required_fields: list[str] = field(default_factory=list)
    sku_pattern: str = DEFAULT_SKU_PATTERN


@dataclass
class CatalogConfig:
    """Marketplace SKU format configuration."""

    # Appended after the built-in formats, in file order
    extra_formats: dict[str, str] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    file: str | None = None


@dataclass
class WebappConfig:
    """Web application configuration."""

    title: str = "SKU Mapper"
    max_upload_bytes: int = 10 * 1024 * 1024


@dataclass
class AppConfig:
    """
    Main application configuration.

    Aggregates all configuration sections into a single object.
    """

    paths: PathsConfig = field(default_factory=PathsConfig)
    import_defaults: ImportDefaultsConfig = field(default_factory=ImportDefaultsConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    webapp: WebappConfig = field(default_factory=WebappConfig)


def load_env(env_file: Path = Path(".env")) -> None:
    """
    Load environment variables from .env file.

    Args:
        env_file: Path to .env file.
    """
    if env_file.exists():
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from: {env_file}")
    else:
        logger.debug(f"No .env file found at: {env_file}")


def load_config(config_file: Path | None = None) -> AppConfig:
    """
    Load application configuration from YAML file.

    The path defaults to $SKU_MAPPER_CONFIG, then config/config.yaml.

    Args:
        config_file: Path to configuration YAML file.

    Returns:
        AppConfig: Loaded configuration object.

    Raises:
        yaml.YAMLError: If config file is invalid.
    """
    if config_file is None:
        config_file = Path(get_env_var("SKU_MAPPER_CONFIG", "config/config.yaml"))
    config_file = Path(config_file)

    if not config_file.exists():
        logger.warning(f"Config file not found: {config_file}. Using defaults.")
        return AppConfig()

    with open(config_file, encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        return AppConfig()

    config = _parse_config(raw_config)
    logger.info(f"Loaded configuration from: {config_file}")
    return config


def _parse_config(raw: dict[str, Any]) -> AppConfig:
    """
    Parse raw YAML dict into AppConfig dataclass.

    Args:
        raw: Raw dictionary from YAML file.

    Returns:
        AppConfig: Parsed configuration object.
    """
    # Parse paths
    paths_raw = raw.get("paths") or {}
    paths = PathsConfig(
        data_dir=paths_raw.get("data_dir", "data"),
        export_dir=paths_raw.get("export_dir", "data/export"),
        mapping_store_file=paths_raw.get("mapping_store_file", "data/mappings/mappings.json"),
        logs_dir=paths_raw.get("logs_dir", "logs"),
    )

    # Parse import defaults
    import_raw = raw.get("import") or {}
    import_defaults = ImportDefaultsConfig(
        encoding=import_raw.get("encoding", "utf-8"),
        field_delimiter=import_raw.get("delimiter", ","),
        has_header_row=import_raw.get("has_header_row", True),
        trim_whitespace=import_raw.get("trim_whitespace", True),
        skip_empty_rows=import_raw.get("skip_empty_rows", True),
        validate_sku=import_raw.get("validate_sku", True),
        auto_match_sku=import_raw.get("auto_match_sku", True),
        strict_quotes=import_raw.get("strict_quotes", False),
        required_fields=list(import_raw.get("required_fields") or []),
        sku_pattern=import_raw.get("sku_pattern", DEFAULT_SKU_PATTERN),
    )

    # Parse catalog config
    catalog_raw = raw.get("catalog") or {}
    catalog = CatalogConfig(
        extra_formats=dict(catalog_raw.get("extra_formats") or {}),
    )

    # Parse logging config
    logging_raw = raw.get("logging") or {}
    logging_config = LoggingConfig(
        level=logging_raw.get("level", "INFO"),
        format=logging_raw.get("format", "text"),
        file=logging_raw.get("file"),
    )

    # Parse webapp config
    webapp_raw = raw.get("webapp") or {}
    webapp = WebappConfig(
        title=webapp_raw.get("title", "SKU Mapper"),
        max_upload_bytes=webapp_raw.get("max_upload_bytes", 10 * 1024 * 1024),
    )

    return AppConfig(
        paths=paths,
        import_defaults=import_defaults,
        catalog=catalog,
        logging=logging_config,
        webapp=webapp,
    )


def get_env_var(key: str, default: str | None = None) -> str | None:
    """
    Get an environment variable with optional default.

    Args:
        key: Environment variable name.
        default: Default value if not set.

    Returns:
        Environment variable value or default.
    """
    return os.environ.get(key, default)
