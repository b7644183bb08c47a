"""
CLI entry point for the SKU Mapper.

Imports mapping files into the persisted registry, exports snapshots, and
detects marketplaces from SKU formats.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from src.catalog.marketplace_formats import build_catalog
from src.exceptions import AppException
from src.exporter.mapping_exporter import MappingExporter
from src.importer.import_pipeline import ImportResult
from src.mapping.mapping_registry import MappingRegistry
from src.services.mapping_import_service import MappingImportService
from src.storage.mapping_store import MappingStore
from src.utils.config_loader import AppConfig, load_config, load_env
from src.utils.logging_config import setup_logging


logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(
        description="SKU Mapper - map marketplace SKUs to master SKUs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m src.main import data/input/mappings.csv
    python -m src.main import listings.tsv --no-header --dry-run
    python -m src.main export data/export/mappings.xlsx
    python -m src.main detect ABC12345
        """,
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="Path to configuration file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import a CSV/TSV/JSON mapping file")
    import_parser.add_argument("file", type=Path, help="File to import")
    import_parser.add_argument("--delimiter", "-d", help="Field delimiter (use '\\t' for tab)")
    import_parser.add_argument("--no-header", action="store_true", help="First line is data, not a header")
    import_parser.add_argument("--no-trim", action="store_true", help="Keep whitespace around fields")
    import_parser.add_argument("--keep-empty", action="store_true", help="Do not skip empty rows")
    import_parser.add_argument("--no-validate", action="store_true", help="Skip SKU format validation")
    import_parser.add_argument("--strict-quotes", action="store_true", help="Reject rows with unterminated quotes")
    import_parser.add_argument("--dry-run", action="store_true", help="Parse and validate only")
    import_parser.add_argument("--export", "-o", type=Path, help="Export all mappings here after importing")

    export_parser = subparsers.add_parser("export", help="Export all stored mappings")
    export_parser.add_argument("output", type=Path, nargs="?", help="Output file (.csv, .xlsx or .json)")

    detect_parser = subparsers.add_parser("detect", help="Detect the marketplace of a SKU")
    detect_parser.add_argument("sku", help="SKU to check")

    return parser.parse_args(argv)


def load_registry(config: AppConfig) -> tuple[MappingRegistry, MappingStore]:
    """Create the registry, fill it from the store and keep the store in sync."""
    registry = MappingRegistry(catalog=build_catalog(config))
    store = MappingStore(config.paths.mapping_store_file)
    store.load_into(registry)
    store.attach(registry)
    return registry, store


def print_import_result(result: ImportResult) -> None:
    """Print the parse/validation summary."""
    print("\n" + "=" * 60)
    print("IMPORT SUMMARY")
    print("=" * 60)
    print(f"  Total rows:     {result.total_rows}")
    print(f"  Accepted rows:  {result.processed_rows}")
    print(f"  Skipped rows:   {result.skipped_rows} ({result.empty_rows} empty)")
    print(f"  Errors:         {len(result.errors)}")
    for error in result.errors[:20]:
        print(f"    Row {error.row}: {error.message}")
    if len(result.errors) > 20:
        print(f"    ... and {len(result.errors) - 20} more")


def run_import(args: argparse.Namespace, config: AppConfig) -> int:
    """
    Import a mapping file.

    Returns:
        int: Exit code (0 when every row was imported, 2 on partial success).
    """
    if not args.file.exists():
        logger.error(f"Input file not found: {args.file}")
        print(f"\n✗ Error: Input file not found: {args.file}")
        return 1

    overrides = {}
    if args.delimiter:
        overrides["field_delimiter"] = "\t" if args.delimiter == "\\t" else args.delimiter
    if args.no_header:
        overrides["has_header_row"] = False
    if args.no_trim:
        overrides["trim_whitespace"] = False
    if args.keep_empty:
        overrides["skip_empty_rows"] = False
    if args.no_validate:
        overrides["validate_sku"] = False
    if args.strict_quotes:
        overrides["strict_quotes"] = True

    content = args.file.read_bytes()

    if args.dry_run:
        service = MappingImportService(MappingRegistry(catalog=build_catalog(config)), app_config=config)
        result = service.pipeline.run_bytes(
            content, service.build_config(**overrides), filename=args.file.name
        )
        print_import_result(result)
        print("\n[DRY RUN] - No mappings were stored")
        print("=" * 60 + "\n")
        return 0 if result.success else 2

    registry, _ = load_registry(config)
    service = MappingImportService(registry, app_config=config)
    report = service.import_bytes(
        content, filename=args.file.name, import_config=service.build_config(**overrides)
    )

    print_import_result(report.import_result)
    print(f"\n  Mappings imported: {report.summary.imported}/{report.summary.total}")
    for message in report.incomplete + report.summary.errors:
        print(f"    {message}")
    print(f"  Registry size:     {len(registry)}")

    if args.export:
        path = MappingExporter(config).export(registry.export_mappings(), args.export)
        print(f"\n✓ Mappings exported: {path}")

    print("=" * 60 + "\n")
    return 0 if report.success else 2


def run_export(args: argparse.Namespace, config: AppConfig) -> int:
    """Export all stored mappings."""
    registry, _ = load_registry(config)
    path = MappingExporter(config).export(registry.export_mappings(), args.output)
    print(f"\n✓ Exported {len(registry)} mappings to {path}\n")
    return 0


def run_detect(args: argparse.Namespace, config: AppConfig) -> int:
    """Print the marketplace a SKU's format belongs to."""
    marketplace = build_catalog(config).detect(args.sku)
    print(marketplace or "(no matching marketplace)")
    return 0 if marketplace else 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        int: Exit code.
    """
    load_env()
    args = parse_args(argv)
    config = load_config(args.config)

    log_level = "DEBUG" if args.verbose else config.logging.level
    setup_logging(level=log_level, log_format=config.logging.format, log_file=config.logging.file)

    commands = {
        "import": run_import,
        "export": run_export,
        "detect": run_detect,
    }

    try:
        return commands[args.command](args, config)
    except AppException as e:
        logger.error(f"{e.error_code}: {e.message}")
        print(f"\n✗ Error: {e.message}")
        return 1
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
