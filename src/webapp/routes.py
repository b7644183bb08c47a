"""
FastAPI routes for the SKU Mapper web application.

Handles:
- Mapping file upload and import
- Mapping CRUD, lookup and search
- Mapping export
- Marketplace format catalog and detection
"""

import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response

from src.catalog.marketplace_formats import build_catalog
from src.exceptions import FileValidationError, MappingNotFoundError, ValidationError
from src.exporter.mapping_exporter import records_to_csv
from src.mapping.mapping_registry import MappingRegistry
from src.services.mapping_import_service import MappingImportService
from src.utils.config_loader import AppConfig, load_config, load_env
from src.webapp.schemas import CatalogResponse, DetectResponse, MappingCreate, MappingUpdate


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Dependency Injection
# ============================================================================

@lru_cache()
def get_app_config() -> AppConfig:
    """
    Get application config (cached).

    Clear cache with get_app_config.cache_clear() if config changes.
    """
    load_env()
    return load_config()


@lru_cache()
def get_registry() -> MappingRegistry:
    """
    Get the process-wide mapping registry (cached).

    Mutations are serialized by running them in the event loop thread.
    """
    return MappingRegistry(catalog=build_catalog(get_app_config()))


def get_import_service(
    registry: MappingRegistry = Depends(get_registry),
    config: AppConfig = Depends(get_app_config),
) -> MappingImportService:
    """Build the import service for a request."""
    return MappingImportService(registry, app_config=config)


# ============================================================================
# Import
# ============================================================================

@router.post("/import")
async def import_file(
    file: UploadFile = File(...),
    delimiter: Optional[str] = Form(None),
    has_header_row: Optional[bool] = Form(None),
    trim_whitespace: Optional[bool] = Form(None),
    skip_empty_rows: Optional[bool] = Form(None),
    validate_sku: Optional[bool] = Form(None),
    strict_quotes: Optional[bool] = Form(None),
    dry_run: bool = Form(False),
    service: MappingImportService = Depends(get_import_service),
    config: AppConfig = Depends(get_app_config),
) -> Dict[str, Any]:
    """
    Import an uploaded CSV/TSV/JSON mapping file.

    With dry_run the file is parsed and validated only; nothing is added to
    the registry.
    """
    if file.size is not None and file.size > config.webapp.max_upload_bytes:
        raise FileValidationError(
            f"File exceeds the {config.webapp.max_upload_bytes} byte upload limit",
            filename=file.filename,
        )

    overrides = {
        name: value for name, value in {
            "field_delimiter": delimiter,
            "has_header_row": has_header_row,
            "trim_whitespace": trim_whitespace,
            "skip_empty_rows": skip_empty_rows,
            "validate_sku": validate_sku,
            "strict_quotes": strict_quotes,
        }.items()
        if value is not None
    }
    if overrides.get("field_delimiter") == "\\t":
        overrides["field_delimiter"] = "\t"
    import_config = service.build_config(**overrides)

    logger.info(f"Received upload {file.filename} (dry_run={dry_run})")

    if dry_run:
        result = await service.pipeline.run_source(file, import_config)
        return {"success": result.success, "import": result.to_dict(), "dry_run": True}

    report = await service.import_upload(file, import_config)
    return report.to_dict()


# ============================================================================
# Mappings
# ============================================================================

@router.get("/mappings")
async def list_mappings(
    q: Optional[str] = Query(None, description="Case-insensitive search text"),
    registry: MappingRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """List all mappings, or those matching a search query."""
    records = registry.search_skus(q) if q else registry.export_mappings()
    return {
        "mappings": [r.to_dict() for r in records],
        "count": len(records),
    }


@router.get("/mappings/stats")
async def mapping_stats(registry: MappingRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Counts by marketplace and distinct MSKUs."""
    return registry.get_stats()


@router.get("/mappings/export")
async def export_mappings(
    format: str = Query("csv", description="csv or json"),
    registry: MappingRegistry = Depends(get_registry),
) -> Response:
    """Download a snapshot of all mappings."""
    records = registry.export_mappings()
    fmt = format.lower()

    if fmt == "csv":
        return Response(
            content=records_to_csv(records),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="sku_mappings.csv"'},
        )
    if fmt == "json":
        return Response(
            content=json.dumps([r.to_dict() for r in records], indent=2),
            media_type="application/json",
            headers={"Content-Disposition": 'attachment; filename="sku_mappings.json"'},
        )

    raise ValidationError(f"Unsupported export format: {format}", details={"supported": ["csv", "json"]})


@router.get("/mappings/{sku}")
async def get_mapping(sku: str, registry: MappingRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Get one mapping."""
    record = registry.get_mapping(sku)
    if record is None:
        raise MappingNotFoundError("SKU not found", sku=sku)
    return record.to_dict()


@router.post("/mappings", status_code=201)
async def add_mapping(
    body: MappingCreate,
    registry: MappingRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Add a new mapping."""
    result = registry.add_mapping(body.dict()).raise_for_error()
    logger.info(f"Added mapping for SKU: {body.sku}")
    return {"success": True, "mapping": result.data.to_dict()}


@router.patch("/mappings/{sku}")
async def update_mapping(
    sku: str,
    body: MappingUpdate,
    registry: MappingRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Update the fields provided for an existing mapping."""
    changes = {"sku": sku, **body.dict(exclude_unset=True)}
    result = registry.update_mapping(changes).raise_for_error()
    logger.info(f"Updated mapping for SKU: {sku}")
    return {"success": True, "mapping": result.data.to_dict()}


@router.delete("/mappings/{sku}")
async def delete_mapping(sku: str, registry: MappingRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """Remove a mapping."""
    result = registry.remove_mapping(sku).raise_for_error()
    logger.info(f"Deleted mapping for SKU: {sku}")
    return {"success": True, "mapping": result.data.to_dict()}


@router.get("/msku/{msku}/skus")
async def skus_for_msku(msku: str, registry: MappingRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """All SKUs mapped to a master SKU."""
    records = registry.get_skus_for_msku(msku)
    return {
        "msku": msku,
        "skus": [r.to_dict() for r in records],
        "count": len(records),
    }


# ============================================================================
# Catalog
# ============================================================================

@router.get("/catalog", response_model=CatalogResponse)
async def catalog_formats(registry: MappingRegistry = Depends(get_registry)) -> CatalogResponse:
    """Registered marketplace formats in detection order."""
    return CatalogResponse(
        marketplaces=registry.catalog.marketplaces,
        formats=registry.catalog.to_dict(),
    )


@router.get("/catalog/detect", response_model=DetectResponse)
async def detect_marketplace(
    sku: str = Query(..., min_length=1),
    registry: MappingRegistry = Depends(get_registry),
) -> DetectResponse:
    """Detect which marketplace issued a SKU."""
    return DetectResponse(sku=sku, marketplace=registry.detect_marketplace(sku))
