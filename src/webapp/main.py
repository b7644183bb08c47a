"""
FastAPI application entry point for the SKU Mapper.

Run with:
    uvicorn src.webapp.main:app --reload

Open: http://127.0.0.1:8000/docs
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.exceptions import AppException
from src.storage.mapping_store import MappingStore
from src.utils.logging_config import setup_logging
from src.webapp.routes import get_app_config, get_registry, router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    config = get_app_config()
    setup_logging(
        level=config.logging.level,
        log_format=config.logging.format,
        log_file=config.logging.file,
    )

    registry = get_registry()
    detach = None
    if config.paths.mapping_store_file:
        store = MappingStore(config.paths.mapping_store_file)
        store.load_into(registry)
        detach = store.attach(registry)

    logger.info(f"SKU Mapper starting with {len(registry)} mappings")
    yield

    if detach is not None:
        detach()
    logger.info("SKU Mapper shutting down")


app = FastAPI(
    title=get_app_config().webapp.title,
    description="Map marketplace SKUs to master SKUs and bulk-load mappings from uploaded files",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    start_time = time.time()
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception(f"Unhandled error processing {request.url.path}: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": "An unexpected error occurred",
                "path": str(request.url.path),
            },
            headers={"X-Process-Time": str(process_time)},
        )


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render application errors as JSON."""
    logger.warning(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check with registry size."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "mappings": len(get_registry()),
    }


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.webapp.main:app", host="127.0.0.1", port=8000, reload=True)
