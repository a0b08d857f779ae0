"""
FastAPI application for the storefront catalog service.

Wires the shared clients (cache, search index, object storage) onto
``app.state`` at startup and mounts the catalog and search routers.
"""

import time
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from storefront import database
from storefront.cache import CacheClient
from storefront.config import Settings, get_settings
from storefront.endpoints import router as search_router
from storefront.input_validator import ProductValidationError
from storefront.logger import configure_logging, get_logger
from storefront.metrics import metrics_collector
from storefront.products_api import router as products_router
from storefront.query_builder import MAX_RESULT_WINDOW, PaginationLimitExceeded
from storefront.tools.object_storage import ObjectStorage
from storefront.tools.search_index import SearchIndex, SearchUnavailable

logger = get_logger("main")

SERVICE_NAME = "Storefront Catalog Service"
VERSION = "1.0.0"


def init_state(app: FastAPI, settings: Settings) -> None:
    """Create the shared clients unless a test already installed them."""
    app.state.settings = settings
    if getattr(app.state, "cache", None) is None:
        app.state.cache = CacheClient(settings)
    if getattr(app.state, "search_index", None) is None:
        app.state.search_index = SearchIndex(settings)
    if getattr(app.state, "object_storage", None) is None:
        app.state.object_storage = ObjectStorage(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables, build the shared clients and run the startup checks.

    Set STOREFRONT_SKIP_CONNECT=1 to skip the network checks (tests, CI).
    """
    settings = getattr(app.state, "settings", None) or get_settings()
    configure_logging(settings.log_level)
    database.init_db()
    init_state(app, settings)

    if settings.skip_connect:
        logger.info("Skipping startup connectivity checks (STOREFRONT_SKIP_CONNECT=1)")
        yield
        return

    if not app.state.cache.ping():
        logger.warning("Redis is not reachable; requests will bypass the cache")

    app.state.search_index.connect_with_retry(
        retries=settings.elasticsearch_retries,
        delay=settings.elasticsearch_retry_delay,
    )

    try:
        app.state.object_storage.ensure_bucket()
    except Exception as e:
        logger.warning("Could not ensure bucket %s: %s", settings.s3_bucket, e)

    yield


app = FastAPI(
    title=SERVICE_NAME,
    description="Product catalog with full-text search, caching and image storage",
    version=VERSION,
    lifespan=lifespan,
)

# Admin UI and shop run on other origins in development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LatencyLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration for every non-OPTIONS request."""

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)
        t0 = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - t0) * 1000
        logger.info(
            "[LATENCY] %s %s -> %d  %.1fms",
            request.method, request.url.path, response.status_code, duration_ms,
        )
        return response


app.add_middleware(LatencyLoggingMiddleware)

app.include_router(products_router)
app.include_router(search_router)


#
# Error handlers
#

@app.exception_handler(ProductValidationError)
async def product_validation_handler(request: Request, exc: ProductValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": exc.message, "errors": exc.errors},
    )


@app.exception_handler(PaginationLimitExceeded)
async def pagination_limit_handler(request: Request, exc: PaginationLimitExceeded):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Pagination limit exceeded",
            "message": str(exc),
            "suggestion": f"Narrow the search with filters; results beyond {MAX_RESULT_WINDOW} are not available",
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions; error text is only returned in development."""
    err_msg = str(exc)
    logger.error("Unhandled exception: %s\n%s", err_msg, traceback.format_exc())
    settings = getattr(request.app.state, "settings", None) or get_settings()
    detail = err_msg if settings.is_development else "Internal server error"
    return JSONResponse(
        status_code=500,
        content={"detail": detail, "type": type(exc).__name__},
    )


#
# Health & observability
#

@app.get("/")
def root():
    return {"service": SERVICE_NAME, "version": VERSION, "status": "operational"}


@app.get("/health")
def health_check(request: Request):
    """
    Connectivity of the database, cache and search index, plus the number
    of indexed documents when the index is reachable.
    """
    health_status = {
        "service": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "search": "unknown",
    }

    db = database.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "healthy"
    except Exception as e:
        health_status["database"] = f"unhealthy: {e}"
        health_status["service"] = "degraded"
    finally:
        db.close()

    if request.app.state.cache.ping():
        health_status["cache"] = "healthy"
    else:
        health_status["cache"] = "unhealthy: no response"
        health_status["service"] = "degraded"

    search_index = request.app.state.search_index
    try:
        if search_index.ensure_available():
            health_status["search_documents"] = search_index.count()
            health_status["search"] = "healthy"
    except SearchUnavailable as e:
        logger.warning("Search index health check failed: %s", e)
    if health_status["search"] != "healthy":
        health_status["search"] = "unavailable"
        health_status["service"] = "degraded"

    return health_status


@app.get("/metrics")
def get_metrics():
    """Latency percentiles, cache hit rates and error counts per endpoint."""
    return metrics_collector.get_summary()
