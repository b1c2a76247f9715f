"""FastAPI application setup for Message Search."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from message_search.api.dependencies import (
    get_app_settings,
    get_database,
    get_ingest_pipeline,
    get_scheduler,
    get_search_service,
    reset_dependencies,
)
from message_search.api.routes_admin import router as admin_router
from message_search.api.routes_search import router as search_router
from message_search.api.routes_sync import router as sync_router
from message_search.core.errors import (
    ConfigurationError,
    DimensionMismatch,
    DuplicateExternalId,
    MessageSearchError,
    NotFound,
    OwnershipViolation,
    PermanentProviderError,
    ProviderUnavailable,
    SyncStateError,
    Unauthenticated,
)
from message_search.core.logging import configure_logging, get_logger, log_context
from message_search.core.metrics import REQUEST_COUNT

configure_logging()
logger = get_logger(__name__)

# first match wins, so subclasses go before their bases
_STATUS_BY_ERROR: tuple[tuple[type[MessageSearchError], int], ...] = (
    (Unauthenticated, 401),
    (NotFound, 404),
    (OwnershipViolation, 404),
    (SyncStateError, 409),
    (DuplicateExternalId, 409),
    (ConfigurationError, 422),
    (DimensionMismatch, 422),
    (PermanentProviderError, 422),
    (ProviderUnavailable, 503),
)

app = FastAPI(
    title="Message Search",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(sync_router, prefix="/sync", tags=["sync"])
app.include_router(search_router, prefix="", tags=["search"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.exception_handler(MessageSearchError)
async def handle_engine_error(request: Request, exc: MessageSearchError) -> JSONResponse:
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
    if status >= 500:
        logger.error("Request failed: %s", exc.message, extra=log_context(path=request.url.path))
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "error": type(exc).__name__},
        headers=headers,
    )


@app.middleware("http")
async def count_requests(request: Request, call_next):
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_database()
    get_ingest_pipeline()
    get_search_service()
    get_scheduler()


@app.on_event("shutdown")
async def shutdown() -> None:
    reset_dependencies()


@app.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}
