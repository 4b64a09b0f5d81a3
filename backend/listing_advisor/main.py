import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from listing_advisor.api.routes import auth, health, listings
from listing_advisor.config import settings
from listing_advisor.errors import (
    AlreadyInProgress,
    ListingAdvisorError,
    NotAuthenticated,
    PersistenceError,
    RecommendationError,
    UpstreamError,
    ValidationError,
)
from listing_advisor.logging import configure_logging
from listing_advisor.models.contracts import ErrorResponse
from listing_advisor.services.analysis import AnalysisOrchestrator
from listing_advisor.services.mercadolibre import MercadoLibreClient
from listing_advisor.services.recommendations import create_recommendation_client
from listing_advisor.services.single_flight import SingleFlight
from listing_advisor.services.storage import create_store

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared clients once per process and close them on shutdown."""
    http_client = httpx.AsyncClient(timeout=settings.ml_timeout_seconds)
    store = await create_store()
    ml_client = MercadoLibreClient(http_client, settings.ml_api_base_url)
    app.state.ml_client = ml_client
    app.state.store = store
    app.state.orchestrator = AnalysisOrchestrator(
        ml_client,
        store,
        create_recommendation_client(),
        SingleFlight(settings.single_flight_policy),
        catalog_page_size=settings.catalog_page_size,
        catalog_max_items=settings.catalog_max_items,
        catalog_detail_concurrency=settings.catalog_detail_concurrency,
    )
    logger.info(
        "app_started",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
        single_flight_policy=settings.single_flight_policy,
    )
    try:
        yield
    finally:
        await http_client.aclose()
        await store.close()


app = FastAPI(
    title="Listing Advisor API",
    version=health.VERSION,
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", request.headers.get("X-Request-ID", ""))


def _error_response(
    request: Request,
    status: int,
    code: str,
    message: str,
    *,
    retryable: bool,
    detail: str | None = None,
) -> JSONResponse:
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(
            error=code, message=message, retryable=retryable, detail=detail
        ).model_dump(),
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


def classify_error(exc: ListingAdvisorError) -> tuple[int, str, bool]:
    """Map a pipeline error onto (HTTP status, error code, retryable)."""
    if isinstance(exc, NotAuthenticated):
        return 401, "not_authenticated", False
    if isinstance(exc, UpstreamError):
        if exc.kind == "unauthorized":
            return 401, "not_authenticated", False
        if exc.kind == "not_found":
            return 404, "upstream_fetch_failed", False
        if exc.kind == "rate_limited":
            return 429, "upstream_fetch_failed", True
        return 502, "upstream_fetch_failed", True
    if isinstance(exc, ValidationError):
        return 422, "validation_error", False
    if isinstance(exc, PersistenceError):
        return 500, "save_failed", True
    if isinstance(exc, RecommendationError):
        return 502, "ai_analysis_failed", True
    if isinstance(exc, AlreadyInProgress):
        return 409, "analysis_in_progress", True
    return 500, "internal_error", True


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID to every request for log correlation.

    The ID is bound into structlog context vars, so it appears in every log
    entry of the request, and echoed in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(ListingAdvisorError)
async def listing_advisor_error_handler(
    request: Request,
    exc: ListingAdvisorError,
) -> JSONResponse:
    status, code, retryable = classify_error(exc)
    logger.warning(
        "request_failed",
        path=request.url.path,
        error=code,
        error_type=type(exc).__name__,
        step=exc.step,
        external_id=exc.external_id,
    )
    detail = getattr(exc, "kind", None) or getattr(exc, "operation", None)
    return _error_response(request, status, code, exc.message, retryable=retryable, detail=detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for request validation errors.

    FastAPI's default 422 body is {"detail": [...]}; clients get a single
    error shape instead.
    """
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    return _error_response(
        request, 422, "validation_error", "; ".join(messages), retryable=False
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return ErrorResponse JSON instead of a bare 500 page."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return _error_response(
        request, 500, "internal_error", "An unexpected error occurred", retryable=True
    )


app.include_router(health.router)
app.include_router(auth.router)
app.include_router(listings.router, prefix="/api/v1")
