import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from samvad.config import settings
from samvad.errors import SamvadError
from samvad.logging_utils import setup_logging, RequestLoggingMiddleware, log_request_context
from samvad.metrics import get_metrics, get_metrics_content_type, record_domain_error
from samvad.routes import contacts_router, conversations_router, messages_router, users_router
from samvad.schemas import HealthResponse
from samvad.storage import init_db, check_db_health


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Samvad API",
    description="Messaging backend: contacts, direct and group conversations, messages",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(users_router)
app.include_router(contacts_router)
app.include_router(conversations_router)
app.include_router(messages_router)


# =============================================================================
# Error Handlers
# =============================================================================

def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(SamvadError)
async def handle_domain_error(request: Request, exc: SamvadError) -> JSONResponse:
    record_domain_error(exc.error_name)
    log_request_context(request, result=exc.error_name)
    logger.info(f"Domain error on {request.method} {request.url.path}: {exc.error_name}: {exc.message}")
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    record_domain_error("validation")
    log_request_context(request, result="validation")
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = first.get("msg", "Invalid request")
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        f"{location}: {detail}" if location else detail,
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    record_domain_error("internal")
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and every
    table exists, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Includes http_requests_total, request_latency_seconds,
    messages_created_total, conversations_created_total and
    domain_errors_total.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
