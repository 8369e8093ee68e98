import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from samvad.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter to ensure ISO-8601 timestamps and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            log_record['ts'] = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(ts)s %(level)s %(name)s %(message)s'
    )
    json_handler.setFormatter(formatter)

    logger.addHandler(json_handler)

    uvicorn_loggers = [
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
    ]

    for logger_name in uvicorn_loggers:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Disable uvicorn.access logger since we have our own middleware
    logging.getLogger("uvicorn.access").disabled = True

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests in structured JSON format.

    Log keys:
    - ts, level, request_id
    - method, path, status, latency_ms

    Handlers may attach domain context (user_id, conversation_id,
    message_id, result) through log_request_context(); it is merged into
    the same line.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        start_time = time.time()

        try:
            try:
                response = await call_next(request)
            except Exception:
                self._complete(request, request_id, 500, time.time() - start_time)
                raise

            response.headers["X-Request-ID"] = request_id
            self._complete(request, request_id, response.status_code, time.time() - start_time)
            return response
        finally:
            request_id_ctx.reset(token)

    def _complete(self, request: Request, request_id: str, status: int, latency_seconds: float) -> None:
        # exclude /metrics endpoint to avoid self-instrumentation noise
        if request.url.path != "/metrics":
            record_http_request(
                method=request.method,
                path=route_path(request),
                status=status,
                latency_seconds=latency_seconds
            )

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "latency_ms": round(latency_seconds * 1000, 2),
        }

        if hasattr(request.state, "log_context"):
            log_data.update(request.state.log_context)

        logger = logging.getLogger("samvad.requests")

        if status >= 500:
            logger.error("Request completed", extra=log_data)
        elif status >= 400:
            logger.warning("Request completed", extra=log_data)
        else:
            logger.info("Request completed", extra=log_data)


def route_path(request: Request) -> str:
    """
    Path template of the matched route (/api/messages/{message_id}/read),
    or the raw path when no route matched.
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def log_request_context(request: Request, **fields) -> None:
    """
    Attach domain fields to the request log line written by the middleware.

    None values are skipped; repeated calls merge.
    """
    context = getattr(request.state, "log_context", {})
    context.update({key: value for key, value in fields.items() if value is not None})
    request.state.log_context = context
