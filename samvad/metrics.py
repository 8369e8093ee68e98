"""
Prometheus metrics for the messaging API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Domain counters for created messages, created conversations and
  domain errors

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# kind: text, image, video, file, audio
messages_created_total = Counter(
    "messages_created_total",
    "Messages appended to conversations",
    labelnames=["kind"]
)

# type: direct, group
conversations_created_total = Counter(
    "conversations_created_total",
    "Conversations created",
    labelnames=["type"]
)

# error: not_found, duplicate, self_reference, validation, forbidden, internal
domain_errors_total = Counter(
    "domain_errors_total",
    "Requests rejected with a domain error",
    labelnames=["error"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template, or the raw path when no route matched
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_created(kind: str) -> None:
    messages_created_total.labels(kind=kind).inc()


def record_conversation_created(conversation_type: str) -> None:
    conversations_created_total.labels(type=conversation_type).inc()


def record_domain_error(error: str) -> None:
    domain_errors_total.labels(error=error).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
