"""
Prometheus metrics for the contractor access service.

This module provides:
- HTTP request counter (method, path, status)
- Conversation turn outcome counter (outcome)
- Request latency histogram (method, path)

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

# outcome: one of app.conversation.TurnOutcome, or a webhook-level rejection
# (missing_fields, invalid_signature, error)
conversation_turns_total = Counter(
    "conversation_turns_total",
    "Total SMS conversation turns by outcome",
    labelnames=["outcome"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]
    # Collapse conversation ids to keep label cardinality bounded
    if normalized_path.startswith("/conversations/"):
        normalized_path = "/conversations/{id}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_turn_outcome(outcome: str) -> None:
    conversation_turns_total.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
