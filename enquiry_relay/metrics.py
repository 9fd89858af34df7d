"""
Prometheus metrics for the relay service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Inbound bot event counter (kind, result)
- Outbound Telegram message counter (result)

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

# kind: start, button, contact, text
# result: handled, ignored, store_error, transport_error
bot_events_total = Counter(
    "bot_events_total",
    "Total inbound bot events by outcome",
    labelnames=["kind", "result"]
)

# result: sent, failed
outbound_messages_total = Counter(
    "outbound_messages_total",
    "Total outbound Telegram messages",
    labelnames=["result"]
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
    # Webhook paths embed the bot token
    if normalized_path.startswith("/webhook/"):
        normalized_path = "/webhook"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_bot_event(kind: str, result: str) -> None:
    bot_events_total.labels(kind=kind, result=result).inc()


def record_outbound_message(result: str) -> None:
    outbound_messages_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
