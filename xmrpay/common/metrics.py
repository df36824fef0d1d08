"""Prometheus metric definitions for the tracker process."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


rpc_requests_total = Counter(
    "wallet_rpc_requests_total",
    "Wallet RPC calls by method and outcome",
    ["method", "outcome"],
)
rpc_request_duration_seconds = Histogram(
    "wallet_rpc_request_duration_seconds",
    "Wallet RPC call duration seconds",
    ["method"],
)
payments_allocated_total = Counter("payments_allocated_total", "Integrated addresses handed out", ["service"])
payment_status_transitions_total = Counter(
    "payment_status_transitions_total",
    "Payment status transitions applied by the registry",
    ["service", "from_status", "to_status"],
)
reorg_anomalies_total = Counter(
    "reorg_anomalies_total",
    "Regressive observations ignored by the registry",
    ["service"],
)
payments_expired_total = Counter("payments_expired_total", "Payments marked expired by sweeps", ["service"])
pending_poll_queue_size = Gauge(
    "pending_poll_queue_size",
    "Payment ids waiting for the next bulk poll",
    ["service"],
)
bulk_poll_batch_size = Histogram(
    "bulk_poll_batch_size",
    "Number of payment ids drained per bulk poll",
    ["service"],
    buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500, 1000),
)
poll_failures_total = Counter("poll_failures_total", "Failed polls by mode and error code", ["service", "mode", "code"])
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
