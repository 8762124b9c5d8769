"""Prometheus metrics for the live session service, served at ``/metrics``."""

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
    "livequiz_http_requests_total",
    "Total HTTP requests processed",
    ["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
    "livequiz_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["route", "method", "status"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
)

SESSIONS_CREATED = Counter(
    "livequiz_sessions_created_total",
    "Live sessions created",
)

ACTIVE_SESSIONS = Gauge(
    "livequiz_active_sessions",
    "Sessions started and not yet finished",
)

SOCKET_CLIENTS = Gauge(
    "livequiz_socketio_clients",
    "Active Socket.IO clients per namespace",
    ["namespace"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
    REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
    REQUEST_LATENCY.labels(route=route, method=method, status=str(status)).observe(elapsed_seconds)


def session_created() -> None:
    SESSIONS_CREATED.inc()


def session_started() -> None:
    ACTIVE_SESSIONS.inc()


def session_stopped() -> None:
    ACTIVE_SESSIONS.dec()


def socket_connected(namespace: str) -> None:
    SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
    SOCKET_CLIENTS.labels(namespace=namespace).dec()
