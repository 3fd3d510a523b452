"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"roomchat_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"roomchat_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

WS_CONNECTIONS = Gauge(
	"roomchat_ws_connections_active",
	"Active relay WebSocket connections",
)

WS_REJECTED = Counter(
	"roomchat_ws_rejected_total",
	"WebSocket upgrades refused before a session was created",
	["reason"],
)

RELAY_EVENTS = Counter(
	"roomchat_relay_events_total",
	"Inbound relay frames handled, by kind",
	["kind"],
)

ROOM_CHANNELS_CREATED = Counter(
	"roomchat_room_channels_created_total",
	"Broadcast channels created, summed over every room registry in the process",
)

BROADCAST_LAGGED = Counter(
	"roomchat_broadcast_lagged_total",
	"Broadcast entries dropped because a subscriber buffer was full",
)

HISTORY_FAILURES = Counter(
	"roomchat_history_failures_total",
	"History store operations that failed",
	["op"],
)

REDIS_UP = Gauge(
	"roomchat_redis_up",
	"Redis availability as seen by the readiness probe",
)

REDIS_LATENCY = Histogram(
	"roomchat_redis_ping_seconds",
	"Redis ping latency",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def ws_connected() -> None:
	WS_CONNECTIONS.inc()


def ws_disconnected() -> None:
	WS_CONNECTIONS.dec()


def ws_rejected(reason: str) -> None:
	WS_REJECTED.labels(reason=reason).inc()


def relay_event(kind: str) -> None:
	RELAY_EVENTS.labels(kind=kind).inc()


def room_channel_created() -> None:
	ROOM_CHANNELS_CREATED.inc()


def broadcast_lagged() -> None:
	BROADCAST_LAGGED.inc()


def history_failure(op: str) -> None:
	HISTORY_FAILURES.labels(op=op).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)
