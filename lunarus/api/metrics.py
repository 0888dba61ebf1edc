"""
Prometheus metrics for the API service.

Tracks gateway connections, event fanout and message ingestion. Metrics live
in the default registry so the /metrics endpoint exposed by
prometheus-fastapi-instrumentator serves them next to the HTTP metrics.
"""
from prometheus_client import Counter, Gauge

# Gateway connection metrics
gateway_connections_active = Gauge(
    "gateway_connections_active",
    "Number of open gateway connections",
)

gateway_connections_total = Counter(
    "gateway_connections_total",
    "Total number of gateway connections established",
)

gateway_handshake_rejections_total = Counter(
    "gateway_handshake_rejections_total",
    "Gateway handshakes rejected before registration",
    labelnames=["reason"],
)

gateway_disconnections_total = Counter(
    "gateway_disconnections_total",
    "Total number of gateway disconnections",
    labelnames=["reason"],
)

gateway_frames_received_total = Counter(
    "gateway_frames_received_total",
    "Inbound gateway frames by operation (ignored = malformed or unknown)",
    labelnames=["op"],
)

# Fanout metrics
gateway_events_sent_total = Counter(
    "gateway_events_sent_total",
    "Events written to gateway sockets",
    labelnames=["event_type"],
)

gateway_delivery_failures_total = Counter(
    "gateway_delivery_failures_total",
    "Best-effort deliveries that failed for a single connection",
    labelnames=["event_type", "stage"],
)

# Business metrics
messages_created_total = Counter(
    "messages_created_total",
    "Total number of messages durably created",
    labelnames=["kind"],
)

messages_rejected_total = Counter(
    "messages_rejected_total",
    "Message sends rejected before or during the durable write",
    labelnames=["reason"],
)


def update_gateway_metrics(registry) -> None:
    """
    Refresh gauges from the connection registry.

    Args:
        registry: ConnectionRegistry instance
    """
    gateway_connections_active.set(len(registry))
