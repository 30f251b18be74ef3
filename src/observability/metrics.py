"""
Prometheus Metrics Setup for the Anonymization Pipeline
"""

import structlog
from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = structlog.get_logger(__name__)

# Counters
events_received_total = Counter(
    "anon_events_received_total",
    "Change events received from the source collection",
    ["operation"],
)

events_skipped_total = Counter(
    "anon_events_skipped_total", "Change events discarded without a write", ["operation"]
)

records_written_total = Counter(
    "anon_records_written_total", "Anonymized records written", ["collection"]
)

errors_total = Counter("anon_errors_total", "Per-event failures by error type", ["error_type"])

generated_records_total = Counter(
    "anon_generated_records_total", "Synthetic customers inserted by the generator"
)

# Gauges
consumer_state = Gauge(
    "anon_consumer_state", "Current change consumer state (1 for the active state)", ["state"]
)

# Histograms
write_duration_seconds = Histogram(
    "anon_write_duration_seconds",
    "Time taken to write one anonymized record",
    ["collection"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server

    Args:
        port: HTTP port to expose /metrics endpoint (default 9090)
    """
    start_http_server(port)
    logger.info("Prometheus metrics server started", port=port)


def increment_events_received(operation: str) -> None:
    events_received_total.labels(operation=operation).inc()


def increment_events_skipped(operation: str) -> None:
    events_skipped_total.labels(operation=operation).inc()


def increment_records_written(collection: str, count: int = 1) -> None:
    records_written_total.labels(collection=collection).inc(count)


def increment_errors(error_type: str, count: int = 1) -> None:
    """Increment error counter"""
    errors_total.labels(error_type=error_type).inc(count)


def increment_generated_records(count: int) -> None:
    generated_records_total.inc(count)


def set_consumer_state(state: str, all_states: list) -> None:
    """Mark one consumer state active and clear the others"""
    for name in all_states:
        consumer_state.labels(state=name).set(1 if name == state else 0)


def observe_write_duration(collection: str, duration_seconds: float) -> None:
    """Observe sink write duration histogram"""
    write_duration_seconds.labels(collection=collection).observe(duration_seconds)
