"""Prometheus metrics for monitoring scrapers, merges and sync runs."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Scraper metrics
scraper_requests = Counter(
    "ipolens_scraper_requests_total",
    "Scraper operations by outcome",
    ["source", "operation", "status"],
)

scraper_records = Counter(
    "ipolens_scraper_records_total",
    "Raw records returned by scraper operations",
    ["source", "operation"],
)

scraper_duration = Histogram(
    "ipolens_scraper_duration_seconds",
    "Time spent in one scraper operation",
    ["source", "operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

last_successful_scrape = Gauge(
    "ipolens_scraper_last_success_timestamp",
    "Timestamp of last successful scraper operation",
    ["source"],
)

# Aggregation metrics
merged_records = Gauge(
    "ipolens_merged_records",
    "Merged records produced by the last aggregation pass",
    ["kind"],
)

merge_conflicts = Counter(
    "ipolens_merge_conflicts_total",
    "Fields where sources disagreed and priority picked a value",
    ["field"],
)

# Sync metrics
sync_runs = Counter(
    "ipolens_sync_runs_total",
    "Sync runs by final status",
    ["status", "clean"],
)

sync_changes = Counter(
    "ipolens_sync_changes_total",
    "Rows created, updated or marked listed by sync",
    ["action"],
)

sync_duration = Histogram(
    "ipolens_sync_duration_seconds",
    "Time spent executing a complete sync run",
    ["status"],
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Current state of circuit breaker (0=CLOSED, 1=HALF_OPEN, 2=OPEN)",
    ["source"],
)

circuit_breaker_failures = Counter(
    "circuit_breaker_failures_total",
    "Total number of failures tracked by circuit breaker",
    ["source"],
)

circuit_breaker_state_transitions = Counter(
    "circuit_breaker_state_transitions_total",
    "Total number of circuit breaker state transitions",
    ["source", "from_state", "to_state"],
)

# Monitor metrics
alerts_raised = Counter(
    "ipolens_alerts_total",
    "Market monitor alerts by type and severity",
    ["alert_type", "severity"],
)


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server.

    Args:
        port: Port to expose metrics on
    """
    start_http_server(port)
