"""Prometheus metrics for ledger throughput, snapshot health and dashboard notifications"""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_events_counter = Counter(
    "ledger_events_recorded_total",
    "Metric events written to the ledger",
    ["name"],
)

ledger_write_failures_counter = Counter(
    "ledger_write_failures_total",
    "Ledger batch writes that failed and were rolled back",
)

# Snapshot metrics
snapshot_update_counter = Counter(
    "snapshot_updates_total",
    "Snapshot updates applied",
    ["mode"],  # increment | overwrite
)

snapshot_failure_counter = Counter(
    "snapshot_update_failures_total",
    "Snapshot updates skipped after an error",
)

registry_bootstrap_counter = Counter(
    "registry_bootstraps_total",
    "Branch registry lookups that had to resolve a mapping",
    ["outcome"],  # created | race_lost | existing
)

# Notification metrics
notification_failure_counter = Counter(
    "metrics_notifications_failed_total",
    "Metrics-changed subscribers that raised",
)

webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Dashboard webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed dashboard webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_ledger_write(names) -> None:
    """Count recorded ledger events per metric name"""
    for name in names:
        ledger_events_counter.labels(name=name).inc()


def record_snapshot_update(mode: str) -> None:
    snapshot_update_counter.labels(mode=mode).inc()
