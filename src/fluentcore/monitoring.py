"""Monitoring configuration for the learning engine."""
from prometheus_client import Counter, Histogram, start_http_server

# Storage metrics
storage_flushes = Counter(
    "fluentcore_storage_flushes_total",
    "Total number of batched writes committed to the storage backend",
)

storage_write_failures = Counter(
    "fluentcore_storage_write_failures_total",
    "Total number of batched writes rejected by the storage backend",
    ["phase"],
)

storage_retries = Counter(
    "fluentcore_storage_retries_total",
    "Total number of keys re-sent to the storage backend after a failure",
)

storage_read_errors = Counter(
    "fluentcore_storage_read_errors_total",
    "Total number of storage reads that fell back to a default value",
)

durability_exhausted = Counter(
    "fluentcore_durability_exhausted_total",
    "Total number of keys moved to the local backup after exhausting retries",
)

flush_batch_size = Histogram(
    "fluentcore_flush_batch_size",
    "Number of keys written per batched flush",
    buckets=[1, 2, 5, 10, 25, 50],
)

# Learning metrics
interactions_recorded = Counter(
    "fluentcore_interactions_total",
    "Total number of word interactions scored by the scheduler",
    ["kind"],
)

words_selected = Counter(
    "fluentcore_words_selected_total",
    "Total number of words selected for pages",
    ["mode"],
)

# Quota metrics
quota_denials = Counter(
    "fluentcore_quota_denials_total",
    "Total number of requests denied by the daily quota",
    ["kind"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
