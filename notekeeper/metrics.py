"""Prometheus metrics for Notekeeper.

All metric objects are defined here so they can be imported from any module.
"""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Mutation metrics
# ---------------------------------------------------------------------------

MUTATIONS = Counter(
    "notekeeper_mutations_total",
    "Total dashboard mutations",
    ["operation", "outcome"],  # ok, validation, not_found, auth, remote, cancelled
)

ROLLBACKS = Counter(
    "notekeeper_rollbacks_total",
    "Optimistic updates reverted after a failed remote write",
    ["operation"],
)

MUTATION_DURATION = Histogram(
    "notekeeper_mutation_duration_seconds",
    "Duration of remote writes in seconds",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ---------------------------------------------------------------------------
# Session metrics
# ---------------------------------------------------------------------------

ACTIVE_SESSIONS = Gauge(
    "notekeeper_active_sessions",
    "Number of loaded dashboard sessions",
)

LOAD_FAILURES = Counter(
    "notekeeper_load_failures_total",
    "Collections that failed to load on session start",
    ["collection"],
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS = Counter(
    "notekeeper_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_DURATION = Histogram(
    "notekeeper_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
)
