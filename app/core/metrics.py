"""Engine metrics using the Prometheus client library.

All metrics are defined here, one inventory for everything the engine
measures.  Services import the ones they own and increment/observe them
at the point of action.

Counters only go up, so "how many duplicate grants did retries cause in
the last hour" is rate(xp_grants_total{result="duplicate"}[1h]).  The
duplicate/race-lost series are the interesting ones operationally: a
sudden jump means some producer started re-delivering events.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

PROGRESS_EVENTS = Counter(
    "progress_events_total",
    "Progress events received by the ingestor",
    ["kind", "result"],  # result: processed|rejected|unsupported|failed
)

OPERATION_DURATION = Histogram(
    "engine_operation_duration_seconds",
    "Duration of top-level engine operations",
    ["operation"],
    # Engine operations are a handful of queries; anything past 250ms
    # means the database is struggling.
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

# ---------------------------------------------------------------------------
# Ledger, badges, certificates
# ---------------------------------------------------------------------------

XP_GRANTS = Counter(
    "xp_grants_total",
    "XP grant attempts by reason and outcome",
    ["reason", "result"],  # result: granted|duplicate|correction
)

BADGE_UNLOCKS = Counter(
    "badge_unlocks_total",
    "Badges unlocked",
    ["badge_key"],
)

CERTIFICATES_ISSUED = Counter(
    "certificates_issued_total",
    "Certificate generate() outcomes",
    ["result"],  # issued|existing|race_lost|not_eligible
)

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
