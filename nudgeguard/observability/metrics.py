"""Prometheus metric definitions for pipeline self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

TICK_DURATION_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)

REQUEST_DURATION_BUCKETS = (0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)

# ---------------------------------------------------------------------------
# Signal metrics
# ---------------------------------------------------------------------------

BEHAVIOR_EVENTS_TOTAL = Counter(
    "nudgeguard_behavior_events_total",
    "Behavior events emitted by the signal trackers",
    labelnames=["kind", "severity"],
)

ACTIVE_SESSIONS = Gauge(
    "nudgeguard_active_sessions",
    "Live sessions held by each signal tracker",
    labelnames=["tracker"],
)

INSIGHTS_TOTAL = Counter(
    "nudgeguard_insights_total",
    "Composite insights produced by the pattern analyzer",
    labelnames=["type", "severity"],
)

# ---------------------------------------------------------------------------
# Intervention metrics
# ---------------------------------------------------------------------------

INTERVENTION_DECISIONS_TOTAL = Counter(
    "nudgeguard_intervention_decisions_total",
    "Outcome of every intervention decision made by the orchestrator",
    labelnames=["source", "outcome"],
)

INTERVENTIONS_FIRED_TOTAL = Counter(
    "nudgeguard_interventions_fired_total",
    "Interventions whose timer fired, by delivery status",
    labelnames=["status"],
)

PENDING_INTERVENTIONS = Gauge(
    "nudgeguard_pending_interventions",
    "Interventions currently waiting on their timer",
)

# ---------------------------------------------------------------------------
# Knowledge graph metrics
# ---------------------------------------------------------------------------

GRAPH_NODES = Gauge(
    "nudgeguard_graph_nodes",
    "Nodes currently held by the knowledge graph",
)

GRAPH_EDGES = Gauge(
    "nudgeguard_graph_edges",
    "Edges currently held by the knowledge graph",
)

# ---------------------------------------------------------------------------
# Tick / request metrics
# ---------------------------------------------------------------------------

TICK_DURATION = Histogram(
    "nudgeguard_tick_duration_seconds",
    "Duration of background tick jobs in seconds",
    labelnames=["job"],
    buckets=TICK_DURATION_BUCKETS,
)

TICKS_TOTAL = Counter(
    "nudgeguard_ticks_total",
    "Background tick job runs",
    labelnames=["job", "status"],
)

REQUESTS_TOTAL = Counter(
    "nudgeguard_requests_total",
    "Total number of host adapter requests",
    labelnames=["endpoint", "status"],
)

REQUEST_DURATION = Histogram(
    "nudgeguard_request_duration_seconds",
    "Host adapter request latency in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

APP_INFO = Info(
    "nudgeguard",
    "nudgeguard build information",
)
