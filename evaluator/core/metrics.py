from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Evaluation requests
# ---------------------------------------------------------------------------
evaluations_total = Counter(
    "evaluations_total",
    "Total number of price evaluations by outcome",
    ["status"],
)
evaluation_duration_seconds = Histogram(
    "evaluation_duration_seconds",
    "Wall-clock duration of a single evaluation",
    buckets=[5, 10, 20, 30, 45, 60, 90, 120, 180],
)
admission_rejected_total = Counter(
    "admission_rejected_total",
    "Evaluations rejected because no capacity slot freed up in time",
)

# ---------------------------------------------------------------------------
# Browser sessions
# ---------------------------------------------------------------------------
active_browser_sessions = Gauge(
    "active_browser_sessions",
    "Number of currently open browser sessions",
)
watchdog_fired_total = Counter(
    "watchdog_fired_total",
    "Number of sessions force-released by the deadline watchdog",
)

# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------
challenge_outcomes_total = Counter(
    "challenge_outcomes_total",
    "Anti-bot challenge handling outcomes",
    ["outcome"],
)
navigation_failures_total = Counter(
    "navigation_failures_total",
    "Navigation flow failures by reason",
    ["reason"],
)
extraction_strategy_total = Counter(
    "extraction_strategy_total",
    "Price extraction strategy that produced the record",
    ["strategy"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
