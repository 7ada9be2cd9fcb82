"""Prometheus metrics for payment executions, routing, and chain access"""

from prometheus_client import Counter, Histogram

# Execution metrics
execution_counter = Counter(
    "autopay_executions_total",
    "Scheduled runs that reached a final state",
    ["status", "reason"],  # success | failed, reason short code
)

execution_duration_histogram = Histogram(
    "autopay_execution_duration_seconds",
    "Wall time of one execution attempt",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

state_transition_counter = Counter(
    "autopay_state_transitions_total",
    "Execution state machine transitions",
    ["to_state"],
)

fallback_switch_counter = Counter(
    "autopay_fallback_switches_total",
    "Times execution moved to a fallback venue",
)

gas_top_up_counter = Counter(
    "autopay_gas_top_ups_total",
    "Gas top-up routes executed before a payment",
)

retry_deferred_counter = Counter(
    "autopay_retries_deferred_total",
    "Attempts that failed and were deferred with backoff",
)

# Engine component metrics
risk_scan_counter = Counter(
    "autopay_risk_scans_total",
    "Risk scans by resulting level",
    ["level"],
)

route_quote_counter = Counter(
    "autopay_route_quotes_total",
    "Route quote requests by outcome",
    ["outcome"],  # ok, or the exception class name
)

scheduler_tick_counter = Counter(
    "autopay_scheduler_ticks_total",
    "Scheduler ticks run",
)

# Chain adapter metrics
chain_call_failures_counter = Counter(
    "autopay_chain_call_failures_total",
    "Chain adapter calls that timed out or failed",
    ["chain", "operation"],
)

chain_call_latency_histogram = Histogram(
    "autopay_chain_call_seconds",
    "Chain adapter call latency",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_execution(status: str, reason: str | None, duration_seconds: float) -> None:
    """Record a final execution outcome"""
    execution_counter.labels(status=status, reason=reason or "none").inc()
    execution_duration_histogram.observe(duration_seconds)
