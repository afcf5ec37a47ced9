"""Prometheus metrics for monitoring settlement runs, payouts, and webhook performance"""

from prometheus_client import Counter, Histogram

# Settlement run metrics
settlement_run_counter = Counter(
    "settlement_runs_total",
    "Settlement runs finished",
    ["run_type", "outcome"],  # completed | processing | errored
)

settlement_rejection_counter = Counter(
    "settlement_run_rejections_total",
    "Settlement run requests rejected before execution",
    ["reason"],
)

lump_outcome_counter = Counter(
    "settlement_lumps_total",
    "Settlement lumps processed",
    ["outcome"],  # settled | subaccount_payout | payout | bank_resolution | persistence
)

settled_amount_counter = Counter(
    "settlement_settled_minor_total",
    "Amount settled to businesses and sub-accounts, in minor units",
    ["destination"],  # bank | wallet | subaccount
)

# Payout provider metrics
payout_latency_histogram = Histogram(
    "payout_latency_seconds",
    "Payout provider transfer response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

payout_failure_counter = Counter(
    "payout_failures_total",
    "Failed payout provider transfers",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement_run(run_type: str, outcome: str) -> None:
    settlement_run_counter.labels(run_type=run_type, outcome=outcome).inc()


def record_rejection(reason: str) -> None:
    settlement_rejection_counter.labels(reason=reason).inc()


def record_lump(success: bool, failure_kind: str | None, settled_minor: int, destination: str) -> None:
    """Record lump outcome and the amount that left the funding wallet"""
    lump_outcome_counter.labels(outcome="settled" if success else (failure_kind or "unknown")).inc()
    if success and settled_minor > 0:
        settled_amount_counter.labels(destination=destination).inc(settled_minor)
