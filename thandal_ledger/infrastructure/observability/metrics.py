"""Prometheus metrics for monitoring collections, misses and webhook performance"""

from prometheus_client import Counter, Histogram

# Ledger metrics
loans_issued_counter = Counter(
    "thandal_loans_issued_total",
    "Loans issued or registered",
    ["origin"],  # new | existing
)

repayment_counter = Counter(
    "thandal_repayments_recorded_total",
    "Payments classified by resulting status",
    ["status"],
)

missed_repayment_counter = Counter(
    "thandal_repayments_missed_total",
    "Repayment rows marked Missed by day-close",
)

collected_paise_counter = Counter(
    "thandal_collected_paise_total",
    "Paise folded into idle capital at day-close",
)

day_close_counter = Counter(
    "thandal_day_close_total",
    "Day-close runs",
    ["outcome"],  # closed | already_closed | failed
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Event webhook response time",
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


def record_payment(status: str) -> None:
    repayment_counter.labels(status=status).inc()


def record_day_close(missed_count: int, collected_paise: int, already_closed: bool) -> None:
    """Record day-close metrics; a repeated close counts only as a run"""
    if already_closed:
        day_close_counter.labels(outcome="already_closed").inc()
        return

    day_close_counter.labels(outcome="closed").inc()
    missed_repayment_counter.inc(missed_count)
    collected_paise_counter.inc(collected_paise)
