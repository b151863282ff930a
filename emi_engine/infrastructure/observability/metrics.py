"""Prometheus metrics for the EMI lifecycle, penalty ledger and daily batch"""

from prometheus_client import Counter, Histogram

# Application metrics
application_decision_counter = Counter(
    "emi_application_decision_total",
    "EMI application eligibility outcomes",
    ["outcome"],  # approved | rejected
)

installment_payment_counter = Counter(
    "emi_installment_payments_total",
    "Installment payment events recorded",
    ["outcome"],  # paid | failed | conflict
)

# Ledger metrics
ledger_transition_counter = Counter(
    "emi_ledger_transitions_total",
    "Penalty ledger state transitions",
    ["status"],  # grace_period | overdue | paid | waived
)

# Notification metrics
notification_counter = Counter(
    "emi_notifications_total",
    "Notification dispatch attempts by milestone",
    ["type", "outcome"],  # outcome: sent | failed
)

notification_latency_histogram = Histogram(
    "notification_sink_latency_seconds",
    "Notification sink response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Collaborator metrics
eligibility_failures_counter = Counter(
    "eligibility_failures_total",
    "Failed eligibility service calls",
)

# Batch metrics
batch_run_counter = Counter(
    "emi_batch_runs_total",
    "Daily batch runs",
    ["outcome"],  # completed | failed | skipped
)

batch_duration_histogram = Histogram(
    "emi_batch_duration_seconds",
    "Daily batch run duration",
    buckets=[1, 5, 15, 30, 60, 300, 900, 1800],
)

batch_entry_failures_counter = Counter(
    "emi_batch_entry_failures_total",
    "Batch entries that failed and were left for the next run",
    ["batch_pass"],  # upcoming | due_today | overdue | activation
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_batch_run(outcome: str, duration_seconds: float) -> None:
    """Record run outcome and duration; skipped runs are counted but not timed"""
    batch_run_counter.labels(outcome=outcome).inc()
    if outcome != "skipped":
        batch_duration_histogram.observe(duration_seconds)
