"""Prometheus metrics for ledger activity and the notification scheduler"""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_operation_counter = Counter(
    "paydesk_ledger_operations_total",
    "Ledger mutations committed",
    ["operation"],  # record_payment | revert_payment | mark_as_paid | apply_late_fee | ...
)

ledger_error_counter = Counter(
    "paydesk_ledger_errors_total",
    "Ledger operations rejected or failed",
    ["operation", "error"],
)

payment_amount_histogram = Histogram(
    "paydesk_payment_amount_cents",
    "Installment payment sizes in cents",
    buckets=[1_000, 5_000, 10_000, 50_000, 100_000, 500_000, 1_000_000],
)

# Notification metrics
notification_created_counter = Counter(
    "paydesk_notifications_created_total",
    "Notifications persisted",
    ["kind"],  # overdue | upcoming | stock_low | manual
)

notification_suppressed_counter = Counter(
    "paydesk_notifications_suppressed_total",
    "Notifications skipped by deduplication",
    ["kind", "reason"],  # reason: active | today | constraint | not_restocked
)

# Scheduler health
scheduler_tick_counter = Counter(
    "paydesk_scheduler_ticks_total",
    "Scheduler ticks by outcome",
    ["outcome"],  # ok | failed
)

scheduler_item_failure_counter = Counter(
    "paydesk_scheduler_item_failures_total",
    "Per-item failures inside a scheduler scan",
    ["scan"],
)

scheduler_tick_duration_histogram = Histogram(
    "paydesk_scheduler_tick_seconds",
    "Scheduler tick duration",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_ledger_operation(operation: str, amount_cents: int | None = None) -> None:
    """Count a committed ledger mutation; payments also feed the size histogram"""
    ledger_operation_counter.labels(operation=operation).inc()
    if operation == "record_payment" and amount_cents is not None:
        payment_amount_histogram.observe(amount_cents)


def record_ledger_error(operation: str, error: Exception) -> None:
    ledger_error_counter.labels(operation=operation, error=type(error).__name__).inc()
