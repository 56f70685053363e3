from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)

PAYMENT_NOTICES = Counter(
    "payment_notices_total",
    "Inbound payment notices by channel and outcome",
    ["channel", "outcome"],
)
PAYMENT_SIGNATURE_FAILURES = Counter(
    "payment_signature_failures_total",
    "Inbound notices rejected at signature validation",
    ["provider"],
)
PAYMENT_INGEST_ERRORS = Counter(
    "payment_ingest_errors_total",
    "Inbound notices that failed after authentication",
    ["channel", "stage"],
)
NOTIFIER_DROPPED = Counter(
    "notifier_dropped_events_total",
    "Payment events dropped because the outbound queue was full or publishing failed",
    ["reason"],
)
RECONCILIATION_GAPS = Counter(
    "reconciliation_gaps_total",
    "Provider transactions found missing from the ledger",
    ["provider"],
)
RECONCILIATION_DURATION = Histogram(
    "reconciliation_duration_seconds",
    "Reconciliation sweep duration",
    ["provider", "status"],
)


def observe_notice(channel: str, outcome: str) -> None:
    PAYMENT_NOTICES.labels(channel=channel, outcome=outcome).inc()


def observe_reconciliation(provider: str, status: str, duration: float) -> None:
    RECONCILIATION_DURATION.labels(provider=provider, status=status).observe(duration)
