"""
Prometheus metrics for STK payment monitoring.

Tracks:
- Payment initiations by outcome
- Status checks by source and resolved status
- Provider callbacks by outcome
- Terminal writes by source
- PesaFlux API call counts and duration
"""
from prometheus_client import Counter, Histogram

# Initiation metrics
payment_initiations_total = Counter(
    "payment_initiations_total",
    "Total STK push initiation attempts",
    ["outcome"],  # accepted; rejected (declined or malformed); error (unreachable)
)

payment_amount_kes = Histogram(
    "payment_amount_kes",
    "Initiated payment amounts in KES",
    buckets=(10, 50, 100, 250, 500, 1000, 5000, 10000, 50000),
)

# Status metrics
status_checks_total = Counter(
    "status_checks_total",
    "Total status checks",
    ["source", "status"],  # source: database, provider
)

transaction_settlements_total = Counter(
    "transaction_settlements_total",
    "Terminal status writes",
    ["source", "status", "result"],  # result: updated, unchanged
)

# Callback metrics
callback_events_total = Counter(
    "callback_events_total",
    "Provider callbacks received",
    ["outcome"],  # updated, unchanged, ignored, pending
)

# PesaFlux API metrics
pesaflux_api_requests_total = Counter(
    "pesaflux_api_requests_total",
    "Total PesaFlux API requests",
    ["operation", "status"],  # operation: initiate, check_status
)

pesaflux_api_duration_seconds = Histogram(
    "pesaflux_api_duration_seconds",
    "PesaFlux API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 30.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_initiation(outcome: str, amount: int | None = None) -> None:
        """Record an initiation attempt."""
        payment_initiations_total.labels(outcome=outcome).inc()
        if amount is not None:
            payment_amount_kes.observe(amount)

    @staticmethod
    def record_status_check(source: str, status: str) -> None:
        """Record a status lookup."""
        status_checks_total.labels(source=source, status=status).inc()

    @staticmethod
    def record_settlement(source: str, status: str, updated: bool) -> None:
        """Record a guarded terminal write."""
        transaction_settlements_total.labels(
            source=source, status=status, result="updated" if updated else "unchanged"
        ).inc()

    @staticmethod
    def record_callback(outcome: str) -> None:
        callback_events_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_pesaflux_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record PesaFlux API call."""
        pesaflux_api_requests_total.labels(operation=operation, status=status).inc()
        pesaflux_api_duration_seconds.labels(operation=operation).observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
