"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total reservation (hold) attempts',
    ['outcome']  # created, seat_unavailable, invalid_show, invalid_request
)

claim_latency = Histogram(
    'seat_claim_latency_seconds',
    'Latency of the per-show claim critical section',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

reservation_confirmations = Counter(
    'reservation_confirmations_total',
    'Confirm calls by outcome',
    ['outcome']  # confirmed, already_confirmed, reservation_expired
)

reservation_releases = Counter(
    'reservation_releases_total',
    'Release calls by outcome',
    ['outcome']  # released, not_authorized, already_terminal
)

reservations_expired = Counter(
    'reservations_expired_total',
    'Pending reservations cancelled because their hold TTL lapsed',
    ['trigger']  # sweep, deferred, confirm
)

# Payment captured for a reservation that had already expired.
# Alert on any increase: these need manual reconciliation.
payment_anomalies = Counter(
    'reservation_payment_anomalies_total',
    'Payments reported for reservations that were no longer pending'
)

# Ledger metrics
ledger_operations = Counter(
    'ledger_operations_total',
    'Seat ledger operations',
    ['operation']  # claim, release, confirm, sweep
)

ledger_retries = Counter(
    'db_retry_attempts_total',
    'Seat ledger retries due to version conflicts'
)

# Live availability stream
active_subscriptions = Gauge(
    'seat_stream_active_subscriptions',
    'Open live seat-map subscriptions'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)

redis_lock_fallbacks = Counter(
    'redis_lock_fallbacks_total',
    'Show lock acquisitions that fell back to the in-process lock'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )

# Convenience functions for instrumentation
def record_reservation_attempt(outcome: str):
    """Record hold attempt. Outcome: created, seat_unavailable, invalid_show, invalid_request"""
    reservation_attempts.labels(outcome=outcome).inc()

def record_confirmation(outcome: str):
    reservation_confirmations.labels(outcome=outcome).inc()

def record_release(outcome: str):
    reservation_releases.labels(outcome=outcome).inc()

def record_expiry(trigger: str, count: int = 1):
    """Record expired reservations. Trigger: sweep, deferred, confirm"""
    if count:
        reservations_expired.labels(trigger=trigger).inc(count)

def record_ledger_operation(operation: str):
    """Record ledger operation. Operation: claim, release, confirm, sweep"""
    ledger_operations.labels(operation=operation).inc()

def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
