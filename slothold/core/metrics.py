"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Slot hold metrics
lock_operations = Counter(
    'slot_lock_operations_total',
    'Slot lock operations issued against the booking backend',
    ['operation', 'result']  # acquire/verify/confirm/release x success, conflict, expired, invalid, error
)

rpc_latency = Histogram(
    'booking_rpc_latency_seconds',
    'Booking backend RPC latency',
    ['function'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

booking_errors = Counter(
    'booking_flow_errors_total',
    'Errors surfaced to the booking UI',
    ['kind']  # capacity_conflict, lock_expired, validation_error, network_error
)

stale_responses = Counter(
    'booking_stale_responses_total',
    'Backend responses discarded because the booking moved on',
    ['operation']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

# Session metrics
active_sessions = Gauge(
    'booking_sessions_active',
    'Booking sessions currently held in memory'
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


def record_lock_operation(operation: str, result: str):
    """Record lock operation. Operation: acquire, verify, confirm, release"""
    lock_operations.labels(operation=operation, result=result).inc()


def record_booking_error(kind: str):
    booking_errors.labels(kind=kind).inc()


def record_stale_response(operation: str):
    stale_responses.labels(operation=operation).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
