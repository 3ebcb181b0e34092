"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Allocation metrics
allocation_picks = Counter(
    'allocation_picks_total',
    'Booking target picks made by the allocation engine',
    ['mode', 'result']  # result: picked, empty
)

allocation_retries = Counter(
    'allocation_cas_retries_total',
    'Pick-and-bump retries due to routing version conflicts'
)

allocation_latency = Histogram(
    'allocation_pick_latency_seconds',
    'Pick-and-bump transaction latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Fallback chain metrics
booking_resolutions = Counter(
    'booking_resolutions_total',
    'Booking link resolutions by winning tier',
    ['tier']  # content_override, allocation, legacy_closer, profile_default, none
)

# Reconciliation metrics
webhook_events = Counter(
    'webhook_events_total',
    'Payment processor events received',
    ['event_type', 'outcome']  # handled, ignored, duplicate, error
)

purchase_upserts = Counter(
    'purchase_upserts_total',
    'Purchase upsert outcomes',
    ['outcome']  # inserted, updated, replayed, raced
)

booking_linkage = Counter(
    'booking_linkage_total',
    'Linkage attempts between purchases and bookings',
    ['result']  # linked, no_candidate, already_linked, error
)

# Payment link metrics
payment_links = Counter(
    'payment_links_total',
    'Payment link requests',
    ['plan_type', 'result']  # result: link_sent, rejected, processor_error
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_allocation(mode: str, picked: bool):
    result = "picked" if picked else "empty"
    allocation_picks.labels(mode=mode, result=result).inc()


def record_resolution(tier: str):
    """Tier: content_override, allocation, legacy_closer, profile_default, none"""
    booking_resolutions.labels(tier=tier).inc()


def record_webhook(event_type: str, outcome: str):
    webhook_events.labels(event_type=event_type, outcome=outcome).inc()


def record_purchase_upsert(outcome: str):
    purchase_upserts.labels(outcome=outcome).inc()


def record_linkage(result: str):
    booking_linkage.labels(result=result).inc()


def record_payment_link(plan_type: str, result: str):
    payment_links.labels(plan_type=plan_type, result=result).inc()
