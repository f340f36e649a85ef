"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Checkout metrics
checkout_requests = Counter(
    'checkout_requests_total',
    'Checkout prepare requests',
    ['outcome']  # free, already_confirmed, pending
)

# Payment signal metrics
payment_signals = Counter(
    'payment_signals_total',
    'Payment reconciliation signals received',
    ['source', 'result']  # source: confirm/webhook/fail
)

gateway_confirm_latency = Histogram(
    'gateway_confirm_latency_seconds',
    'Payment gateway confirm call latency',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

webhook_verifications = Counter(
    'webhook_verifications_total',
    'Webhook trust checks',
    ['result']  # accepted, rejected
)

# Notification metrics
notifications_created = Counter(
    'notifications_total',
    'Notification fan-out results',
    ['result']  # created, skipped, failed
)

push_deliveries = Counter(
    'push_deliveries_total',
    'Push delivery log rows by status',
    ['status']  # sent, failed, skipped, duplicate
)

push_tokens_deactivated = Counter(
    'push_tokens_deactivated_total',
    'Device tokens deactivated after the provider reported them invalid'
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
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
def record_checkout(outcome: str):
    """Record checkout outcome. Outcome: free, already_confirmed, pending"""
    checkout_requests.labels(outcome=outcome).inc()

def record_payment_signal(source: str, result: str):
    payment_signals.labels(source=source, result=result).inc()

def record_webhook_verification(accepted: bool):
    result = "accepted" if accepted else "rejected"
    webhook_verifications.labels(result=result).inc()

def record_notification(result: str):
    notifications_created.labels(result=result).inc()

def record_push_delivery(status: str):
    push_deliveries.labels(status=status).inc()

request_latency = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency by route',
    ['method', 'route', 'status_code'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 10.0]
)

def record_request(method: str, route: str, status_code: int, duration_seconds: float):
    request_latency.labels(method=method, route=route, status_code=str(status_code)).observe(duration_seconds)
