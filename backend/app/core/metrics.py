"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    """Create a counter, reusing the registered one on module reload"""
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Checkout metrics
checkouts_counter = _counter(
    'payments_checkouts_total',
    'Total number of checkout attempts',
    ['product_type', 'gateway', 'outcome']
)

gateway_errors_counter = _counter(
    'payments_gateway_errors_total',
    'Total number of failed gateway calls',
    ['gateway']
)

# Webhook metrics
webhook_events_counter = _counter(
    'payments_webhook_events_total',
    'Total number of webhook deliveries by outcome',
    ['provider', 'outcome']
)

# Entitlement metrics
entitlements_issued_counter = _counter(
    'payments_entitlements_issued_total',
    'Total number of entitlements created',
    ['type']
)

perk_allocations_counter = _counter(
    'payments_perk_allocations_total',
    'Total number of perk allocations by resulting status',
    ['status']
)
