# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports engine metrics in Prometheus format.

Metrics:
- Operations by name, ledger and outcome; operation latency
- Delegation status checks and current status
- Subscription notifications, losses and active subscriptions
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from ..protocol.types.common import DelegationStatus

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# OPERATION METRICS
# ═══════════════════════════════════════════════════════════════════

operations_total = Counter(
    'ercounter_operations_total',
    'Mutating and read operations dispatched by the engine',
    ['operation', 'ledger', 'outcome'],
    registry=metrics_registry
)

operation_duration_seconds = Histogram(
    'ercounter_operation_duration_seconds',
    'Wall time of engine operations, including confirmation waits',
    ['operation'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# DELEGATION METRICS
# ═══════════════════════════════════════════════════════════════════

status_checks_total = Counter(
    'ercounter_status_checks_total',
    'Delegation status checks by result',
    ['result'],
    registry=metrics_registry
)

delegation_status = Gauge(
    'ercounter_delegation_status',
    'Current delegation status (1 for the active state)',
    ['status'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# SUBSCRIPTION METRICS
# ═══════════════════════════════════════════════════════════════════

subscription_events_total = Counter(
    'ercounter_subscription_events_total',
    'Account change notifications received',
    ['ledger'],
    registry=metrics_registry
)

subscription_losses_total = Counter(
    'ercounter_subscription_losses_total',
    'Subscriptions terminated by connection loss',
    ['ledger'],
    registry=metrics_registry
)

subscriptions_active = Gauge(
    'ercounter_subscriptions_active',
    'Live account subscriptions',
    ['ledger'],
    registry=metrics_registry
)


def record_status(status: DelegationStatus):
    """Sets the status gauge so exactly one state reads 1."""
    for s in DelegationStatus:
        delegation_status.labels(status=s.value).set(1 if s == status else 0)
