"""Prometheus metrics for reconciliation passes."""
from prometheus_client import Counter, Histogram

RECONCILE_TOTAL = Counter(
    "fleet_reconcile_total",
    "Reconciliation passes by outcome",
    ["result"],
)

RECONCILE_DURATION = Histogram(
    "fleet_reconcile_duration_seconds",
    "Duration of a reconciliation pass",
)

OBJECTS_APPLIED = Counter(
    "fleet_objects_applied_total",
    "Managed objects applied by kind and action",
    ["kind", "action"],
)
