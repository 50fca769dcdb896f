"""Reconcilers for tenant metering and billing.

Each reconciler handles exactly one object kind and is safe to run any
number of times, concurrently with itself, for the same object.
"""

from .billing import BillingReconciler, compute_total_cost, rotate_history
from .ingestion import UsageIngestionReconciler, fold_usage
from .lifecycle import TenantLifecycleReconciler
from .result import ReconcileResult
from .sampler import UsageSamplerReconciler

__all__ = [
    "BillingReconciler",
    "ReconcileResult",
    "TenantLifecycleReconciler",
    "UsageIngestionReconciler",
    "UsageSamplerReconciler",
    "compute_total_cost",
    "fold_usage",
    "rotate_history",
]
