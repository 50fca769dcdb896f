"""Prometheus metrics utilities for tenantmeter."""

from .metering import (
    billed_amount_total,
    ledger_deductions_total,
    sampled_cost_total,
    store_conflicts_total,
    usage_records_folded_total,
)

__all__ = [
    "billed_amount_total",
    "ledger_deductions_total",
    "sampled_cost_total",
    "store_conflicts_total",
    "usage_records_folded_total",
]
