"""Prometheus counters for the metering and billing controllers.

Billed amounts are integer minor units, so the exported totals follow

.. math::

    B_{owner} = \\sum_{k} a_k

where ``a_k`` is the amount of the ledger deduction emitted for billing
period ``k``.  Zero-amount periods emit no deduction and do not move the
counters.
"""

from __future__ import annotations

from prometheus_client import Counter

# Ledger deductions created per tenant owner.
ledger_deductions_total = Counter(
    "ledger_deductions_total", "Ledger deductions emitted per owner", ["owner"]
)

# Amount handed to the ledger per tenant owner, in minor currency units.
billed_amount_total = Counter(
    "billed_amount_total", "Amount billed per owner in minor units", ["owner"]
)

# Resource-usage records folded into a metering accumulator.
usage_records_folded_total = Counter(
    "usage_records_folded_total", "Resource-usage records folded into accumulators"
)

# Stale-version rejections observed by conditional updates.  The
# ``operation`` label names the read-modify-write that was retried.
store_conflicts_total = Counter(
    "store_conflicts_total", "Optimistic concurrency conflicts", ["operation"]
)

# Cost published by the usage sampler per resource kind.
sampled_cost_total = Counter(
    "sampled_cost_total", "Cost published by the usage sampler", ["resource"]
)
