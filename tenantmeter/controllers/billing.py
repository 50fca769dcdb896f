"""Billing engine: close elapsed periods and hand deductions to the ledger.

A metering record is revisited on a fixed cadence.  Once
``now - last_billing_timestamp >= interval`` the pass closes the period in a
single conditional update that

* sums the accumulator (a negative total aborts without mutation),
* clears the accumulator entries,
* appends an hourly history entry and folds the first 24 hourly entries
  into one daily entry when the window is full,
* advances ``total_amount``, ``last_billing_timestamp`` and ``sequence_id``,
* records a ``pending_deduction`` for non-zero totals.

Only after that commit is the ledger deduction created under the
deterministic name ``(owner, sequence_id)``.  A crash in between leaves the
pending marker behind and the next pass finishes the handoff.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Mapping, Optional

from metrics_prometheus.metering import billed_amount_total, ledger_deductions_total
from tenantmeter.config_models import MeteringSettings
from tenantmeter.controllers.result import DONE, ReconcileResult
from tenantmeter.errors import (
    AlreadyExistsError,
    DuplicateBillingError,
    InvariantViolation,
    NegativeCostError,
    NotFoundError,
)
from tenantmeter.models import (
    BillingEntry,
    BillingPeriod,
    LedgerDeduction,
    MeteringRecord,
    PendingDeduction,
    ResourceCharge,
    ResourceUsage,
)
from tenantmeter.models.metering import (
    HOURLY_WINDOW,
    METERING_SOURCE_LABEL,
    LedgerDeductionSpec,
    MeteringStatus,
    ledger_deduction_name,
)
from tenantmeter.store import ObjectStore, retry_on_conflict

logger = logging.getLogger(__name__)


def compute_total_cost(accumulator: Mapping[str, ResourceUsage]) -> int:
    """Return the summed cost of ``accumulator``.

    Raises
    ------
    NegativeCostError
        If the sum is below zero, which points at a pricing bug upstream.
    """

    total = sum(usage.cost for usage in accumulator.values())
    if total < 0:
        raise NegativeCostError(f"billing period sums to a negative amount: {total}")
    return total


def resource_breakdown(accumulator: Mapping[str, ResourceUsage]) -> List[ResourceCharge]:
    return [
        ResourceCharge(resource_kind=kind, used=usage.used, cost=usage.cost)
        for kind, usage in sorted(accumulator.items())
    ]


def rotate_history(status: MeteringStatus, entry: BillingEntry, window: int = HOURLY_WINDOW) -> None:
    """Append ``entry`` to the hourly history, folding full windows into days.

    When the hourly sequence reaches ``window`` entries the earliest
    ``window`` of them are removed and replaced by one daily entry carrying
    their summed amount.
    """

    hourly = status.billing_history_hourly
    hourly.append(entry)
    if len(hourly) >= window:
        amount = sum(e.amount for e in hourly[:window])
        del hourly[:window]
        status.billing_history_daily.append(
            BillingEntry(timestamp=entry.timestamp, amount=amount, period=BillingPeriod.DAY)
        )


class BillingReconciler:
    """Reconcile ``MeteringRecord`` objects on a timer."""

    watches = MeteringRecord

    def __init__(
        self,
        store: ObjectStore,
        settings: MeteringSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    def _retry(self, fn, operation: str):
        return retry_on_conflict(
            fn,
            attempts=self.settings.conflict_retries,
            base_delay=self.settings.retry_delay,
            operation=operation,
        )

    def _interval_seconds(self, metering: MeteringRecord) -> int:
        minutes = metering.spec.interval_minutes
        if minutes <= 0:
            minutes = self.settings.interval_minutes
        return minutes * 60

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            metering = self.store.get(MeteringRecord, namespace, name)
        except NotFoundError:
            return DONE
        if metering.is_deleting:
            return DONE

        try:
            if metering.status.pending_deduction is not None:
                self.deliver(metering, resume=True)

            now = int(self.clock())
            interval = self._interval_seconds(metering)
            elapsed = now - metering.status.last_billing_timestamp
            if elapsed < interval:
                return ReconcileResult(requeue_after=interval - elapsed)

            closed = self.close_period(namespace, name, now)
            if closed is not None and closed.status.pending_deduction is not None:
                self.deliver(closed, resume=False)
        except InvariantViolation:
            logger.exception("billing pass for %s/%s failed", namespace, name)
            raise
        return ReconcileResult(requeue_after=self.settings.interval_seconds)

    def close_period(self, namespace: str, name: str, now: int) -> Optional[MeteringRecord]:
        """Close the current period; ``None`` if another pass already did."""

        def _attempt() -> Optional[MeteringRecord]:
            metering = self.store.get(MeteringRecord, namespace, name)
            status = metering.status
            if now - status.last_billing_timestamp < self._interval_seconds(metering):
                return None
            if status.pending_deduction is not None:
                # previous handoff unfinished; never close over it
                raise DuplicateBillingError(
                    f"metering {name} still owes sequence {status.pending_deduction.sequence_id}"
                )

            accumulator = metering.spec.accumulator
            total = compute_total_cost(accumulator)
            breakdown = resource_breakdown(accumulator)
            sequence_id = status.sequence_id

            accumulator.clear()
            rotate_history(status, BillingEntry(timestamp=now, amount=total))
            status.total_amount += total
            status.last_billing_timestamp = now
            status.sequence_id = sequence_id + 1
            if total > 0:
                status.pending_deduction = PendingDeduction(
                    sequence_id=sequence_id,
                    amount=total,
                    timestamp=now,
                    resource_breakdown=breakdown,
                )
            return self.store.update(metering)

        closed = self._retry(_attempt, "close_period")
        if closed is not None:
            logger.info(
                "closed billing period for %s seq=%d total_billed=%d",
                name,
                closed.status.sequence_id - 1,
                closed.status.total_amount,
            )
        return closed

    def deliver(self, metering: MeteringRecord, *, resume: bool) -> None:
        """Create the ledger deduction for the pending period, then clear it.

        With ``resume`` an existing deduction is taken as proof of an earlier
        delivery only when it carries this record's source label, sequence
        and amount.  Any other name collision is a duplicate-billing error
        and nothing is overwritten.
        """

        pending = metering.status.pending_deduction
        if pending is None:
            return
        owner = metering.spec.owner
        source = f"{metering.namespace}/{metering.name}"
        ledger_name = ledger_deduction_name(owner, pending.sequence_id)
        deduction = LedgerDeduction.new(
            self.settings.system_namespace,
            ledger_name,
            spec=LedgerDeductionSpec(
                owner=owner,
                amount=pending.amount,
                timestamp=pending.timestamp,
                sequence_id=pending.sequence_id,
                resource_breakdown=pending.resource_breakdown,
            ),
        )
        deduction.metadata.labels[METERING_SOURCE_LABEL] = source
        try:
            self.store.create(deduction)
        except AlreadyExistsError:
            existing = self.store.get(LedgerDeduction, self.settings.system_namespace, ledger_name)
            delivered = (
                existing.metadata.labels.get(METERING_SOURCE_LABEL) == source
                and existing.spec.sequence_id == pending.sequence_id
                and existing.spec.amount == pending.amount
            )
            if not resume or not delivered:
                logger.error(
                    "ledger deduction %s already exists (source %s amount %d, pending %s amount %d)",
                    ledger_name,
                    existing.metadata.labels.get(METERING_SOURCE_LABEL),
                    existing.spec.amount,
                    source,
                    pending.amount,
                )
                raise DuplicateBillingError(f"ledger deduction {ledger_name} already exists")
            logger.info("ledger deduction %s was already delivered", ledger_name)
        else:
            ledger_deductions_total.labels(owner=owner).inc()
            billed_amount_total.labels(owner=owner).inc(pending.amount)
            logger.info("created ledger deduction %s amount=%d", ledger_name, pending.amount)

        self.clear_pending(metering.namespace, metering.name, pending.sequence_id)

    def clear_pending(self, namespace: str, name: str, sequence_id: int) -> None:
        def _attempt() -> None:
            metering = self.store.get(MeteringRecord, namespace, name)
            pending = metering.status.pending_deduction
            if pending is None or pending.sequence_id != sequence_id:
                return
            metering.status.pending_deduction = None
            self.store.update(metering)

        self._retry(_attempt, "clear_pending")
