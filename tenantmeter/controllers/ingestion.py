"""Fold resource-usage records into tenant metering accumulators."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from metrics_prometheus.metering import usage_records_folded_total
from tenantmeter.config_models import MeteringSettings
from tenantmeter.controllers.result import DONE, ReconcileResult
from tenantmeter.errors import NotFoundError
from tenantmeter.models import MeteringRecord, ResourceUsage, ResourceUsageRecord, UsageRecordPhase
from tenantmeter.models.metering import metering_record_name
from tenantmeter.store import ObjectStore, retry_on_conflict
from tenantmeter.utils.quantity import add_quantities, milli_value

logger = logging.getLogger(__name__)


def fold_usage(accumulator: Dict[str, ResourceUsage], entries: Mapping[str, ResourceUsage]) -> None:
    """Merge ``entries`` into ``accumulator`` in place.

    Quantities and costs are summed; the timestamp of the latest entry wins.
    Absent kinds are inserted verbatim.
    """

    for kind, usage in entries.items():
        current = accumulator.get(kind)
        if current is None:
            accumulator[kind] = usage.model_copy()
            continue
        accumulator[kind] = ResourceUsage(
            used=add_quantities(current.used, usage.used),
            cost=current.cost + usage.cost,
            timestamp=usage.timestamp or current.timestamp,
            namespace=current.namespace or usage.namespace,
        )


class UsageIngestionReconciler:
    """Reconcile ``ResourceUsageRecord`` objects into metering records.

    Each fold stores the source record key in ``spec.folded_records`` within
    the same conditional update, so a record that is re-delivered before it
    was marked ``Complete`` is never counted twice.
    """

    watches = ResourceUsageRecord

    def __init__(self, store: ObjectStore, settings: MeteringSettings) -> None:
        self.store = store
        self.settings = settings

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            record = self.store.get(ResourceUsageRecord, namespace, name)
        except NotFoundError:
            return DONE
        if record.is_complete or record.is_deleting:
            return DONE

        record_key = f"{namespace}/{name}"
        groups: Dict[str, Dict[str, ResourceUsage]] = {}
        unresolved = 0
        for kind, usage in record.spec.resources.items():
            try:
                used = milli_value(usage.used)
            except ValueError as exc:
                logger.error(
                    "usage record %s: bad %s quantity %r skipped: %s", record_key, kind, usage.used, exc
                )
                continue
            if usage.cost < 0 or used < 0:
                logger.error("usage record %s: negative %s entry skipped", record_key, kind)
                continue
            target = self.resolve_metering(usage.namespace, record.spec.target_namespace)
            if target is None:
                logger.error(
                    "usage record %s: no metering record for %s (namespace=%s target=%s)",
                    record_key,
                    kind,
                    usage.namespace,
                    record.spec.target_namespace,
                )
                unresolved += 1
                continue
            groups.setdefault(target, {})[kind] = usage

        folded = 0
        for target, entries in groups.items():
            try:
                if self.fold_into(target, record_key, entries):
                    folded += 1
            except NotFoundError:
                logger.error("usage record %s: metering %s vanished during fold", record_key, target)

        # entries without a metering record yet keep the record pending
        if groups or not unresolved:
            self.mark_complete(namespace, name)
        if folded:
            usage_records_folded_total.inc()
        return DONE

    def resolve_metering(self, entry_namespace: str, target_namespace: str) -> Optional[str]:
        """Return the metering record name for an entry, or ``None``.

        The namespace named in the entry wins; the record's own target
        namespace is the fallback.
        """

        for ns in (entry_namespace, target_namespace):
            if not ns:
                continue
            name = metering_record_name(ns)
            try:
                self.store.get(MeteringRecord, self.settings.system_namespace, name)
            except NotFoundError:
                continue
            return name
        return None

    def fold_into(self, metering_name: str, record_key: str, entries: Mapping[str, ResourceUsage]) -> bool:
        """Fold ``entries`` into ``metering_name``; ``False`` if already folded."""

        window = self.settings.folded_record_window

        def _attempt() -> bool:
            metering = self.store.get(MeteringRecord, self.settings.system_namespace, metering_name)
            if record_key in metering.spec.folded_records:
                logger.info("usage record %s already folded into %s", record_key, metering_name)
                return False
            fold_usage(metering.spec.accumulator, entries)
            metering.spec.folded_records.append(record_key)
            del metering.spec.folded_records[:-window]
            self.store.update(metering)
            return True

        changed = retry_on_conflict(
            _attempt,
            attempts=self.settings.conflict_retries,
            base_delay=self.settings.retry_delay,
            operation="fold_usage",
        )
        if changed:
            logger.debug("folded %s into %s: %s", record_key, metering_name, sorted(entries))
        return changed

    def mark_complete(self, namespace: str, name: str) -> None:
        def _attempt() -> None:
            record = self.store.get(ResourceUsageRecord, namespace, name)
            if record.is_complete:
                return
            record.status.phase = UsageRecordPhase.COMPLETE
            self.store.update(record)

        try:
            retry_on_conflict(
                _attempt,
                attempts=self.settings.conflict_retries,
                base_delay=self.settings.retry_delay,
                operation="mark_complete",
            )
        except NotFoundError:
            logger.debug("usage record %s/%s deleted before completion", namespace, name)
