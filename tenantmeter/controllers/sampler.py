"""Workload usage sampler.

On every pass the sampler publishes its price table.  When its own interval
has elapsed it also scans running tenant pods, prices each container's
declared resources and publishes one resource-usage record per tenant.

Container resources use the limit, falling back to the request, and are
priced with truncating division.  Storage is not visible per container; it
is read once per tenant from the quota usage snapshot and rounded up.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict

from metrics_prometheus.metering import sampled_cost_total
from tenantmeter.config_models import MeteringSettings
from tenantmeter.controllers.result import DONE, ReconcileResult
from tenantmeter.errors import AlreadyExistsError, NotFoundError
from tenantmeter.models import (
    Namespace,
    Pod,
    PodPhase,
    PriceTableEntry,
    ResourceQuota,
    ResourceUsage,
    ResourceUsageRecord,
    UsageSampler,
)
from tenantmeter.models.metering import (
    DEFAULT_POD_OBJECT_KINDS,
    STORAGE_QUOTA_KEY,
    STORAGE_RESOURCE,
    PriceTableSpec,
    ResourceUsageSpec,
    price_entry_name,
    quota_name,
    usage_record_name,
)
from tenantmeter.store import ObjectStore, create_or_update, retry_on_conflict
from tenantmeter.utils.quantity import add_quantities, ceil_cost, floor_cost

logger = logging.getLogger(__name__)


def _add_usage(entries: Dict[str, ResourceUsage], kind: str, used: str, cost: int, now: int, namespace: str) -> None:
    current = entries.get(kind)
    if current is None:
        entries[kind] = ResourceUsage(used=used, cost=cost, timestamp=now, namespace=namespace)
        return
    current.used = add_quantities(current.used, used)
    current.cost += cost
    current.timestamp = now


class UsageSamplerReconciler:
    """Reconcile ``UsageSampler`` objects into resource-usage records."""

    watches = UsageSampler

    def __init__(
        self,
        store: ObjectStore,
        settings: MeteringSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            sampler = self.store.get(UsageSampler, namespace, name)
        except NotFoundError:
            return DONE

        interval = max(1, sampler.spec.interval_minutes) * 60
        self.publish_prices(sampler)

        now = int(self.clock())
        if now - sampler.status.last_sample_timestamp >= interval:
            self.sample(sampler, now)
        return ReconcileResult(requeue_after=interval)

    def publish_prices(self, sampler: UsageSampler) -> PriceTableEntry:
        """Upsert the price table entry advertising this sampler's resources."""

        resource_name = sampler.spec.resource_name
        template = PriceTableEntry.new(
            self.settings.system_namespace,
            price_entry_name(resource_name),
            spec=PriceTableSpec(resource_name=resource_name),
        )

        def _apply(entry: PriceTableEntry) -> None:
            entry.spec.resource_name = resource_name
            entry.spec.resources = {k: v.model_copy() for k, v in sampler.spec.resources.items()}
            entry.spec.object_kinds = list(DEFAULT_POD_OBJECT_KINDS)

        entry, op = create_or_update(
            self.store,
            template,
            _apply,
            attempts=self.settings.conflict_retries,
            base_delay=self.settings.retry_delay,
        )
        logger.debug("price table %s %s", entry.name, op)
        return entry

    def tenant_namespaces(self) -> Dict[str, str]:
        """Return ``{namespace: owner}`` for live tenant namespaces."""
        tenants = {}
        for ns in self.store.list(Namespace):
            owner = ns.owner(self.settings.owner_annotation)
            if owner is not None and not ns.is_deleting:
                tenants[ns.name] = owner
        return tenants

    def collect_usage(self, sampler: UsageSampler, now: int) -> Dict[str, Dict[str, ResourceUsage]]:
        """Return priced usage per tenant namespace."""

        prices = sampler.spec.resources
        tenants = self.tenant_namespaces()
        usage: Dict[str, Dict[str, ResourceUsage]] = {}

        for pod in self.store.list(Pod):
            if pod.phase != PodPhase.RUNNING:
                logger.debug("pod %s/%s is %s, skipped", pod.namespace, pod.name, pod.phase.value)
                continue
            if pod.namespace not in tenants:
                logger.debug("pod %s/%s is not in a tenant namespace", pod.namespace, pod.name)
                continue
            entries = usage.setdefault(pod.namespace, {})
            for container in pod.containers:
                for kind, price in prices.items():
                    if kind == STORAGE_RESOURCE:
                        continue
                    quantity = container.resource_quantity(kind)
                    if quantity is None:
                        continue
                    try:
                        cost = floor_cost(quantity, price.price, price.unit)
                    except ValueError as exc:
                        logger.error(
                            "pod %s/%s container %s: bad %s quantity %r skipped: %s",
                            pod.namespace,
                            pod.name,
                            container.name,
                            kind,
                            quantity,
                            exc,
                        )
                        continue
                    _add_usage(entries, kind, quantity, cost, now, pod.namespace)

        storage_price = prices.get(STORAGE_RESOURCE)
        if storage_price is not None:
            for ns_name in tenants:
                try:
                    quota = self.store.get(ResourceQuota, ns_name, quota_name(ns_name))
                except NotFoundError:
                    logger.debug("no quota for %s, storage not sampled", ns_name)
                    continue
                stored = quota.status.used.get(STORAGE_QUOTA_KEY)
                if not stored:
                    continue
                try:
                    cost = ceil_cost(stored, storage_price.price, storage_price.unit)
                except ValueError as exc:
                    logger.error("quota %s: bad storage quantity %r skipped: %s", ns_name, stored, exc)
                    continue
                _add_usage(usage.setdefault(ns_name, {}), STORAGE_RESOURCE, stored, cost, now, ns_name)

        return {ns: entries for ns, entries in usage.items() if entries}

    def sample(self, sampler: UsageSampler, now: int) -> int:
        """Publish one usage record per tenant and advance the sampler.

        Returns the number of records created by this pass.
        """

        sequence_id = sampler.status.sequence_id
        created = 0
        for ns_name, entries in sorted(self.collect_usage(sampler, now).items()):
            record = ResourceUsageRecord.new(
                self.settings.system_namespace,
                usage_record_name(ns_name, sampler.spec.resource_name, sequence_id),
                spec=ResourceUsageSpec(target_namespace=ns_name, resources=entries),
            )
            try:
                self.store.create(record)
            except AlreadyExistsError:
                logger.info("usage record %s already published", record.name)
                continue
            created += 1
            for kind, entry in entries.items():
                sampled_cost_total.labels(resource=kind).inc(entry.cost)

        def _advance() -> None:
            current = self.store.get(UsageSampler, sampler.namespace, sampler.name)
            if current.status.sequence_id != sequence_id:
                logger.info("sampler %s already advanced past seq=%d", sampler.name, sequence_id)
                return
            current.status.last_sample_timestamp = now
            current.status.sequence_id += 1
            self.store.update(current)

        try:
            retry_on_conflict(
                _advance,
                attempts=self.settings.conflict_retries,
                base_delay=self.settings.retry_delay,
                operation="advance_sampler",
            )
        except NotFoundError:
            logger.info("sampler %s deleted during sampling", sampler.name)
        logger.info("sampler %s published %d usage records (seq=%d)", sampler.name, created, sequence_id)
        return created
