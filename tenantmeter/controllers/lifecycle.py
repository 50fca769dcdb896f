"""Tenant lifecycle: quota and metering record per tenant namespace.

A namespace is a billable tenant when it carries the owner annotation.  On
creation the reconciler ensures a resource quota (always overwritten with
the default policy) and a metering record (created once, never modified
afterwards).  When the namespace is being deleted, or is already gone, the
metering record is removed.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from tenantmeter.config_models import MeteringSettings
from tenantmeter.controllers.result import DONE, ReconcileResult
from tenantmeter.errors import AlreadyExistsError, NotFoundError
from tenantmeter.models import MeteringRecord, Namespace, ResourceQuota
from tenantmeter.models.metering import MeteringSpec, MeteringStatus, metering_record_name, quota_name
from tenantmeter.store import ObjectStore, create_or_update

logger = logging.getLogger(__name__)


class TenantLifecycleReconciler:
    """Reconcile ``Namespace`` objects into quotas and metering records."""

    watches = Namespace

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
            ns = self.store.get(Namespace, "", name)
        except NotFoundError:
            self.delete_metering(name)
            return DONE

        owner = ns.owner(self.settings.owner_annotation)
        if owner is None:
            return DONE
        if ns.is_deleting:
            logger.info("namespace %s is deleting, removing metering record", name)
            self.delete_metering(name)
            return DONE

        self.sync_quota(name)
        self.sync_metering(ns, owner)
        return DONE

    def sync_quota(self, ns_name: str) -> ResourceQuota:
        """Create or overwrite the tenant quota with the default hard limits."""

        def _apply(quota: ResourceQuota) -> None:
            quota.spec.hard = dict(self.settings.default_quota)

        quota, op = create_or_update(
            self.store,
            ResourceQuota.new(ns_name, quota_name(ns_name)),
            _apply,
            attempts=self.settings.conflict_retries,
            base_delay=self.settings.retry_delay,
        )
        logger.debug("resource quota %s/%s %s", ns_name, quota.name, op)
        return quota

    def sync_metering(self, ns: Namespace, owner: str) -> MeteringRecord:
        """Create the metering record for ``ns`` unless one already exists.

        An existing record is returned untouched so later reconciliations
        never clobber its owner or interval.
        """

        system_ns = self.settings.system_namespace
        name = metering_record_name(ns.name)
        try:
            existing = self.store.get(MeteringRecord, system_ns, name)
        except NotFoundError:
            pass
        else:
            logger.debug("metering %s already exists", name)
            return existing

        record = MeteringRecord.new(
            system_ns,
            name,
            spec=MeteringSpec(
                owner=owner,
                namespace=ns.name,
                interval_minutes=self.settings.interval_minutes,
            ),
            # the first billing period starts when the tenant appears
            status=MeteringStatus(last_billing_timestamp=int(self.clock())),
        )
        try:
            created = self.store.create(record)
        except AlreadyExistsError:
            logger.debug("metering %s created concurrently", name)
            return self.store.get(MeteringRecord, system_ns, name)
        logger.info(
            "created metering %s owner=%s interval=%smin",
            name,
            owner,
            self.settings.interval_minutes,
        )
        return created

    def delete_metering(self, ns_name: str) -> None:
        """Delete the metering record of ``ns_name``; absence is not an error."""

        name = metering_record_name(ns_name)
        try:
            self.store.delete(MeteringRecord, self.settings.system_namespace, name)
        except NotFoundError:
            return
        logger.info("deleted metering %s", name)
