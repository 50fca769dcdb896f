"""Tests for tenant namespace lifecycle handling."""

from dataclasses import replace

from tenantmeter.controllers import TenantLifecycleReconciler
from tenantmeter.models import MeteringRecord, Namespace, ResourceQuota
from tenantmeter.models.metering import metering_record_name, quota_name


def _metering(store, settings, ns_name):
    return store.get(MeteringRecord, settings.system_namespace, metering_record_name(ns_name))


def test_tenant_namespace_gets_quota_and_metering(store, settings, clock, make_tenant):
    make_tenant("team-a", owner="alice")
    result = TenantLifecycleReconciler(store, settings, clock).reconcile("", "team-a")
    assert result.requeue_after is None

    record = _metering(store, settings, "team-a")
    assert record.spec.owner == "alice"
    assert record.spec.namespace == "team-a"
    assert record.spec.interval_minutes == 60
    assert record.spec.accumulator == {}
    assert record.status.last_billing_timestamp == clock.now

    quota = store.get(ResourceQuota, "team-a", quota_name("team-a"))
    assert quota.spec.hard == settings.default_quota


def test_metering_creation_is_idempotent(store, settings, clock, make_tenant):
    make_tenant("team-a", owner="alice")
    TenantLifecycleReconciler(store, settings, clock).reconcile("", "team-a")
    first = _metering(store, settings, "team-a")

    # a later pass with a different interval must not clobber the record
    clock.advance(120)
    other = TenantLifecycleReconciler(store, replace(settings, interval_minutes=5), clock)
    other.reconcile("", "team-a")
    second = _metering(store, settings, "team-a")

    assert second.spec.owner == "alice"
    assert second.spec.interval_minutes == 60
    assert second.metadata.resource_version == first.metadata.resource_version
    assert len(store.list(MeteringRecord)) == 1


def test_quota_is_overwritten_with_default_policy(store, settings, clock, make_tenant):
    make_tenant("team-a")
    quota = ResourceQuota.new("team-a", quota_name("team-a"))
    quota.spec.hard = {"pods": "1"}
    store.create(quota)

    TenantLifecycleReconciler(store, settings, clock).reconcile("", "team-a")
    assert store.get(ResourceQuota, "team-a", quota_name("team-a")).spec.hard == settings.default_quota


def test_namespace_without_owner_is_ignored(store, settings, clock, make_tenant):
    make_tenant("kube-system", owner=None)
    TenantLifecycleReconciler(store, settings, clock).reconcile("", "kube-system")
    assert store.list(MeteringRecord) == []
    assert store.list(ResourceQuota) == []


def test_deleting_namespace_removes_metering(store, settings, clock, make_tenant):
    ns = make_tenant("team-a")
    reconciler = TenantLifecycleReconciler(store, settings, clock)
    reconciler.reconcile("", "team-a")

    ns.metadata.deletion_timestamp = clock.now + 10
    store.update(ns)
    reconciler.reconcile("", "team-a")
    assert store.list(MeteringRecord) == []

    # absence is not an error
    reconciler.reconcile("", "team-a")


def test_vanished_namespace_removes_metering(store, settings, clock, make_tenant):
    make_tenant("team-a")
    reconciler = TenantLifecycleReconciler(store, settings, clock)
    reconciler.reconcile("", "team-a")

    store.delete(Namespace, "", "team-a")
    reconciler.reconcile("", "team-a")
    assert store.list(MeteringRecord) == []
