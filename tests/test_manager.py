import threading

import pytest

from tenantmeter.controllers import ReconcileResult
from tenantmeter.errors import NegativeCostError
from tenantmeter.manager import ControllerManager, build_manager
from tenantmeter.models import (
    Container,
    LedgerDeduction,
    MeteringRecord,
    Namespace,
    Pod,
    PodPhase,
    ResourcePrice,
    ResourceQuota,
    ResourceUsageRecord,
    UsageSampler,
)
from tenantmeter.models.metering import UsageSamplerSpec


class RecordingReconciler:
    watches = Namespace

    def __init__(self, outcomes=None):
        self.calls = []
        self.outcomes = list(outcomes or [])

    def reconcile(self, namespace, name):
        self.calls.append((namespace, name))
        outcome = self.outcomes.pop(0) if self.outcomes else ReconcileResult()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def manager(store, clock):
    return ControllerManager(store, clock, base_backoff=1.0, max_backoff=4.0)


KEY = ("Namespace", "", "team-a")


def test_enqueue_keeps_earliest_due_time(manager, clock):
    manager.register(RecordingReconciler())
    manager.enqueue(KEY, 10)
    manager.enqueue(KEY, 5)
    manager.enqueue(KEY, 20)
    assert manager.pending() == {KEY: clock.now + 5}


def test_unregistered_kind_is_ignored(manager):
    manager.enqueue(("Pod", "team-a", "web"))
    assert manager.pending() == {}


def test_run_once_processes_only_due_keys(manager, clock):
    reconciler = RecordingReconciler()
    manager.register(reconciler)
    manager.enqueue(KEY)
    manager.enqueue(("Namespace", "", "team-b"), 30)

    assert manager.run_once() == 1
    assert reconciler.calls == [("", "team-a")]

    clock.advance(30)
    assert manager.run_once() == 1
    assert manager.pending() == {}


def test_requeue_after_schedules_revisit(manager, clock):
    manager.register(RecordingReconciler([ReconcileResult(requeue_after=60)]))
    manager.enqueue(KEY)
    manager.run_once()
    assert manager.pending() == {KEY: clock.now + 60}


def test_failures_back_off_exponentially_and_reset(manager, clock):
    reconciler = RecordingReconciler(
        [RuntimeError("boom"), NegativeCostError("bad"), RuntimeError("boom"), RuntimeError("boom")]
    )
    manager.register(reconciler)
    manager.enqueue(KEY)

    delays = []
    for _ in range(4):
        manager.run_once()
        due = manager.pending()[KEY]
        delays.append(due - clock.now)
        clock.now = due
    assert delays == [1.0, 2.0, 4.0, 4.0]

    manager.run_once()
    assert manager.pending() == {}
    # success cleared the failure count
    reconciler.outcomes = [RuntimeError("boom")]
    manager.enqueue(KEY)
    manager.run_once()
    assert manager.pending()[KEY] == clock.now + 1.0


def test_handle_event_queues_object(manager, clock):
    manager.register(RecordingReconciler())
    manager.handle_event(None)
    manager.handle_event({"type": "ADDED", "kind": "Namespace", "namespace": "", "name": "team-a"})
    assert manager.pending() == {KEY: clock.now}


def test_initial_sync_lists_watched_kinds(manager, make_tenant):
    make_tenant("team-a")
    make_tenant("team-b")
    manager.register(RecordingReconciler())
    assert manager.initial_sync() == 2
    assert sorted(manager.pending()) == [KEY, ("Namespace", "", "team-b")]


def test_run_with_stop_set_only_syncs(store, clock, make_tenant):
    make_tenant("team-a")
    manager = ControllerManager(store, clock)
    manager.register(RecordingReconciler())
    stop = threading.Event()
    stop.set()
    manager.run(stop, poll_interval=0.01)
    assert manager.pending() == {KEY: clock.now}


def test_build_manager_registers_all_controllers(store, settings, clock):
    manager = build_manager(store, settings, clock)
    assert manager.kinds == ["MeteringRecord", "Namespace", "ResourceUsageRecord", "UsageSampler"]


def test_tenant_is_metered_and_billed_end_to_end(store, settings, clock, make_tenant):
    make_tenant("team-a", owner="alice")
    store.create(
        Pod.new(
            "team-a",
            "web",
            phase=PodPhase.RUNNING,
            containers=[Container(name="app", limits={"cpu": "2"})],
        )
    )
    store.create(
        UsageSampler.new(
            settings.system_namespace,
            "pod-sampler",
            spec=UsageSamplerSpec(resources={"cpu": ResourcePrice(unit="1", price=3)}),
        )
    )
    manager = build_manager(store, settings, clock)

    manager.initial_sync()
    manager.run_once()
    assert store.get(ResourceQuota, "team-a", "quota-team-a")
    metering = store.get(MeteringRecord, settings.system_namespace, "metering-team-a")
    assert metering.status.last_billing_timestamp == clock.now
    assert store.get(ResourceUsageRecord, settings.system_namespace, "team-a-pod-0")

    # pick up the objects created by the first pass
    manager.initial_sync()
    manager.run_once()
    record = store.get(ResourceUsageRecord, settings.system_namespace, "team-a-pod-0")
    assert record.is_complete
    metering = store.get(MeteringRecord, settings.system_namespace, "metering-team-a")
    assert metering.spec.accumulator["cpu"].cost == 6

    clock.advance(3600)
    manager.run_once()
    ledger = store.list(LedgerDeduction, namespace=settings.system_namespace)
    assert [(d.name, d.spec.amount) for d in ledger] == [("deduction-alice-0", 6)]
    metering = store.get(MeteringRecord, settings.system_namespace, "metering-team-a")
    assert metering.spec.accumulator == {}
    assert metering.status.total_amount == 6
