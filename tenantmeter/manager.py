"""Route store events to reconcilers and drive timed revisits.

The manager owns a delayed work queue keyed by ``(kind, namespace, name)``.
A key is queued at most once; adding it again keeps the earliest due time.
Reconcilers report ``requeue_after`` for timer-driven revisits and failed
passes are requeued with exponential backoff

.. math::

    d_n = \\min(d_0 \\cdot 2^{n-1}, d_{max})

where ``n`` is the number of consecutive failures for the key.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from tenantmeter.config_models import MeteringSettings
from tenantmeter.controllers import (
    BillingReconciler,
    TenantLifecycleReconciler,
    UsageIngestionReconciler,
    UsageSamplerReconciler,
)
from tenantmeter.errors import InvariantViolation
from tenantmeter.store import RedisObjectStore, decode_event

logger = logging.getLogger(__name__)

Key = Tuple[str, str, str]


class ControllerManager:
    """Dispatch reconciliation passes for every registered kind.

    Parameters
    ----------
    store:
        Store used for the initial listing and for event subscription.
    clock:
        Time source, ``time.time`` by default.
    base_backoff, max_backoff:
        Bounds in seconds for the failure backoff.
    """

    def __init__(
        self,
        store: RedisObjectStore,
        clock: Callable[[], float] = time.time,
        *,
        base_backoff: float = 1.0,
        max_backoff: float = 300.0,
    ) -> None:
        self.store = store
        self.clock = clock
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self._reconcilers: Dict[str, object] = {}
        self._heap: List[Tuple[float, Key]] = []
        self._due: Dict[Key, float] = {}
        self._failures: Dict[Key, int] = {}
        self._lock = threading.Lock()

    def register(self, reconciler) -> None:
        """Register ``reconciler`` for the kind named by its ``watches`` class."""
        self._reconcilers[reconciler.watches.kind] = reconciler

    @property
    def kinds(self) -> List[str]:
        return sorted(self._reconcilers)

    def enqueue(self, key: Key, delay: float = 0.0) -> None:
        if key[0] not in self._reconcilers:
            return
        due = self.clock() + max(0.0, delay)
        with self._lock:
            current = self._due.get(key)
            if current is not None and current <= due:
                return
            self._due[key] = due
            heapq.heappush(self._heap, (due, key))

    def pending(self) -> Dict[Key, float]:
        with self._lock:
            return dict(self._due)

    def handle_event(self, event: Optional[Dict[str, str]]) -> None:
        """Queue the object named by a store event for immediate reconciliation."""
        if not event:
            return
        key = (event.get("kind", ""), event.get("namespace", ""), event.get("name", ""))
        logger.debug("event %s %s", event.get("type"), key)
        self.enqueue(key)

    def initial_sync(self) -> int:
        """List every watched kind and queue each object once."""
        count = 0
        for kind, reconciler in self._reconcilers.items():
            for obj in self.store.list(reconciler.watches):
                self.enqueue((kind, obj.namespace, obj.name))
                count += 1
        logger.info("initial sync queued %d objects", count)
        return count

    def _pop_due(self, now: float) -> Optional[Key]:
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                due, key = heapq.heappop(self._heap)
                if self._due.get(key) != due:
                    continue
                del self._due[key]
                return key
        return None

    def process(self, key: Key) -> None:
        """Run one reconciliation pass for ``key`` and schedule the follow-up."""
        kind, namespace, name = key
        reconciler = self._reconcilers[kind]
        try:
            result = reconciler.reconcile(namespace, name)
        except InvariantViolation:
            # already logged by the reconciler
            self._backoff(key)
        except Exception:
            logger.exception("reconcile %s %s/%s failed", kind, namespace, name)
            self._backoff(key)
        else:
            self._failures.pop(key, None)
            if result.requeue_after is not None:
                self.enqueue(key, result.requeue_after)

    def _backoff(self, key: Key) -> None:
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        delay = min(self.base_backoff * (2 ** (failures - 1)), self.max_backoff)
        logger.info("requeue %s in %.1fs after %d failures", key, delay, failures)
        self.enqueue(key, delay)

    def run_once(self, now: Optional[float] = None) -> int:
        """Process every key due at ``now``; return how many were processed."""
        now = self.clock() if now is None else now
        processed = 0
        while True:
            key = self._pop_due(now)
            if key is None:
                return processed
            self.process(key)
            processed += 1

    def run(self, stop: threading.Event, poll_interval: float = 1.0) -> None:
        """Subscribe to store events and reconcile until ``stop`` is set."""
        pubsub = self.store.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(self.store.events_channel)
        try:
            self.initial_sync()
            while not stop.is_set():
                message = pubsub.get_message(timeout=poll_interval)
                while message is not None:
                    self.handle_event(decode_event(message))
                    message = pubsub.get_message()
                self.run_once()
        finally:
            pubsub.close()


def build_manager(
    store: RedisObjectStore,
    settings: MeteringSettings,
    clock: Callable[[], float] = time.time,
) -> ControllerManager:
    """Return a manager wired with the four metering reconcilers."""
    manager = ControllerManager(store, clock)
    manager.register(TenantLifecycleReconciler(store, settings, clock))
    manager.register(UsageIngestionReconciler(store, settings))
    manager.register(BillingReconciler(store, settings, clock))
    manager.register(UsageSamplerReconciler(store, settings, clock))
    return manager
