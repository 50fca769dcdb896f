import os
import sys

# Ensure the repository root is importable so test modules can resolve local
# packages such as ``metrics_prometheus`` without relying on ``PYTHONPATH``.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import fakeredis
import pytest

from tenantmeter.config_models import MeteringSettings
from tenantmeter.errors import NotFoundError
from tenantmeter.models import Namespace, ResourceQuota
from tenantmeter.models.metering import quota_name
from tenantmeter.store import RedisObjectStore

START = 1_700_000_000


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: int = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def redis_client():
    """Isolated in-memory Redis per test."""
    return fakeredis.FakeStrictRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisObjectStore(redis_client)


@pytest.fixture
def settings():
    return MeteringSettings(retry_delay=0.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_tenant(store, settings):
    """Create a tenant namespace owned by ``owner``."""

    def _make(name: str, owner: str = "alice", **meta) -> Namespace:
        ns = Namespace.new("", name)
        if owner is not None:
            ns.metadata.annotations[settings.owner_annotation] = owner
        for key, value in meta.items():
            setattr(ns.metadata, key, value)
        return store.create(ns)

    return _make


@pytest.fixture
def set_storage_usage(store):
    """Record ``requests.storage`` usage in a tenant quota status."""

    def _set(ns_name: str, used: str) -> ResourceQuota:
        try:
            quota = store.get(ResourceQuota, ns_name, quota_name(ns_name))
        except NotFoundError:
            quota = store.create(ResourceQuota.new(ns_name, quota_name(ns_name)))
        quota.status.used["requests.storage"] = used
        return store.update(quota)

    return _set
