"""Control-plane object store adapter with optimistic concurrency.

Objects are kept as JSON documents in Redis hashes next to an integer
version counter.  A conditional update follows the ``WATCH``/``MULTI``
pattern::

    WATCH key
    HGET key version        -> compare with the caller's token
    MULTI
    HSET key data ... version n+1
    EXEC                    -> WatchError when the key moved underneath

Every mutation publishes ``{type, kind, namespace, name}`` on the events
channel so a controller manager can schedule reconciliation passes.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Tuple, Type, TypeVar

import redis

from metrics_prometheus.metering import store_conflicts_total
from tenantmeter.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    TransientStoreError,
)
from tenantmeter.models import StoredObject

__all__ = [
    "ObjectStore",
    "RedisObjectStore",
    "retry_on_conflict",
    "create_or_update",
    "decode_event",
    "EVENT_ADDED",
    "EVENT_MODIFIED",
    "EVENT_DELETED",
]

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=StoredObject)
R = TypeVar("R")

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"


class ObjectStore(Protocol):
    """Primitives the reconcilers rely on."""

    def get(self, cls: Type[T], namespace: str, name: str) -> T: ...

    def list(self, cls: Type[T], namespace: Optional[str] = None) -> List[T]: ...

    def create(self, obj: T) -> T: ...

    def update(self, obj: T) -> T: ...

    def delete(self, cls: Type[StoredObject], namespace: str, name: str) -> None: ...


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map connection level Redis failures to :class:`TransientStoreError`."""
    try:
        yield
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
        raise TransientStoreError(str(exc)) from exc


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisObjectStore:
    """Redis implementation of :class:`ObjectStore`.

    Parameters
    ----------
    client:
        Redis client; ``decode_responses`` may be on or off.
    prefix:
        Key prefix isolating this store from other data in the database.
    """

    def __init__(self, client: redis.Redis, prefix: str = "tenantmeter") -> None:
        self.client = client
        self.prefix = prefix

    @property
    def events_channel(self) -> str:
        return f"{self.prefix}:events"

    def _key(self, kind: str, namespace: str, name: str) -> str:
        return f"{self.prefix}:{kind}:{namespace}:{name}"

    def _index(self, kind: str) -> str:
        return f"{self.prefix}:index:{kind}"

    @staticmethod
    def _dump(obj: StoredObject) -> str:
        return obj.model_dump_json(exclude={"metadata": {"resource_version"}})

    def _publish(self, pipe, event: str, obj_kind: str, namespace: str, name: str) -> None:
        payload = {"type": event, "kind": obj_kind, "namespace": namespace, "name": name}
        pipe.publish(self.events_channel, json.dumps(payload))

    def get(self, cls: Type[T], namespace: str, name: str) -> T:
        with _translate_errors():
            data, version = self.client.hmget(self._key(cls.kind, namespace, name), "data", "version")
        if data is None:
            raise NotFoundError(cls.kind, namespace, name)
        obj = cls.model_validate_json(_text(data))
        obj.metadata.resource_version = _text(version)
        return obj

    def list(self, cls: Type[T], namespace: Optional[str] = None) -> List[T]:
        with _translate_errors():
            members = sorted(_text(m) for m in self.client.smembers(self._index(cls.kind)))
        items: List[T] = []
        for member in members:
            ns, _, name = member.partition("/")
            if namespace is not None and ns != namespace:
                continue
            try:
                items.append(self.get(cls, ns, name))
            except NotFoundError:
                # deleted between index read and fetch
                continue
        return items

    def create(self, obj: T) -> T:
        """Create ``obj``; raise :class:`AlreadyExistsError` if the key is taken."""
        kind, ns, name = obj.kind, obj.namespace, obj.name
        key = self._key(kind, ns, name)
        with _translate_errors(), self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                if pipe.exists(key):
                    raise AlreadyExistsError(kind, ns, name)
                pipe.multi()
                pipe.hset(key, mapping={"data": self._dump(obj), "version": 1})
                pipe.sadd(self._index(kind), f"{ns}/{name}")
                self._publish(pipe, EVENT_ADDED, kind, ns, name)
                pipe.execute()
            except redis.exceptions.WatchError:
                raise AlreadyExistsError(kind, ns, name)
        created = obj.model_copy(deep=True)
        created.metadata.resource_version = "1"
        logger.debug("created %s %s/%s", kind, ns, name)
        return created

    def update(self, obj: T) -> T:
        """Replace ``obj`` if its ``resource_version`` is still current."""
        kind, ns, name = obj.kind, obj.namespace, obj.name
        token = obj.metadata.resource_version
        if token is None:
            raise ConflictError(f"{kind} {ns}/{name} has no resource version")
        key = self._key(kind, ns, name)
        with _translate_errors(), self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.hget(key, "version")
                if current is None:
                    raise NotFoundError(kind, ns, name)
                if _text(current) != token:
                    raise ConflictError(
                        f"{kind} {ns}/{name} version {token} is stale (current {_text(current)})"
                    )
                new_version = int(_text(current)) + 1
                pipe.multi()
                pipe.hset(key, mapping={"data": self._dump(obj), "version": new_version})
                self._publish(pipe, EVENT_MODIFIED, kind, ns, name)
                pipe.execute()
            except redis.exceptions.WatchError:
                raise ConflictError(f"{kind} {ns}/{name} changed during update")
        updated = obj.model_copy(deep=True)
        updated.metadata.resource_version = str(new_version)
        return updated

    def delete(self, cls: Type[StoredObject], namespace: str, name: str) -> None:
        key = self._key(cls.kind, namespace, name)
        with _translate_errors(), self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                if not pipe.exists(key):
                    raise NotFoundError(cls.kind, namespace, name)
                pipe.multi()
                pipe.delete(key)
                pipe.srem(self._index(cls.kind), f"{namespace}/{name}")
                self._publish(pipe, EVENT_DELETED, cls.kind, namespace, name)
                pipe.execute()
            except redis.exceptions.WatchError:
                # removed or rewritten concurrently; callers re-read
                raise ConflictError(f"{cls.kind} {namespace}/{name} changed during delete")
        logger.debug("deleted %s %s/%s", cls.kind, namespace, name)


def retry_on_conflict(
    fn: Callable[[], R],
    *,
    attempts: int = 5,
    base_delay: float = 0.01,
    operation: str = "update",
) -> R:
    """Run the read-modify-write ``fn`` until it stops raising :class:`ConflictError`.

    ``fn`` must re-read the object it mutates on every call.  After
    ``attempts`` consecutive conflicts the last error is re-raised.
    """

    for attempt in range(attempts):
        try:
            return fn()
        except ConflictError:
            store_conflicts_total.labels(operation=operation).inc()
            if attempt == attempts - 1:
                logger.warning("%s: giving up after %d conflicts", operation, attempts)
                raise
            delay = base_delay * (2**attempt)
            logger.debug("%s: version conflict, retrying in %.3fs", operation, delay)
            time.sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


def create_or_update(
    store: ObjectStore,
    template: T,
    mutate: Callable[[T], None],
    *,
    attempts: int = 5,
    base_delay: float = 0.01,
) -> Tuple[T, str]:
    """Fetch the object named by ``template`` (or start from it), mutate, persist.

    Returns the stored object and ``"created"``, ``"updated"`` or
    ``"unchanged"``.  An unchanged object is not written back.
    """

    cls = type(template)

    def _attempt() -> Tuple[T, str]:
        try:
            obj = store.get(cls, template.namespace, template.name)
        except NotFoundError:
            obj = template.model_copy(deep=True)
            mutate(obj)
            try:
                return store.create(obj), "created"
            except AlreadyExistsError as exc:
                # lost a create race; retry as an update
                raise ConflictError(str(exc)) from exc
        before = obj.model_dump()
        mutate(obj)
        if obj.model_dump() == before:
            return obj, "unchanged"
        return store.update(obj), "updated"

    return retry_on_conflict(
        _attempt, attempts=attempts, base_delay=base_delay, operation=f"create_or_update:{cls.kind}"
    )


def decode_event(message: Dict) -> Optional[Dict[str, str]]:
    """Return the event payload carried by a pub/sub ``message``."""
    if message is None or message.get("type") != "message":
        return None
    try:
        return json.loads(_text(message["data"]))
    except (TypeError, ValueError):
        logger.warning("ignoring malformed event %r", message.get("data"))
        return None
