from __future__ import annotations

import os

import redis

from tenantmeter.config_models import MeteringSettings
from tenantmeter.store import RedisObjectStore


def get_redis_client(settings: MeteringSettings) -> redis.Redis:
    """Return a Redis client configured via settings or environment."""

    cfg = settings.redis
    host = os.getenv("REDIS_HOST", cfg.host)
    port = int(os.getenv("REDIS_PORT", cfg.port))
    return redis.Redis(host=host, port=port, db=cfg.db, decode_responses=True)


def get_object_store(settings: MeteringSettings, client: redis.Redis | None = None) -> RedisObjectStore:
    """Return the Redis-backed object store used by the reconcilers."""

    return RedisObjectStore(client or get_redis_client(settings))
