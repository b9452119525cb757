"""Ephemeral mirror of per-equipment queue length and ordering.

The cache is never authoritative: writers invalidate after their transaction
commits and readers repopulate from the queue ledger on a miss. Entries carry
a short TTL as a backstop against a missed invalidation.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis

from gym_floor.core.settings import Settings

logger = logging.getLogger(__name__)

CACHE_BACKEND_REDIS = "redis"
CACHE_BACKEND_MEMORY = "memory"


def length_key(equipment_id: str) -> str:
    return f"queue:length:{equipment_id}"


def list_key(equipment_id: str) -> str:
    return f"queue:list:{equipment_id}"


class QueueCache(Protocol):
    """Read-through cache contract used by the coordinator."""

    def get_length(self, equipment_id: str) -> int | None: ...

    def set_length(self, equipment_id: str, length: int) -> None: ...

    def get_list(self, equipment_id: str) -> list[dict[str, Any]] | None: ...

    def set_list(self, equipment_id: str, entries: list[dict[str, Any]]) -> None: ...

    def invalidate(self, equipment_id: str) -> None: ...


class RedisQueueCache:
    """Redis-backed cache; any Redis failure degrades to a cache miss."""

    def __init__(self, client: redis.Redis, ttl_seconds: int) -> None:
        self._redis = client
        self._ttl = max(1, int(ttl_seconds))

    def get_length(self, equipment_id: str) -> int | None:
        try:
            raw = self._redis.get(length_key(equipment_id))
        except redis.RedisError as exc:
            logger.warning("Queue cache read failed for %s: %s", equipment_id, exc)
            return None
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    def set_length(self, equipment_id: str, length: int) -> None:
        try:
            self._redis.set(length_key(equipment_id), int(length), ex=self._ttl)
        except redis.RedisError as exc:
            logger.warning("Queue cache write failed for %s: %s", equipment_id, exc)

    def get_list(self, equipment_id: str) -> list[dict[str, Any]] | None:
        try:
            raw = self._redis.get(list_key(equipment_id))
        except redis.RedisError as exc:
            logger.warning("Queue cache read failed for %s: %s", equipment_id, exc)
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return None
        return data if isinstance(data, list) else None

    def set_list(self, equipment_id: str, entries: list[dict[str, Any]]) -> None:
        try:
            self._redis.set(list_key(equipment_id), json.dumps(entries), ex=self._ttl)
        except redis.RedisError as exc:
            logger.warning("Queue cache write failed for %s: %s", equipment_id, exc)

    def invalidate(self, equipment_id: str) -> None:
        try:
            self._redis.delete(length_key(equipment_id), list_key(equipment_id))
        except redis.RedisError as exc:
            # The TTL bounds how long a stale entry can survive.
            logger.warning("Queue cache invalidation failed for %s: %s", equipment_id, exc)


class MemoryQueueCache:
    """In-process cache for single-node deployments and tests."""

    def __init__(
        self,
        ttl_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = max(1, int(ttl_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._values: dict[str, tuple[float, str]] = {}

    def _get(self, key: str) -> str | None:
        with self._lock:
            item = self._values.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= self._clock():
                del self._values[key]
                return None
            return value

    def _set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = (self._clock() + self._ttl, value)

    def get_length(self, equipment_id: str) -> int | None:
        raw = self._get(length_key(equipment_id))
        return None if raw is None else int(raw)

    def set_length(self, equipment_id: str, length: int) -> None:
        self._set(length_key(equipment_id), str(int(length)))

    def get_list(self, equipment_id: str) -> list[dict[str, Any]] | None:
        raw = self._get(list_key(equipment_id))
        return None if raw is None else json.loads(raw)

    def set_list(self, equipment_id: str, entries: list[dict[str, Any]]) -> None:
        self._set(list_key(equipment_id), json.dumps(entries))

    def invalidate(self, equipment_id: str) -> None:
        with self._lock:
            self._values.pop(length_key(equipment_id), None)
            self._values.pop(list_key(equipment_id), None)


def build_queue_cache(config: Settings) -> QueueCache:
    """Return the cache strategy selected by ``CACHE_BACKEND``."""
    backend = config.cache_backend.lower()
    if backend == CACHE_BACKEND_MEMORY:
        return MemoryQueueCache(config.queue_cache_ttl_seconds)
    if backend != CACHE_BACKEND_REDIS:
        raise ValueError(f"Unknown CACHE_BACKEND: {config.cache_backend!r}")
    client = redis.Redis.from_url(config.redis_url, decode_responses=True)
    logger.info("Queue cache backed by Redis at %s", config.redis_url)
    return RedisQueueCache(client, config.queue_cache_ttl_seconds)
