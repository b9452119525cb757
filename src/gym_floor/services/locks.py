"""Per-equipment mutual exclusion layered in front of store transactions.

The lock narrows the window in which two requests for the same equipment run
their transactions side by side. It never decides an outcome: the
compare-and-set writes inside the transaction do. The strategy is chosen once
at startup by :func:`build_equipment_lock`.
"""

from __future__ import annotations

import contextlib
import logging
import secrets
import time
from collections.abc import Callable, Iterator
from typing import Protocol

import redis

from gym_floor.core.settings import Settings

logger = logging.getLogger(__name__)

# Delete the key only if it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def lock_key(equipment_id: str) -> str:
    return f"lock:equipment:{equipment_id}"


class EquipmentLock(Protocol):
    """Context-managed lock keyed by equipment id."""

    def hold(self, equipment_id: str) -> contextlib.AbstractContextManager[bool]: ...


class NoopEquipmentLock:
    """Transaction-only strategy: nothing to acquire."""

    @contextlib.contextmanager
    def hold(self, equipment_id: str) -> Iterator[bool]:
        yield False


class RedisEquipmentLock:
    """Redis ``SET NX EX`` lock with an owner token and bounded retry."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_seconds: int = 30,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._redis = client
        self._ttl = max(1, int(ttl_seconds))
        self._attempts = max(1, int(retry_attempts))
        self._delay = max(0.0, float(retry_delay_seconds))
        self._sleep = sleep
        self._release = client.register_script(_RELEASE_SCRIPT)

    def acquire(self, equipment_id: str) -> str | None:
        """Try to take the lock; return the owner token or None."""
        key = lock_key(equipment_id)
        token = secrets.token_hex(16)
        for attempt in range(self._attempts):
            try:
                if self._redis.set(key, token, nx=True, ex=self._ttl):
                    return token
            except redis.RedisError as exc:
                logger.warning("Equipment lock unavailable for %s: %s", equipment_id, exc)
                return None
            if attempt + 1 < self._attempts:
                # 0.1s, 0.2s, 0.4s, ...
                self._sleep(self._delay * (2**attempt))
        logger.info(
            "Equipment lock for %s still held after %d attempts",
            equipment_id,
            self._attempts,
        )
        return None

    def release(self, equipment_id: str, token: str) -> bool:
        """Release the lock if ``token`` still owns it."""
        try:
            return bool(self._release(keys=[lock_key(equipment_id)], args=[token]))
        except redis.RedisError as exc:
            logger.warning("Equipment lock release failed for %s: %s", equipment_id, exc)
            return False

    @contextlib.contextmanager
    def hold(self, equipment_id: str) -> Iterator[bool]:
        """Hold the lock for the duration of the block when it can be obtained.

        Yields whether the lock was acquired; the block runs either way.
        """
        token = self.acquire(equipment_id)
        try:
            yield token is not None
        finally:
            if token is not None:
                self.release(equipment_id, token)


def build_equipment_lock(
    config: Settings,
    client: redis.Redis | None = None,
) -> EquipmentLock:
    """Select the lock strategy for this process.

    Redis is used only when enabled and answering a ping; otherwise the
    coordinator runs on store transactions alone.
    """
    if not config.equipment_lock_enabled:
        logger.info("Equipment lock disabled; relying on store transactions")
        return NoopEquipmentLock()
    client = client or redis.Redis.from_url(config.redis_url, socket_connect_timeout=2)
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis unreachable (%s); equipment lock disabled", exc)
        return NoopEquipmentLock()
    return RedisEquipmentLock(
        client,
        ttl_seconds=config.equipment_lock_ttl_seconds,
        retry_attempts=config.equipment_lock_retry_attempts,
        retry_delay_seconds=config.equipment_lock_retry_delay_seconds,
    )
