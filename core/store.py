"""Keyed aggregate store and per-key update locks.

Two backends share one interface: an in-process one for development,
tests and single-worker deployments, and a Redis one for deployments
where several workers serve the same keys.
"""

import asyncio
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from collectors.models import ContractAggregate
from config.models import StoreConfig
from core.exceptions import StoreError


logger = logging.getLogger(__name__)

LOCK_SUFFIX = ":update_lock"
UPDATE_START_SUFFIX = ":update_start"

# Deletes the lock only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@dataclass(frozen=True)
class LockHandle:
    """Proof of holding the update lock of one key."""

    key: str
    token: str
    ttl_seconds: float


class AggregateStore(ABC):
    """Persistent map from aggregate key to ContractAggregate."""

    @abstractmethod
    async def get(self, key: str) -> Optional[ContractAggregate]:
        """Return the stored aggregate, or None if the key was never written."""

    @abstractmethod
    async def save(self, key: str, aggregate: ContractAggregate) -> None:
        """Persist the full aggregate.

        Raises:
            StoreError: If the write fails
        """

    @abstractmethod
    async def get_last_update_start(self, key: str) -> Optional[float]:
        """Epoch seconds of the last update start for a key."""

    @abstractmethod
    async def set_last_update_start(self, key: str, timestamp: float) -> None:
        """Record when an update started for a key."""

    async def close(self) -> None:
        """Release backend resources."""


class LockManager(ABC):
    """Mutual exclusion of update cycles per key, with expiry."""

    @abstractmethod
    async def acquire(self, key: str, ttl_seconds: float) -> Optional[LockHandle]:
        """Try once to take the lock.

        Returns:
            A handle if acquired, None if another holder has it
        """

    @abstractmethod
    async def release(self, handle: LockHandle) -> bool:
        """Release the lock if it is still ours.

        Returns:
            False if the lock had already expired or changed hands
        """


class MemoryAggregateStore(AggregateStore):
    """In-process store; aggregates are kept serialized so callers never share state."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._update_starts: dict[str, float] = {}

    async def get(self, key: str) -> Optional[ContractAggregate]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return ContractAggregate.from_dict(json.loads(raw))

    async def save(self, key: str, aggregate: ContractAggregate) -> None:
        self._data[key] = json.dumps(aggregate.to_dict())

    async def get_last_update_start(self, key: str) -> Optional[float]:
        return self._update_starts.get(key)

    async def set_last_update_start(self, key: str, timestamp: float) -> None:
        self._update_starts[key] = timestamp


class MemoryLockManager(LockManager):
    """In-process locks with monotonic-clock expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._locks: dict[str, tuple[str, float]] = {}
        self._mutex = asyncio.Lock()

    async def acquire(self, key: str, ttl_seconds: float) -> Optional[LockHandle]:
        async with self._mutex:
            now = self._clock()
            held = self._locks.get(key)
            if held is not None and held[1] > now:
                return None
            token = secrets.token_hex(16)
            self._locks[key] = (token, now + ttl_seconds)
            return LockHandle(key=key, token=token, ttl_seconds=ttl_seconds)

    async def release(self, handle: LockHandle) -> bool:
        async with self._mutex:
            held = self._locks.get(handle.key)
            if held is None or held[0] != handle.token:
                return False
            del self._locks[handle.key]
            return held[1] > self._clock()


class RedisAggregateStore(AggregateStore):
    """Aggregates stored as JSON strings in Redis."""

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def get(self, key: str) -> Optional[ContractAggregate]:
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            raise StoreError(f"Failed to read {key}: {e}", details={"key": key})
        if raw is None:
            return None
        try:
            return ContractAggregate.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(
                f"Discarding unreadable aggregate at {key}: {e}",
                extra={"key": key}
            )
            return None

    async def save(self, key: str, aggregate: ContractAggregate) -> None:
        try:
            await self.redis.set(key, json.dumps(aggregate.to_dict()))
        except RedisError as e:
            raise StoreError(f"Failed to write {key}: {e}", details={"key": key})

    async def get_last_update_start(self, key: str) -> Optional[float]:
        try:
            raw = await self.redis.get(key + UPDATE_START_SUFFIX)
        except RedisError as e:
            raise StoreError(f"Failed to read update start of {key}: {e}", details={"key": key})
        return float(raw) if raw is not None else None

    async def set_last_update_start(self, key: str, timestamp: float) -> None:
        try:
            await self.redis.set(key + UPDATE_START_SUFFIX, str(timestamp))
        except RedisError as e:
            raise StoreError(f"Failed to write update start of {key}: {e}", details={"key": key})

    async def close(self) -> None:
        await self.redis.aclose()


class RedisLockManager(LockManager):
    """Single-instance Redis lock: ``SET NX PX`` with a random token."""

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def acquire(self, key: str, ttl_seconds: float) -> Optional[LockHandle]:
        token = secrets.token_hex(16)
        try:
            acquired = await self.redis.set(
                key + LOCK_SUFFIX, token, px=int(ttl_seconds * 1000), nx=True
            )
        except RedisError as e:
            raise StoreError(f"Failed to acquire lock for {key}: {e}", details={"key": key})
        if not acquired:
            return None
        return LockHandle(key=key, token=token, ttl_seconds=ttl_seconds)

    async def release(self, handle: LockHandle) -> bool:
        try:
            released = await self.redis.eval(
                _RELEASE_SCRIPT, 1, handle.key + LOCK_SUFFIX, handle.token
            )
        except RedisError as e:
            raise StoreError(
                f"Failed to release lock for {handle.key}: {e}", details={"key": handle.key}
            )
        return bool(released)


def build_store(config: StoreConfig) -> tuple[AggregateStore, LockManager]:
    """Create the store and lock manager for the configured backend."""
    if config.backend == "redis":
        redis = Redis.from_url(config.redis_url, decode_responses=True)
        logger.info("Using Redis aggregate store", extra={"backend": "redis"})
        return RedisAggregateStore(redis), RedisLockManager(redis)

    logger.info("Using in-memory aggregate store", extra={"backend": "memory"})
    return MemoryAggregateStore(), MemoryLockManager()


def describe(store: AggregateStore) -> dict[str, Any]:
    """Backend summary for the health endpoint."""
    return {"backend": "redis" if isinstance(store, RedisAggregateStore) else "memory"}
