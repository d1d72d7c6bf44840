"""Tests for the aggregate stores and update locks."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from collectors.models import AggregateState, ContractAggregate
from config.models import StoreConfig
from core.exceptions import StoreError
from core.store import (
    LOCK_SUFFIX,
    UPDATE_START_SUFFIX,
    LockHandle,
    MemoryAggregateStore,
    MemoryLockManager,
    RedisAggregateStore,
    RedisLockManager,
    build_store,
    describe,
)

from fakes import FakeClock


KEY = "nft:terra1owner@mainnet"


class TestMemoryAggregateStore:
    """Tests for MemoryAggregateStore."""

    @pytest.mark.asyncio
    async def test_missing_key(self):
        assert await MemoryAggregateStore().get(KEY) is None

    @pytest.mark.asyncio
    async def test_save_and_get(self):
        store = MemoryAggregateStore()
        aggregate = ContractAggregate(
            interacted_contracts={"terra1a"}, state=AggregateState.PARTIAL
        )

        await store.save(KEY, aggregate)

        assert await store.get(KEY) == aggregate

    @pytest.mark.asyncio
    async def test_reads_do_not_share_state(self):
        store = MemoryAggregateStore()
        await store.save(KEY, ContractAggregate(interacted_contracts={"terra1a"}))

        first = await store.get(KEY)
        first.interacted_contracts.add("terra1b")

        assert (await store.get(KEY)).interacted_contracts == {"terra1a"}

    @pytest.mark.asyncio
    async def test_update_start(self):
        store = MemoryAggregateStore()
        assert await store.get_last_update_start(KEY) is None
        await store.set_last_update_start(KEY, 1234.5)
        assert await store.get_last_update_start(KEY) == 1234.5


class TestMemoryLockManager:
    """Tests for MemoryLockManager."""

    @pytest.fixture
    def clock(self):
        return FakeClock(now=0.0)

    @pytest.fixture
    def locks(self, clock):
        return MemoryLockManager(clock=clock)

    @pytest.mark.asyncio
    async def test_second_acquire_fails(self, locks):
        assert await locks.acquire(KEY, 100) is not None
        assert await locks.acquire(KEY, 100) is None

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, locks):
        assert await locks.acquire(KEY, 100) is not None
        assert await locks.acquire("token:terra1owner@mainnet", 100) is not None

    @pytest.mark.asyncio
    async def test_release_allows_reacquire(self, locks):
        handle = await locks.acquire(KEY, 100)
        assert await locks.release(handle) is True
        assert await locks.acquire(KEY, 100) is not None

    @pytest.mark.asyncio
    async def test_lock_expires(self, locks, clock):
        """An abandoned lock frees the key after its TTL."""
        stale = await locks.acquire(KEY, 100)
        clock.advance(101)

        fresh = await locks.acquire(KEY, 100)

        assert fresh is not None
        assert fresh.token != stale.token
        assert await locks.release(stale) is False
        assert await locks.acquire(KEY, 100) is None

    @pytest.mark.asyncio
    async def test_release_after_expiry_reports_false(self, locks, clock):
        handle = await locks.acquire(KEY, 100)
        clock.advance(150)
        assert await locks.release(handle) is False

    @pytest.mark.asyncio
    async def test_release_with_foreign_token(self, locks):
        await locks.acquire(KEY, 100)
        assert await locks.release(LockHandle(key=KEY, token="forged", ttl_seconds=100)) is False
        assert await locks.acquire(KEY, 100) is None


class TestRedisBackend:
    """Tests for the Redis store and locks with a mocked client."""

    @pytest.fixture
    def redis(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.set = AsyncMock(return_value=True)
        client.eval = AsyncMock(return_value=1)
        client.aclose = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_save_writes_json(self, redis):
        store = RedisAggregateStore(redis)

        await store.save(KEY, ContractAggregate(interacted_contracts={"terra1a"}))

        key, payload = redis.set.await_args.args
        assert key == KEY
        assert '"interacted_contracts": ["terra1a"]' in payload

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, redis):
        redis.get.return_value = '{"interacted_contracts": ["terra1a"], "state": "Partial"}'

        aggregate = await RedisAggregateStore(redis).get(KEY)

        assert aggregate.interacted_contracts == {"terra1a"}
        assert aggregate.state == AggregateState.PARTIAL

    @pytest.mark.asyncio
    async def test_unreadable_value_discarded(self, redis):
        redis.get.return_value = "{not json"
        assert await RedisAggregateStore(redis).get(KEY) is None

    @pytest.mark.asyncio
    async def test_redis_errors_become_store_errors(self, redis):
        redis.get.side_effect = RedisConnectionError("refused")
        redis.set.side_effect = RedisConnectionError("refused")
        store = RedisAggregateStore(redis)

        with pytest.raises(StoreError):
            await store.get(KEY)
        with pytest.raises(StoreError):
            await store.save(KEY, ContractAggregate.default())

    @pytest.mark.asyncio
    async def test_update_start_key(self, redis):
        redis.get.return_value = "99.5"
        store = RedisAggregateStore(redis)

        assert await store.get_last_update_start(KEY) == 99.5
        redis.get.assert_awaited_with(KEY + UPDATE_START_SUFFIX)

    @pytest.mark.asyncio
    async def test_lock_uses_set_nx_px(self, redis):
        handle = await RedisLockManager(redis).acquire(KEY, 100)

        assert handle is not None
        redis.set.assert_awaited_once_with(
            KEY + LOCK_SUFFIX, handle.token, px=100000, nx=True
        )

    @pytest.mark.asyncio
    async def test_lock_contention(self, redis):
        redis.set.return_value = None
        assert await RedisLockManager(redis).acquire(KEY, 100) is None

    @pytest.mark.asyncio
    async def test_release_checks_token(self, redis):
        locks = RedisLockManager(redis)
        handle = LockHandle(key=KEY, token="abc", ttl_seconds=100)

        assert await locks.release(handle) is True
        args = redis.eval.await_args.args
        assert args[1:] == (1, KEY + LOCK_SUFFIX, "abc")

        redis.eval.return_value = 0
        assert await locks.release(handle) is False


class TestBuildStore:
    """Tests for build_store."""

    def test_memory_backend(self):
        store, locks = build_store(StoreConfig())
        assert isinstance(store, MemoryAggregateStore)
        assert isinstance(locks, MemoryLockManager)
        assert describe(store) == {"backend": "memory"}

    def test_redis_backend(self):
        store, locks = build_store(StoreConfig(backend="redis", redis_url="redis://localhost:6399/1"))
        assert isinstance(store, RedisAggregateStore)
        assert isinstance(locks, RedisLockManager)
        assert store.redis is locks.redis
        assert describe(store) == {"backend": "redis"}
