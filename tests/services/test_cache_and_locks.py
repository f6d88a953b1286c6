"""Cache and per-user lock tests.

Verifies:
1. In-memory cache get/set/delete with hit/miss counters
2. The null cache never stores anything
3. A user's lock is exclusive while other users proceed
4. A Redis lock that cannot be acquired surfaces as PersistenceUnavailableError
"""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY
from redis.exceptions import LockError, RedisError

from app.services.cache import InMemoryCacheService, NullCacheService
from app.services.errors import PersistenceUnavailableError
from app.services.user_locks import InMemoryUserLocks, RedisUserLocks


def _cache_ops(operation: str) -> float:
    return (
        REGISTRY.get_sample_value("cache_operations_total", {"operation": operation})
        or 0.0
    )


def test_in_memory_cache_round_trip() -> None:
    cache = InMemoryCacheService()
    hits, misses = _cache_ops("hit"), _cache_ops("miss")

    async def scenario():
        first = await cache.get("leaderboard:global")
        await cache.set("leaderboard:global", "[]", ttl_seconds=30)
        second = await cache.get("leaderboard:global")
        await cache.delete("leaderboard:global")
        return first, second, await cache.get("leaderboard:global")

    assert asyncio.run(scenario()) == (None, "[]", None)
    assert _cache_ops("hit") - hits == 1
    assert _cache_ops("miss") - misses == 2


def test_null_cache_never_hits() -> None:
    cache = NullCacheService()

    async def scenario():
        await cache.set("k", "v", ttl_seconds=30)
        return await cache.get("k")

    assert asyncio.run(scenario()) is None


def test_user_lock_is_exclusive_per_user() -> None:
    locks = InMemoryUserLocks()
    order: list[str] = []

    async def worker(user_id: str, tag: str) -> None:
        async with locks.hold(user_id):
            order.append(f"{tag}-in")
            await asyncio.sleep(0)
            order.append(f"{tag}-out")

    async def scenario():
        await asyncio.gather(worker("u-1", "a"), worker("u-1", "b"))

    asyncio.run(scenario())
    assert order == ["a-in", "a-out", "b-in", "b-out"]


def test_different_users_do_not_block_each_other() -> None:
    locks = InMemoryUserLocks(timeout_seconds=0.05)

    async def scenario():
        async with locks.hold("u-1"):
            async with locks.hold("u-2"):
                return True

    assert asyncio.run(scenario()) is True


def test_lock_released_after_error() -> None:
    locks = InMemoryUserLocks(timeout_seconds=0.05)

    async def scenario():
        with pytest.raises(RuntimeError):
            async with locks.hold("u-1"):
                raise RuntimeError("boom")
        async with locks.hold("u-1"):
            return True

    assert asyncio.run(scenario()) is True


class _FakeLock:
    def __init__(self, acquired: bool = True, error: Exception | None = None):
        self._acquired = acquired
        self._error = error
        self.released = False

    async def acquire(self) -> bool:
        if self._error is not None:
            raise self._error
        return self._acquired

    async def release(self) -> None:
        self.released = True


class _FakeRedis:
    def __init__(self, lock: _FakeLock) -> None:
        self.lock_obj = lock
        self.names: list[str] = []

    def lock(self, name: str, timeout: float, blocking_timeout: float) -> _FakeLock:
        self.names.append(name)
        return self.lock_obj


def test_redis_lock_uses_user_key_and_releases() -> None:
    redis = _FakeRedis(_FakeLock())
    locks = RedisUserLocks(redis, timeout_seconds=1.0)

    async def scenario():
        async with locks.hold("u-1"):
            pass

    asyncio.run(scenario())
    assert redis.names == ["lock:user:u-1"]
    assert redis.lock_obj.released


@pytest.mark.parametrize(
    "lock",
    [_FakeLock(acquired=False), _FakeLock(error=RedisError("connection refused"))],
)
def test_redis_lock_failure_is_persistence_unavailable(lock: _FakeLock) -> None:
    locks = RedisUserLocks(_FakeRedis(lock), timeout_seconds=1.0)

    async def scenario():
        async with locks.hold("u-1"):
            pass

    with pytest.raises(PersistenceUnavailableError):
        asyncio.run(scenario())


def test_redis_lock_expired_before_release_is_not_an_error() -> None:
    class _ExpiredLock(_FakeLock):
        async def release(self) -> None:
            raise LockError("Cannot release an unlocked lock")

    locks = RedisUserLocks(_FakeRedis(_ExpiredLock()), timeout_seconds=1.0)

    async def scenario():
        async with locks.hold("u-1"):
            return True

    assert asyncio.run(scenario()) is True


def test_user_lock_entries_dropped_after_release() -> None:
    locks = InMemoryUserLocks(timeout_seconds=0.05)

    async def holder(user_id: str) -> None:
        async with locks.hold(user_id):
            await asyncio.sleep(0)

    async def scenario():
        await asyncio.gather(*(holder(f"u-{n}") for n in range(20)))
        await asyncio.gather(holder("u-1"), holder("u-1"), holder("u-1"))

    asyncio.run(scenario())
    assert locks._locks == {}
    assert locks._users == {}


def test_user_lock_entry_dropped_after_timeout() -> None:
    locks = InMemoryUserLocks(timeout_seconds=0.01)

    async def scenario():
        async with locks.hold("u-1"):
            with pytest.raises(PersistenceUnavailableError):
                async with locks.hold("u-1"):
                    pass
            # The holder keeps the entry alive.
            assert locks._users == {"u-1": 1}

    asyncio.run(scenario())
    assert locks._locks == {}
    assert locks._users == {}
