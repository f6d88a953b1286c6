"""Per-user critical sections.

XP, badge and certificate writes are made safe by unique constraints, but
a streak update is a read-modify-write on the aggregate row and is not
idempotent under interleaving: two workers reading the same
last_activity_date would both "advance" the streak.  Streak updates for a
user therefore run while holding that user's lock.

Same Protocol + InMemory + Redis split as the cache: one process can use
asyncio locks; several workers need a shared Redis lock.  (With
PostgreSQL the aggregate row is also locked FOR UPDATE inside the
transaction, so the Redis lock mainly keeps contention off the database.)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol, runtime_checkable

from redis.exceptions import LockError
from redis.exceptions import RedisError

from app.core.config import SETTINGS
from app.db.redis import redis_pool
from app.services.errors import PersistenceUnavailableError

logger = logging.getLogger(__name__)


@runtime_checkable
class UserLocks(Protocol):
    def hold(self, user_id: str) -> AsyncIterator[None]:
        """Async context manager: exclusive section for one user."""
        ...


class InMemoryUserLocks:
    """asyncio locks, one per user with a holder or waiter.

    A user's entry is dropped when the last task holding or waiting on it
    leaves, so memory tracks active users rather than every user seen.
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._timeout = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            try:
                async with asyncio.timeout(self._timeout):
                    await lock.acquire()
            except TimeoutError:
                logger.warning("Timed out waiting for user lock user=%s", user_id)
                raise PersistenceUnavailableError(
                    f"timed out waiting for lock on user {user_id}"
                ) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                self._locks.pop(user_id, None)


class RedisUserLocks:
    _PREFIX = "lock:user:"

    def __init__(self, redis_client, timeout_seconds: float = 5.0) -> None:
        self._redis = redis_client
        self._timeout = timeout_seconds

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        # The lock auto-expires after `timeout` so a crashed worker cannot
        # wedge a user forever; engine operations finish in milliseconds.
        lock = self._redis.lock(
            f"{self._PREFIX}{user_id}",
            timeout=self._timeout,
            blocking_timeout=self._timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise PersistenceUnavailableError("lock backend unavailable") from e
        if not acquired:
            logger.warning("Timed out waiting for user lock user=%s", user_id)
            raise PersistenceUnavailableError(
                f"timed out waiting for lock on user {user_id}"
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired while held; another holder may already own it.
                logger.warning("User lock expired before release user=%s", user_id)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    user_locks: UserLocks = RedisUserLocks(
        redis_pool, timeout_seconds=SETTINGS.user_lock_timeout
    )
else:
    user_locks = InMemoryUserLocks(timeout_seconds=SETTINGS.user_lock_timeout)
