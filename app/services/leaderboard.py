"""Leaderboards: deterministic rankings derived from XP totals.

Nothing here is persisted.  The full standings (user_id, total_xp) of a
board are read from the aggregate table, sorted by total_xp descending
then user_id ascending, and numbered 1..N with no gaps: two users tied on
XP get different ranks, and the lower user_id ranks first.  Same input,
same output, every time.

Standings go through the read-through cache (app.services.cache) with a
short TTL.  A grant that landed a few seconds ago may not be visible yet.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable

from app.models.leaderboard import Leaderboard, LeaderboardEntry
from app.repos.progress_repo import ProgressRepo
from app.services.cache import CacheService
from app.services.errors import ValidationError
from app.services.learning_records import LearningRecords
from app.services.levels import level_for_xp

logger = logging.getLogger(__name__)

MAX_LIMIT = 100

Standings = list[tuple[str, int]]


def rank_standings(totals: Standings) -> Standings:
    return sorted(totals, key=lambda t: (-t[1], t[0]))


def build_leaderboard(
    standings: Standings,
    limit: int,
    around_user_id: str | None = None,
    window: int = 2,
) -> Leaderboard:
    """Slice ranked standings into a Leaderboard.

    ``nearby`` is filled only when ``around_user_id`` ranks below the
    top ``limit``: ranks rank-window..rank+window, clipped to the board.
    """
    entries = [
        LeaderboardEntry(
            rank=i + 1, user_id=uid, total_xp=xp, level=level_for_xp(xp)
        )
        for i, (uid, xp) in enumerate(standings)
    ]

    current_rank = None
    nearby: list[LeaderboardEntry] = []
    if around_user_id is not None:
        for entry in entries:
            if entry.user_id == around_user_id:
                current_rank = entry.rank
                break
        if current_rank is not None and current_rank > limit:
            lo = max(1, current_rank - window)
            hi = min(len(entries), current_rank + window)
            nearby = entries[lo - 1 : hi]

    return Leaderboard(
        entries=entries[:limit],
        nearby=nearby,
        current_user_rank=current_rank,
        total_users=len(entries),
    )


class LeaderboardRanker:
    def __init__(
        self,
        progress: ProgressRepo,
        records: LearningRecords,
        cache: CacheService,
        cache_ttl: int = 30,
    ) -> None:
        self._progress = progress
        self._records = records
        self._cache = cache
        self._cache_ttl = cache_ttl

    async def global_leaderboard(
        self,
        limit: int,
        around_user_id: str | None = None,
        window: int = 2,
    ) -> Leaderboard:
        _check_limits(limit, window)
        standings = await self._cached("leaderboard:global", self._global_totals)
        return build_leaderboard(standings, limit, around_user_id, window)

    async def course_leaderboard(
        self,
        course_id: str,
        limit: int,
        around_user_id: str | None = None,
        window: int = 2,
    ) -> Leaderboard:
        if not course_id:
            raise ValidationError("course_id must be non-empty")
        _check_limits(limit, window)

        async def load() -> Standings:
            students = await self._records.list_course_students(course_id)
            return await self._progress.list_totals(students)

        standings = await self._cached(f"leaderboard:course:{course_id}", load)
        return build_leaderboard(standings, limit, around_user_id, window)

    async def _global_totals(self) -> Standings:
        return await self._progress.list_totals()

    async def _cached(
        self, key: str, load: Callable[[], Awaitable[Standings]]
    ) -> Standings:
        if self._cache_ttl > 0:
            cached = await self._cache.get(key)
            if cached is not None:
                return [(uid, xp) for uid, xp in json.loads(cached)]

        standings = rank_standings(await load())

        if self._cache_ttl > 0:
            await self._cache.set(key, json.dumps(standings), self._cache_ttl)
        logger.debug("Leaderboard computed key=%s users=%d", key, len(standings))
        return standings


def _check_limits(limit: int, window: int) -> None:
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be 1..{MAX_LIMIT} (got {limit})")
    if window < 0:
        raise ValidationError(f"window must be >= 0 (got {window})")
