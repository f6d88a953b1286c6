from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from app.models.certificate import EnrollmentStatus
from app.models.ledger import XPReason
from app.services.cache import InMemoryCacheService
from app.services.engine import ProgressEngine
from app.services.errors import ValidationError
from app.services.leaderboard import build_leaderboard, rank_standings
from app.services.learning_records import InMemoryLearningRecords


def _seed(engine: ProgressEngine, xp_by_user: dict[str, int]) -> None:
    """Give each user exactly the requested XP via lesson grants."""

    async def scenario():
        for user_id, xp in xp_by_user.items():
            for i in range(xp // 10):
                await engine.grant(user_id, XPReason.LESSON_COMPLETE, f"l-{i}")

    asyncio.run(scenario())


def _cache_ops(operation: str) -> float:
    return (
        REGISTRY.get_sample_value("cache_operations_total", {"operation": operation})
        or 0.0
    )


def test_ties_break_by_user_id_with_distinct_ranks(engine: ProgressEngine) -> None:
    _seed(engine, {"carol": 50, "alice": 50, "bob": 70, "dave": 10})

    board = asyncio.run(engine.global_leaderboard(limit=10))

    assert [(e.rank, e.user_id, e.total_xp) for e in board.entries] == [
        (1, "bob", 70),
        (2, "alice", 50),
        (3, "carol", 50),
        (4, "dave", 10),
    ]
    assert board.total_users == 4
    assert board.nearby == []
    assert board.current_user_rank is None


def test_same_input_same_output(engine: ProgressEngine) -> None:
    _seed(engine, {f"u-{i:02d}": (i % 3) * 10 for i in range(12)})

    async def scenario():
        return [await engine.global_leaderboard(limit=100) for _ in range(3)]

    first, second, third = asyncio.run(scenario())
    assert first == second == third


def test_entries_carry_level(engine: ProgressEngine) -> None:
    _seed(engine, {"alice": 260})
    (entry,) = asyncio.run(engine.global_leaderboard(limit=5)).entries
    assert entry.level == 3


def test_nearby_window_for_user_outside_top(engine: ProgressEngine) -> None:
    # u-00 has the most XP, u-09 the least.
    _seed(engine, {f"u-{i:02d}": (10 - i) * 10 for i in range(10)})

    board = asyncio.run(engine.global_leaderboard(limit=3, around_user_id="u-06"))

    assert [e.user_id for e in board.entries] == ["u-00", "u-01", "u-02"]
    assert board.current_user_rank == 7
    assert [e.rank for e in board.nearby] == [5, 6, 7, 8, 9]


def test_nearby_is_clipped_at_the_bottom(engine: ProgressEngine) -> None:
    _seed(engine, {f"u-{i:02d}": (10 - i) * 10 for i in range(10)})

    board = asyncio.run(
        engine.global_leaderboard(limit=3, around_user_id="u-09", window=2)
    )
    assert [e.rank for e in board.nearby] == [8, 9, 10]


def test_user_in_top_gets_rank_but_no_nearby(engine: ProgressEngine) -> None:
    _seed(engine, {"alice": 20, "bob": 10})
    board = asyncio.run(engine.global_leaderboard(limit=5, around_user_id="bob"))
    assert board.current_user_rank == 2
    assert board.nearby == []


def test_unknown_user_has_no_rank(engine: ProgressEngine) -> None:
    _seed(engine, {"alice": 20})
    board = asyncio.run(engine.global_leaderboard(limit=5, around_user_id="ghost"))
    assert board.current_user_rank is None


@pytest.mark.parametrize("limit", [0, 101, -1])
def test_limit_must_be_in_range(engine: ProgressEngine, limit: int) -> None:
    with pytest.raises(ValidationError, match="limit must be 1..100"):
        asyncio.run(engine.global_leaderboard(limit=limit))


def test_course_board_ranks_enrolled_students(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    _seed(engine, {"alice": 30, "bob": 80, "carol": 40})
    records.enroll("alice", "course-1")
    records.enroll("carol", "course-1", EnrollmentStatus.COMPLETED)
    records.enroll("bob", "course-1", EnrollmentStatus.UNENROLLED)
    records.enroll("newbie", "course-1")

    board = asyncio.run(engine.course_leaderboard("course-1", limit=10))

    assert [(e.user_id, e.total_xp) for e in board.entries] == [
        ("carol", 40),
        ("alice", 30),
        ("newbie", 0),
    ]


def test_course_board_requires_course_id(engine: ProgressEngine) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(engine.course_leaderboard("", limit=10))


def test_standings_are_served_from_cache_within_ttl(
    records: InMemoryLearningRecords,
) -> None:
    cache = InMemoryCacheService()
    engine = ProgressEngine.in_memory(records=records, cache=cache, cache_ttl=30)
    _seed(engine, {"alice": 20})

    hits_before = _cache_ops("hit")
    first = asyncio.run(engine.global_leaderboard(limit=10))
    # New XP is not visible until the cached standings expire.
    _seed(engine, {"bob": 50})
    second = asyncio.run(engine.global_leaderboard(limit=10))

    assert first == second
    assert _cache_ops("hit") - hits_before == 1

    asyncio.run(cache.delete("leaderboard:global"))
    third = asyncio.run(engine.global_leaderboard(limit=10))
    assert [e.user_id for e in third.entries] == ["bob", "alice"]


def test_zero_ttl_disables_cache(records: InMemoryLearningRecords) -> None:
    cache = InMemoryCacheService()
    engine = ProgressEngine.in_memory(records=records, cache=cache, cache_ttl=0)
    _seed(engine, {"alice": 20})
    asyncio.run(engine.global_leaderboard(limit=10))
    assert cache._store == {}


def test_build_leaderboard_is_pure() -> None:
    standings = rank_standings([("b", 10), ("a", 10), ("c", 30)])
    board = build_leaderboard(standings, limit=1, around_user_id="b", window=1)
    assert [e.user_id for e in board.entries] == ["c"]
    assert [e.user_id for e in board.nearby] == ["a", "b"]
    assert board.current_user_rank == 3
