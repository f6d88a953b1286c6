from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    """Derived on read, never persisted."""

    rank: int
    user_id: str
    total_xp: int
    level: int


@dataclass(frozen=True, slots=True)
class Leaderboard:
    entries: list[LeaderboardEntry]
    # Window around the requesting user when they rank below the top entries.
    nearby: list[LeaderboardEntry] = field(default_factory=list)
    current_user_rank: int | None = None
    total_users: int = 0
