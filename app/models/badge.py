from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import StrEnum


class CriteriaType(StrEnum):
    COURSES_COMPLETED = "courses_completed"
    STREAK_DAYS = "streak_days"
    QUIZZES_PASSED = "quizzes_passed"
    REVIEWS_WRITTEN = "reviews_written"


class Rarity(StrEnum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


@dataclass(frozen=True, slots=True)
class BadgeDefinition:
    """Static catalog entry.  Read-only to the engine."""

    key: str
    name: str
    criteria_type: CriteriaType
    target: int
    xp_reward: int
    rarity: Rarity = Rarity.COMMON
    description: str = ""


@dataclass(frozen=True, slots=True)
class UserBadge:
    """An earned badge.  Unique per (user_id, badge_key); never revoked here."""

    user_id: str
    badge_key: str
    earned_at: datetime.datetime


@dataclass(frozen=True, slots=True)
class BadgeUnlockResult:
    badge: BadgeDefinition
    user_badge: UserBadge
    xp_awarded: int


@dataclass(frozen=True, slots=True)
class BadgeProgress:
    badge: BadgeDefinition
    progress: int
    earned_at: datetime.datetime | None = None

    @property
    def earned(self) -> bool:
        return self.earned_at is not None

    @property
    def percent(self) -> int:
        if self.earned:
            return 100
        return min(100, self.progress * 100 // self.badge.target)
