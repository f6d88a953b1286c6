from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4

from app.services.levels import level_for_xp


class XPReason(StrEnum):
    LESSON_COMPLETE = "lesson_complete"
    QUIZ_PASS = "quiz_pass"
    COURSE_COMPLETE_BONUS = "course_complete_bonus"
    BADGE_BONUS = "badge_bonus"
    DAILY_LOGIN = "daily_login"
    STREAK_BONUS = "streak_bonus"
    CORRECTION = "correction"


@dataclass(frozen=True, slots=True)
class XPLedgerEntry:
    """One immutable XP movement.  Corrections are new negative entries."""

    id: UUID
    user_id: str
    amount: int
    reason: XPReason
    reference_id: str
    created_at: datetime.datetime

    @staticmethod
    def new(
        *,
        user_id: str,
        amount: int,
        reason: XPReason,
        reference_id: str,
        created_at: datetime.datetime | None = None,
    ) -> XPLedgerEntry:
        return XPLedgerEntry(
            id=uuid4(),
            user_id=user_id,
            amount=amount,
            reason=reason,
            reference_id=reference_id,
            created_at=created_at or datetime.datetime.now(datetime.UTC),
        )

    @property
    def idempotency_key(self) -> tuple[str, str, str]:
        return (self.user_id, self.reason.value, self.reference_id)


@dataclass(frozen=True, slots=True)
class UserProgressAggregate:
    """Per-user running totals, owned by the engine.

    total_xp always equals the sum of the user's ledger amounts.  Level is
    derived from total_xp on read (app.services.levels) and never stored.
    """

    user_id: str
    total_xp: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: datetime.date | None = None

    @property
    def level(self) -> int:
        return level_for_xp(self.total_xp)


@dataclass(frozen=True, slots=True)
class GrantResult:
    granted: bool
    new_total: int
    amount: int = 0


@dataclass(frozen=True, slots=True)
class Reconciliation:
    user_id: str
    aggregate_total: int
    ledger_total: int

    @property
    def balanced(self) -> bool:
        return self.aggregate_total == self.ledger_total
