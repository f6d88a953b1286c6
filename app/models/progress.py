from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID, uuid4

from app.models.badge import BadgeUnlockResult, UserBadge
from app.models.certificate import GenerateResult
from app.models.ledger import GrantResult, XPLedgerEntry


class EventKind(StrEnum):
    LESSON_COMPLETED = "lesson_completed"
    QUIZ_PASSED = "quiz_passed"
    COURSE_PROGRESS_CHANGED = "course_progress_changed"
    COURSE_COMPLETED = "course_completed"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """A learning event produced by an external collaborator.

    Transient: the engine derives durable state from it but never stores
    the event itself.  ``id`` only correlates log lines.
    """

    user_id: str
    kind: EventKind
    course_id: str
    occurred_at: datetime.datetime
    lesson_id: str | None = None
    quiz_id: str | None = None
    id: UUID = field(default_factory=uuid4)

    @property
    def activity_date(self) -> datetime.date:
        return self.occurred_at.astimezone(datetime.UTC).date()


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    current_streak: int
    longest_streak: int
    changed: bool = False
    # Set when this update reached a milestone (7, 30 or 100 days).
    bonus: GrantResult | None = None


@dataclass(frozen=True, slots=True)
class IngestResult:
    event: ProgressEvent
    xp_grant: GrantResult | None = None
    streak: StreakUpdate | None = None
    badges_unlocked: list[BadgeUnlockResult] = field(default_factory=list)
    certificate: GenerateResult | None = None
    # Set when badge evaluation failed after other state was persisted.
    needs_reevaluation: bool = False


@dataclass(frozen=True, slots=True)
class ProgressSummary:
    """Everything a progress page shows for one user, in one read."""

    user_id: str
    total_xp: int
    level: int
    xp_to_next_level: int
    current_streak: int
    longest_streak: int
    last_activity_date: datetime.date | None
    badges: list[UserBadge] = field(default_factory=list)
    recent_xp: list[XPLedgerEntry] = field(default_factory=list)
    certificates_earned: int = 0
