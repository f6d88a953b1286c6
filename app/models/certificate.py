from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import StrEnum
from uuid import uuid4

from app.models.badge import BadgeUnlockResult


class EnrollmentStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    UNENROLLED = "unenrolled"


@dataclass(frozen=True, slots=True)
class EnrollmentProgress:
    """Owned by the course collaborator; the engine reads it and writes
    back status=completed on certification."""

    student_id: str
    course_id: str
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    progress_percent: int = 0
    completed_at: datetime.datetime | None = None


@dataclass(frozen=True, slots=True)
class CompletionStatus:
    total_lessons: int
    completed_lessons: int
    total_quizzes: int
    passed_quizzes: int

    @property
    def missing_lessons(self) -> int:
        return max(0, self.total_lessons - self.completed_lessons)

    @property
    def missing_quizzes(self) -> int:
        return max(0, self.total_quizzes - self.passed_quizzes)

    @property
    def is_complete(self) -> bool:
        return self.missing_lessons == 0 and self.missing_quizzes == 0

    @property
    def missing_requirements(self) -> list[str]:
        missing = []
        if self.missing_lessons:
            n = self.missing_lessons
            missing.append(f"{n} lesson{'s' if n > 1 else ''} not completed")
        if self.missing_quizzes:
            n = self.missing_quizzes
            missing.append(f"{n} quiz{'zes' if n > 1 else ''} not passed")
        return missing


def new_certificate_id() -> str:
    """Opaque public token, e.g. CERT-1A2B3C4D-5E6F."""
    raw = uuid4().hex.upper()
    return f"CERT-{raw[:8]}-{raw[8:12]}"


@dataclass(frozen=True, slots=True)
class Certificate:
    """Immutable proof of completion.  Unique per (student_id, course_id)."""

    certificate_id: str
    student_id: str
    course_id: str
    issued_at: datetime.datetime

    @staticmethod
    def new(
        *,
        student_id: str,
        course_id: str,
        issued_at: datetime.datetime | None = None,
    ) -> Certificate:
        return Certificate(
            certificate_id=new_certificate_id(),
            student_id=student_id,
            course_id=course_id,
            issued_at=issued_at or datetime.datetime.now(datetime.UTC),
        )


@dataclass(frozen=True, slots=True)
class GenerateResult:
    certificate: Certificate
    xp_awarded: int = 0
    badges_awarded: list[BadgeUnlockResult] = field(default_factory=list)
    is_first_completion: bool = False
    already_existed: bool = False
    # Certificate is kept even when this is True; the caller should
    # re-trigger badge evaluation later.
    badge_evaluation_failed: bool = False
