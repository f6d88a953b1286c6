"""The course and enrollment collaborator.

Lessons, quizzes, enrollments and reviews are owned by the course
service, not by this engine.  The engine only needs to read a handful of
counts from it and to write back "completed" when a certificate is
issued.  Hosts implement ``LearningRecords`` over their own storage;
``InMemoryLearningRecords`` backs tests and local runs.
"""

from __future__ import annotations

import datetime
from dataclasses import replace
from typing import Protocol

from app.models.certificate import (
    CompletionStatus,
    EnrollmentProgress,
    EnrollmentStatus,
)


class LearningRecords(Protocol):
    async def completion_status(
        self, student_id: str, course_id: str
    ) -> CompletionStatus: ...
    async def get_enrollment(
        self, student_id: str, course_id: str
    ) -> EnrollmentProgress | None: ...
    async def count_completed_courses(self, student_id: str) -> int: ...
    async def count_passed_quizzes(self, student_id: str) -> int: ...
    async def count_reviews(self, student_id: str) -> int: ...
    async def list_course_students(self, course_id: str) -> list[str]: ...
    async def mark_enrollment_completed(
        self, student_id: str, course_id: str, completed_at: datetime.datetime
    ) -> None: ...


class InMemoryLearningRecords:
    """Dict-backed collaborator.

    Tests set up a course with ``add_course`` and drive progress with
    ``enroll``, ``complete_lesson``, ``pass_quiz`` and ``add_review``.
    """

    def __init__(self) -> None:
        self._lessons: dict[str, set[str]] = {}
        self._quizzes: dict[str, set[str]] = {}
        self._enrollments: dict[tuple[str, str], EnrollmentProgress] = {}
        self._completed_lessons: dict[tuple[str, str], set[str]] = {}
        self._passed_quizzes: dict[tuple[str, str], set[str]] = {}
        self._reviews: dict[str, int] = {}

    # --- setup helpers ---

    def add_course(
        self,
        course_id: str,
        *,
        lessons: list[str] | tuple[str, ...] = (),
        quizzes: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._lessons[course_id] = set(lessons)
        self._quizzes[course_id] = set(quizzes)

    def enroll(
        self,
        student_id: str,
        course_id: str,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
    ) -> None:
        self._enrollments[(student_id, course_id)] = EnrollmentProgress(
            student_id=student_id, course_id=course_id, status=status
        )

    def complete_lesson(self, student_id: str, course_id: str, lesson_id: str) -> None:
        self._completed_lessons.setdefault((student_id, course_id), set()).add(
            lesson_id
        )

    def pass_quiz(self, student_id: str, course_id: str, quiz_id: str) -> None:
        self._passed_quizzes.setdefault((student_id, course_id), set()).add(quiz_id)

    def add_review(self, student_id: str) -> None:
        self._reviews[student_id] = self._reviews.get(student_id, 0) + 1

    # --- LearningRecords ---

    async def completion_status(
        self, student_id: str, course_id: str
    ) -> CompletionStatus:
        lessons = self._lessons.get(course_id, set())
        quizzes = self._quizzes.get(course_id, set())
        done = self._completed_lessons.get((student_id, course_id), set())
        passed = self._passed_quizzes.get((student_id, course_id), set())
        return CompletionStatus(
            total_lessons=len(lessons),
            completed_lessons=len(done & lessons),
            total_quizzes=len(quizzes),
            passed_quizzes=len(passed & quizzes),
        )

    async def get_enrollment(
        self, student_id: str, course_id: str
    ) -> EnrollmentProgress | None:
        return self._enrollments.get((student_id, course_id))

    async def count_completed_courses(self, student_id: str) -> int:
        return sum(
            1
            for (sid, _), e in self._enrollments.items()
            if sid == student_id and e.status == EnrollmentStatus.COMPLETED
        )

    async def count_passed_quizzes(self, student_id: str) -> int:
        return sum(
            len(passed)
            for (sid, _), passed in self._passed_quizzes.items()
            if sid == student_id
        )

    async def count_reviews(self, student_id: str) -> int:
        return self._reviews.get(student_id, 0)

    async def list_course_students(self, course_id: str) -> list[str]:
        return sorted(
            sid
            for (sid, cid), e in self._enrollments.items()
            if cid == course_id and e.status != EnrollmentStatus.UNENROLLED
        )

    async def mark_enrollment_completed(
        self, student_id: str, course_id: str, completed_at: datetime.datetime
    ) -> None:
        key = (student_id, course_id)
        current = self._enrollments.get(key) or EnrollmentProgress(
            student_id=student_id, course_id=course_id
        )
        self._enrollments[key] = replace(
            current,
            status=EnrollmentStatus.COMPLETED,
            progress_percent=100,
            completed_at=completed_at,
        )
