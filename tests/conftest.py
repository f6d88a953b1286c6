from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

from app import worker
from app.models.progress import EventKind, ProgressEvent
from app.services.cache import cache_service
from app.services.engine import ProgressEngine
from app.services.learning_records import InMemoryLearningRecords
from app.services.task_queue import task_queue
from app.services.user_locks import user_locks

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_user_locks() -> None:
    """asyncio locks are bound to the loop of the test that first contended them."""
    if hasattr(user_locks, "_locks"):
        user_locks._locks.clear()  # type: ignore[union-attr]
        user_locks._users.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_worker_engine() -> None:
    """Fresh in-memory engine (and course data) for every worker test."""
    worker.set_learning_records(InMemoryLearningRecords())


@pytest.fixture
def records() -> InMemoryLearningRecords:
    return InMemoryLearningRecords()


@pytest.fixture
def engine(records: InMemoryLearningRecords) -> ProgressEngine:
    return ProgressEngine.in_memory(records=records)


# ---------------------------------------------------------------------------
# Event helpers
# ---------------------------------------------------------------------------


def at(day: datetime.date, hour: int = 12) -> datetime.datetime:
    """Aware UTC timestamp on ``day``."""
    return datetime.datetime(day.year, day.month, day.day, hour, tzinfo=datetime.UTC)


def lesson_event(
    user_id: str,
    course_id: str,
    lesson_id: str,
    occurred_at: datetime.datetime | None = None,
) -> ProgressEvent:
    return ProgressEvent(
        user_id=user_id,
        kind=EventKind.LESSON_COMPLETED,
        course_id=course_id,
        lesson_id=lesson_id,
        occurred_at=occurred_at or datetime.datetime.now(datetime.UTC),
    )


def quiz_event(
    user_id: str,
    course_id: str,
    quiz_id: str,
    occurred_at: datetime.datetime | None = None,
) -> ProgressEvent:
    return ProgressEvent(
        user_id=user_id,
        kind=EventKind.QUIZ_PASSED,
        course_id=course_id,
        quiz_id=quiz_id,
        occurred_at=occurred_at or datetime.datetime.now(datetime.UTC),
    )


def setup_course(
    records: InMemoryLearningRecords,
    student_id: str,
    course_id: str,
    *,
    lessons: int = 2,
    quizzes: int = 1,
    complete: bool = True,
) -> tuple[list[str], list[str]]:
    """Create a course, enroll the student and optionally finish it.

    Returns the (lesson_ids, quiz_ids) of the course.
    """
    lesson_ids = [f"{course_id}-lesson-{i}" for i in range(lessons)]
    quiz_ids = [f"{course_id}-quiz-{i}" for i in range(quizzes)]
    records.add_course(course_id, lessons=lesson_ids, quizzes=quiz_ids)
    records.enroll(student_id, course_id)
    if complete:
        for lesson_id in lesson_ids:
            records.complete_lesson(student_id, course_id, lesson_id)
        for quiz_id in quiz_ids:
            records.pass_quiz(student_id, course_id, quiz_id)
    return lesson_ids, quiz_ids
