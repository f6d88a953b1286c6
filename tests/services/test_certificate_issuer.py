from __future__ import annotations

import asyncio
import re

import pytest
from prometheus_client import REGISTRY

from app.models.certificate import CompletionStatus, EnrollmentStatus
from app.repos.certificate_repo import InMemoryCertificateRepo
from app.services.engine import ProgressEngine
from app.services.errors import NotEligibleError
from app.services.learning_records import InMemoryLearningRecords
from tests.conftest import setup_course


class _SlowReadCertificateRepo(InMemoryCertificateRepo):
    """Every caller sees "no certificate yet" before anyone inserts."""

    async def get(self, student_id, course_id):
        found = await super().get(student_id, course_id)
        await asyncio.sleep(0)
        return found


def _issued(result: str) -> float:
    return (
        REGISTRY.get_sample_value("certificates_issued_total", {"result": result})
        or 0.0
    )


def test_completion_status_counts_missing_work() -> None:
    status = CompletionStatus(
        total_lessons=3, completed_lessons=1, total_quizzes=1, passed_quizzes=0
    )
    assert status.missing_lessons == 2
    assert status.missing_quizzes == 1
    assert not status.is_complete
    assert status.missing_requirements == [
        "2 lessons not completed",
        "1 quiz not passed",
    ]


def test_generate_issues_certificate_with_side_effects(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    setup_course(records, "s-1", "course-1")

    result = asyncio.run(engine.generate("s-1", "course-1"))

    cert_id = result.certificate.certificate_id
    assert re.fullmatch(r"CERT-[0-9A-F]{8}-[0-9A-F]{4}", cert_id)
    assert result.already_existed is False
    assert result.is_first_completion is True
    assert result.xp_awarded == 50
    assert [b.badge.key for b in result.badges_awarded] == ["FIRST_COURSE_COMPLETE"]
    assert result.badge_evaluation_failed is False

    enrollment = asyncio.run(records.get_enrollment("s-1", "course-1"))
    assert enrollment.status == EnrollmentStatus.COMPLETED
    assert enrollment.progress_percent == 100
    assert enrollment.completed_at == result.certificate.issued_at

    # Course bonus 50 + first-course badge 200.
    assert asyncio.run(engine.ledger.total("s-1")) == 250


def test_generate_twice_returns_existing_without_side_effects(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    setup_course(records, "s-1", "course-1")

    async def scenario():
        first = await engine.generate("s-1", "course-1")
        second = await engine.generate("s-1", "course-1")
        return first, second

    first, second = asyncio.run(scenario())
    assert second.already_existed is True
    assert second.certificate == first.certificate
    assert second.xp_awarded == 0
    assert second.badges_awarded == []
    assert asyncio.run(engine.ledger.total("s-1")) == 250


def test_not_enrolled_is_not_eligible(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    records.add_course("course-1", lessons=["l-1"])
    with pytest.raises(NotEligibleError, match="not enrolled"):
        asyncio.run(engine.generate("s-1", "course-1"))


def test_unenrolled_student_is_not_eligible(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    setup_course(records, "s-1", "course-1")
    records.enroll("s-1", "course-1", EnrollmentStatus.UNENROLLED)
    with pytest.raises(NotEligibleError):
        asyncio.run(engine.generate("s-1", "course-1"))


def test_incomplete_course_reports_missing_counts(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    lessons, _ = setup_course(records, "s-1", "course-1", lessons=3, complete=False)
    records.complete_lesson("s-1", "course-1", lessons[0])

    with pytest.raises(NotEligibleError) as excinfo:
        asyncio.run(engine.generate("s-1", "course-1"))

    err = excinfo.value
    assert err.missing_lessons == 2
    assert err.missing_quizzes == 1
    assert str(err) == "2 lessons not completed, 1 quiz not passed"
    assert asyncio.run(engine.list_certificates("s-1")) == []


def test_course_without_lessons_counts_as_complete(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    setup_course(records, "s-1", "empty-course", lessons=0, quizzes=0)
    result = asyncio.run(engine.generate("s-1", "empty-course"))
    assert result.already_existed is False


def test_concurrent_generate_issues_exactly_one(
    records: InMemoryLearningRecords,
) -> None:
    setup_course(records, "s-1", "course-1")
    engine = ProgressEngine.in_memory(records=records)
    slow_repo = _SlowReadCertificateRepo()
    engine.issuer._certificates = slow_repo

    before_race = _issued("race_lost")

    async def scenario():
        return await asyncio.gather(
            *(engine.generate("s-1", "course-1") for _ in range(8))
        )

    results = asyncio.run(scenario())

    created = [r for r in results if not r.already_existed]
    assert len(created) == 1
    assert {r.certificate.certificate_id for r in results} == {
        created[0].certificate.certificate_id
    }
    assert asyncio.run(slow_repo.count_for_student("s-1")) == 1
    assert _issued("race_lost") - before_race == 7
    # Bonus and badge XP were granted once.
    assert asyncio.run(engine.ledger.total("s-1")) == 250


def test_second_course_is_not_first_completion(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    setup_course(records, "s-1", "course-1")
    setup_course(records, "s-1", "course-2")

    async def scenario():
        await engine.generate("s-1", "course-1")
        return await engine.generate("s-1", "course-2")

    second = asyncio.run(scenario())
    assert second.is_first_completion is False
    assert second.xp_awarded == 50
    assert second.badges_awarded == []


def test_badge_failure_keeps_certificate(
    engine: ProgressEngine,
    records: InMemoryLearningRecords,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    setup_course(records, "s-1", "course-1")

    async def boom(user_id: str):
        raise RuntimeError("badge store down")

    monkeypatch.setattr(engine.badges, "reevaluate", boom)

    result = asyncio.run(engine.generate("s-1", "course-1"))
    assert result.badge_evaluation_failed is True
    assert result.xp_awarded == 50
    cert = asyncio.run(engine.get_certificate(result.certificate.certificate_id))
    assert cert == result.certificate


def test_maybe_generate_returns_none_when_not_eligible(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    setup_course(records, "s-1", "course-1", complete=False)
    assert asyncio.run(engine.issuer.maybe_generate("s-1", "course-1")) is None


def test_certificate_lookups(
    engine: ProgressEngine, records: InMemoryLearningRecords
) -> None:
    setup_course(records, "s-1", "course-1")
    setup_course(records, "s-1", "course-2")

    async def scenario():
        a = await engine.generate("s-1", "course-1")
        b = await engine.generate("s-1", "course-2")
        return a, b

    a, b = asyncio.run(scenario())
    listed = asyncio.run(engine.list_certificates("s-1"))
    assert {c.course_id for c in listed} == {"course-1", "course-2"}
    assert asyncio.run(engine.get_certificate(b.certificate.certificate_id)) == (
        b.certificate
    )
    assert asyncio.run(engine.get_certificate("CERT-00000000-0000")) is None
    assert asyncio.run(engine.completion_status("s-1", "course-1")).is_complete
