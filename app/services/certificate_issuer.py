"""Course completion and certificate issuance.

A student gets exactly one certificate per course, however many times
generate() is called and however many callers race.  The certificate row
is the point of no return: once it exists, everything after it (the
enrollment write-back, the completion bonus, badge re-evaluation) is
best-effort and idempotent, and a failure there never takes the
certificate back.
"""

from __future__ import annotations

import logging

from app.core.metrics import CERTIFICATES_ISSUED
from app.models.certificate import (
    Certificate,
    CompletionStatus,
    EnrollmentStatus,
    GenerateResult,
)
from app.models.badge import BadgeUnlockResult
from app.models.ledger import XPReason
from app.repos.certificate_repo import CertificateRepo
from app.services.badge_evaluator import BadgeEvaluator
from app.services.errors import (
    ConflictRetryable,
    NotEligibleError,
    PersistenceUnavailableError,
    ValidationError,
)
from app.services.learning_records import LearningRecords
from app.services.xp_ledger import XPLedger

logger = logging.getLogger(__name__)

# Certificate ids are random; a collision is astronomically unlikely but
# the unique index would report it as a conflict, so retry with a new id.
_MAX_ID_ATTEMPTS = 3


class CertificateIssuer:
    def __init__(
        self,
        certificates: CertificateRepo,
        records: LearningRecords,
        ledger: XPLedger,
        badges: BadgeEvaluator,
    ) -> None:
        self._certificates = certificates
        self._records = records
        self._ledger = ledger
        self._badges = badges

    async def completion_status(
        self, student_id: str, course_id: str
    ) -> CompletionStatus:
        _require_ids(student_id, course_id)
        return await self._records.completion_status(student_id, course_id)

    async def generate(self, student_id: str, course_id: str) -> GenerateResult:
        _require_ids(student_id, course_id)

        existing = await self._certificates.get(student_id, course_id)
        if existing is not None:
            CERTIFICATES_ISSUED.labels(result="existing").inc()
            return GenerateResult(certificate=existing, already_existed=True)

        enrollment = await self._records.get_enrollment(student_id, course_id)
        if enrollment is None or enrollment.status == EnrollmentStatus.UNENROLLED:
            CERTIFICATES_ISSUED.labels(result="not_eligible").inc()
            raise NotEligibleError(
                f"student {student_id} is not enrolled in course {course_id}"
            )

        status = await self._records.completion_status(student_id, course_id)
        if not status.is_complete:
            CERTIFICATES_ISSUED.labels(result="not_eligible").inc()
            raise NotEligibleError(
                ", ".join(status.missing_requirements),
                missing_lessons=status.missing_lessons,
                missing_quizzes=status.missing_quizzes,
            )

        is_first = await self._certificates.count_for_student(student_id) == 0

        certificate, winner = await self._create(student_id, course_id)
        if winner is not None:
            CERTIFICATES_ISSUED.labels(result="race_lost").inc()
            logger.info(
                "Certificate race lost student=%s course=%s, returning %s",
                student_id,
                course_id,
                winner.certificate_id,
            )
            return GenerateResult(certificate=winner, already_existed=True)

        CERTIFICATES_ISSUED.labels(result="issued").inc()
        logger.info(
            "Issued certificate=%s student=%s course=%s first=%s",
            certificate.certificate_id,
            student_id,
            course_id,
            is_first,
        )

        await self._records.mark_enrollment_completed(
            student_id, course_id, certificate.issued_at
        )
        grant = await self._ledger.grant(
            student_id, XPReason.COURSE_COMPLETE_BONUS, course_id
        )

        badge_failed = False
        badges: list[BadgeUnlockResult] = []
        try:
            badges = await self._badges.reevaluate(student_id)
        except Exception:
            logger.exception(
                "Badge evaluation failed after certificate=%s; needs re-run",
                certificate.certificate_id,
            )
            badge_failed = True

        return GenerateResult(
            certificate=certificate,
            xp_awarded=grant.amount if grant.granted else 0,
            badges_awarded=badges,
            is_first_completion=is_first,
            badge_evaluation_failed=badge_failed,
        )

    async def maybe_generate(
        self, student_id: str, course_id: str
    ) -> GenerateResult | None:
        """generate(), but a not-yet-eligible student is None rather than an error."""
        try:
            return await self.generate(student_id, course_id)
        except NotEligibleError as e:
            logger.debug(
                "Course not complete student=%s course=%s: %s", student_id, course_id, e
            )
            return None

    async def get_certificate(self, certificate_id: str) -> Certificate | None:
        return await self._certificates.get_by_certificate_id(certificate_id)

    async def list_certificates(self, student_id: str) -> list[Certificate]:
        return await self._certificates.list_for_student(student_id)

    async def _create(
        self, student_id: str, course_id: str
    ) -> tuple[Certificate, Certificate | None]:
        """Insert a new certificate.

        Returns (certificate, None) when this call created it, or
        (certificate, winner) when another caller already holds the pair.
        """
        for _ in range(_MAX_ID_ATTEMPTS):
            certificate = Certificate.new(student_id=student_id, course_id=course_id)
            try:
                await self._certificates.add(certificate)
                return certificate, None
            except ConflictRetryable:
                winner = await self._certificates.get(student_id, course_id)
                if winner is not None:
                    return certificate, winner
                logger.warning(
                    "Certificate id collision id=%s", certificate.certificate_id
                )
        raise PersistenceUnavailableError(
            "could not allocate a unique certificate id"
        )


def _require_ids(student_id: str, course_id: str) -> None:
    if not student_id:
        raise ValidationError("student_id must be non-empty")
    if not course_id:
        raise ValidationError("course_id must be non-empty")
