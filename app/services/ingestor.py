"""Event ingestion: the engine's front door.

One learning event fans out, in order, to:

  1. the XP ledger       (lesson and quiz events earn XP, keyed by their id)
  2. the streak tracker  (lesson and quiz events count as daily activity;
                         7, 30 and 100 days pay a streak bonus)
  3. the badge evaluator (counters may have crossed a target)
  4. the issuer          (any course event may have completed the course)

Replaying an event is harmless: steps 1, 3 and 4 are guarded by
uniqueness in storage and step 2 ignores a day it has already counted.
There is no "seen events" table.
"""

from __future__ import annotations

import logging
import uuid

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.metrics import OPERATION_DURATION, PROGRESS_EVENTS
from app.models.badge import BadgeUnlockResult
from app.models.ledger import XPReason
from app.models.progress import EventKind, IngestResult, ProgressEvent
from app.services.badge_evaluator import BadgeEvaluator
from app.services.certificate_issuer import CertificateIssuer
from app.services.errors import UnsupportedEventError, ValidationError
from app.services.event_context import event_context
from app.services.streak_tracker import StreakTracker
from app.services.xp_ledger import XPLedger

logger = logging.getLogger(__name__)

_ACTIVITY_KINDS = frozenset({EventKind.LESSON_COMPLETED, EventKind.QUIZ_PASSED})


class ProgressEventIn(BaseModel):
    """Wire shape of a progress event (queue message or webhook body)."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: uuid.UUID | None = None
    user_id: str = Field(min_length=1, max_length=128)
    kind: str = Field(min_length=1)
    course_id: str = Field(min_length=1, max_length=128)
    lesson_id: str | None = None
    quiz_id: str | None = None
    occurred_at: AwareDatetime


def parse_kind(raw: str | EventKind) -> EventKind:
    try:
        return EventKind(raw)
    except ValueError:
        raise UnsupportedEventError(f"unsupported event kind {raw!r}") from None


def validate_event(event: ProgressEvent) -> ProgressEvent:
    """Check an event before any state is touched; returns it normalized."""
    kind = parse_kind(event.kind)
    if not event.user_id:
        raise ValidationError("user_id must be non-empty")
    if not event.course_id:
        raise ValidationError("course_id must be non-empty")
    if kind == EventKind.LESSON_COMPLETED and not event.lesson_id:
        raise ValidationError("lesson_completed requires lesson_id")
    if kind == EventKind.QUIZ_PASSED and not event.quiz_id:
        raise ValidationError("quiz_passed requires quiz_id")
    occurred_at = event.occurred_at
    if occurred_at.tzinfo is None or occurred_at.utcoffset() is None:
        raise ValidationError("occurred_at must be timezone-aware")
    return ProgressEvent(
        id=event.id,
        user_id=event.user_id,
        kind=kind,
        course_id=event.course_id,
        lesson_id=event.lesson_id,
        quiz_id=event.quiz_id,
        occurred_at=occurred_at,
    )


def _xp_reward(event: ProgressEvent) -> tuple[XPReason, str] | None:
    """(reason, reference id) of the XP an event earns, if any."""
    if event.kind == EventKind.LESSON_COMPLETED and event.lesson_id:
        return XPReason.LESSON_COMPLETE, event.lesson_id
    if event.kind == EventKind.QUIZ_PASSED and event.quiz_id:
        return XPReason.QUIZ_PASS, event.quiz_id
    return None


class Ingestor:
    def __init__(
        self,
        ledger: XPLedger,
        streaks: StreakTracker,
        badges: BadgeEvaluator,
        issuer: CertificateIssuer,
    ) -> None:
        self._ledger = ledger
        self._streaks = streaks
        self._badges = badges
        self._issuer = issuer

    async def ingest_payload(self, payload: dict) -> IngestResult:
        """Validate a raw payload and ingest it."""
        try:
            data = ProgressEventIn.model_validate(payload)
        except PydanticValidationError as e:
            raw_kind = payload.get("kind") if isinstance(payload, dict) else None
            PROGRESS_EVENTS.labels(
                kind=str(raw_kind or "unknown"), result="rejected"
            ).inc()
            logger.warning("Rejected malformed event payload: %s", e)
            raise ValidationError(f"malformed event payload: {e}") from e

        event = ProgressEvent(
            user_id=data.user_id,
            kind=data.kind,  # type: ignore[arg-type]  # checked in validate_event
            course_id=data.course_id,
            lesson_id=data.lesson_id or None,
            quiz_id=data.quiz_id or None,
            occurred_at=data.occurred_at,
            id=data.id or uuid.uuid4(),
        )
        return await self.ingest(event)

    async def ingest(self, event: ProgressEvent) -> IngestResult:
        with event_context(
            event_id=str(event.id),
            user_id=event.user_id,
            course_id=event.course_id,
            event_kind=str(event.kind),
        ):
            try:
                event = validate_event(event)
            except UnsupportedEventError:
                PROGRESS_EVENTS.labels(
                    kind=str(event.kind), result="unsupported"
                ).inc()
                logger.warning("Dropped unsupported event kind=%s", event.kind)
                raise
            except ValidationError as e:
                PROGRESS_EVENTS.labels(kind=str(event.kind), result="rejected").inc()
                logger.warning("Rejected event: %s", e)
                raise

            try:
                with OPERATION_DURATION.labels(operation="ingest").time():
                    result = await self._process(event)
            except Exception:
                PROGRESS_EVENTS.labels(kind=event.kind.value, result="failed").inc()
                raise

            PROGRESS_EVENTS.labels(kind=event.kind.value, result="processed").inc()
            return result

    async def _process(self, event: ProgressEvent) -> IngestResult:
        xp_grant = None
        reward = _xp_reward(event)
        if reward is not None:
            reason, reference_id = reward
            xp_grant = await self._ledger.grant(event.user_id, reason, reference_id)

        streak = None
        if event.kind in _ACTIVITY_KINDS:
            streak = await self._streaks.record_activity(
                event.user_id, event.activity_date
            )

        needs_reevaluation = False
        badges: list[BadgeUnlockResult] = []
        try:
            badges = await self._badges.reevaluate(event.user_id)
        except Exception:
            logger.exception("Badge evaluation failed; XP and streak are kept")
            needs_reevaluation = True

        certificate = await self._issuer.maybe_generate(
            event.user_id, event.course_id
        )
        if certificate is not None and certificate.badge_evaluation_failed:
            needs_reevaluation = True

        return IngestResult(
            event=event,
            xp_grant=xp_grant,
            streak=streak,
            badges_unlocked=badges,
            certificate=certificate,
            needs_reevaluation=needs_reevaluation,
        )
