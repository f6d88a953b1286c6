"""Badge unlocking.

Badges are a ratchet: once earned they are never revoked by the engine,
and each is earned at most once per user (unique (user_id, badge_key)).
Evaluation is a pure comparison of a counter snapshot against the
catalog, so it is safe to run after every event and to re-run later when
a previous evaluation failed.
"""

from __future__ import annotations

import datetime
import logging

from app.core.metrics import BADGE_UNLOCKS
from app.models.badge import (
    BadgeDefinition,
    BadgeProgress,
    BadgeUnlockResult,
    CriteriaType,
    UserBadge,
)
from app.models.ledger import XPReason
from app.repos.badge_repo import BadgeRepo
from app.repos.progress_repo import ProgressRepo
from app.services.badge_catalog import BadgeCatalog
from app.services.errors import ConflictRetryable, ValidationError
from app.services.learning_records import LearningRecords
from app.services.xp_ledger import XPLedger

logger = logging.getLogger(__name__)


class BadgeEvaluator:
    def __init__(
        self,
        catalog: BadgeCatalog,
        badges: BadgeRepo,
        progress: ProgressRepo,
        records: LearningRecords,
        ledger: XPLedger,
    ) -> None:
        self._catalog = catalog
        self._badges = badges
        self._progress = progress
        self._records = records
        self._ledger = ledger

    async def snapshot(self, user_id: str) -> dict[CriteriaType, int]:
        """Current value of every counter a badge can be defined over."""
        agg = await self._progress.get_aggregate(user_id)
        return {
            CriteriaType.COURSES_COMPLETED: await self._records.count_completed_courses(
                user_id
            ),
            # Longest, not current: a broken streak must not hide a badge
            # the user already qualified for.
            CriteriaType.STREAK_DAYS: 0 if agg is None else agg.longest_streak,
            CriteriaType.QUIZZES_PASSED: await self._records.count_passed_quizzes(
                user_id
            ),
            CriteriaType.REVIEWS_WRITTEN: await self._records.count_reviews(user_id),
        }

    async def reevaluate(self, user_id: str) -> list[BadgeUnlockResult]:
        """Unlock every badge whose criteria are now met.

        Returns only the badges unlocked by this call.
        """
        if not user_id:
            raise ValidationError("user_id must be non-empty")

        counters = await self.snapshot(user_id)
        held = {b.badge_key for b in await self._badges.list_for_user(user_id)}

        unlocked: list[BadgeUnlockResult] = []
        for badge in self._catalog:
            if badge.key in held:
                continue
            if counters[badge.criteria_type] < badge.target:
                continue
            result = await self._unlock(user_id, badge)
            if result is not None:
                unlocked.append(result)
        return unlocked

    async def _unlock(
        self, user_id: str, badge: BadgeDefinition
    ) -> BadgeUnlockResult | None:
        user_badge = UserBadge(
            user_id=user_id,
            badge_key=badge.key,
            earned_at=datetime.datetime.now(datetime.UTC),
        )
        try:
            await self._badges.add(user_badge)
        except ConflictRetryable:
            # A concurrent evaluation got there first; it also grants the XP.
            logger.info("Badge already held user=%s badge=%s", user_id, badge.key)
            return None

        xp_awarded = 0
        if badge.xp_reward > 0:
            grant = await self._ledger.grant(
                user_id, XPReason.BADGE_BONUS, badge.key, amount=badge.xp_reward
            )
            xp_awarded = grant.amount if grant.granted else 0

        BADGE_UNLOCKS.labels(badge_key=badge.key).inc()
        logger.info(
            "Unlocked badge=%s user=%s xp=%d", badge.key, user_id, xp_awarded
        )
        return BadgeUnlockResult(
            badge=badge, user_badge=user_badge, xp_awarded=xp_awarded
        )

    async def progress(self, user_id: str) -> list[BadgeProgress]:
        """Per-badge progress toward the target, for display."""
        counters = await self.snapshot(user_id)
        held = await self._badges.list_for_user(user_id)
        earned = {b.badge_key: b.earned_at for b in held}
        return [
            BadgeProgress(
                badge=badge,
                progress=min(counters[badge.criteria_type], badge.target),
                earned_at=earned.get(badge.key),
            )
            for badge in self._catalog
        ]

    async def earned(self, user_id: str) -> list[UserBadge]:
        return await self._badges.list_for_user(user_id)
