"""Daily activity streaks.

A streak counts consecutive UTC calendar days with at least one
qualifying activity (a completed lesson or a passed quiz).  Unlike XP,
the update is a read-modify-write of the aggregate, so it runs under the
user's lock.  Reaching 7, 30 or 100 days pays a one-off streak bonus
through the XP ledger.
"""

from __future__ import annotations

import datetime
import logging

from app.models.ledger import UserProgressAggregate
from app.models.progress import StreakUpdate
from app.repos.progress_repo import ProgressRepo
from app.services.errors import ValidationError
from app.services.user_locks import UserLocks
from app.services.xp_ledger import XPLedger

logger = logging.getLogger(__name__)


def day_of(moment: datetime.datetime) -> datetime.date:
    """UTC calendar day of an aware timestamp."""
    if moment.tzinfo is None or moment.utcoffset() is None:
        raise ValidationError("timestamp must be timezone-aware")
    return moment.astimezone(datetime.UTC).date()


def advance_streak(
    agg: UserProgressAggregate, day: datetime.date
) -> tuple[int, int, datetime.date]:
    """Pure streak rule.

    Returns (current_streak, longest_streak, last_activity_date).
      first activity ever    -> 1
      same day as last       -> unchanged
      the day after last     -> +1
      any later day          -> reset to 1
      a day before last      -> unchanged (late, out-of-order delivery)
    """
    last = agg.last_activity_date
    current = agg.current_streak

    if last is None:
        current = 1
    elif day == last or day < last:
        return agg.current_streak, agg.longest_streak, last
    elif day == last + datetime.timedelta(days=1):
        current += 1
    else:
        current = 1

    return current, max(agg.longest_streak, current), day


class StreakTracker:
    def __init__(self, repo: ProgressRepo, locks: UserLocks, ledger: XPLedger) -> None:
        self._repo = repo
        self._locks = locks
        self._ledger = ledger

    async def record_activity(
        self, user_id: str, activity_date: datetime.date
    ) -> StreakUpdate:
        if not user_id:
            raise ValidationError("user_id must be non-empty")

        async with self._locks.hold(user_id):
            agg = await self._repo.get_or_create_aggregate(user_id, for_update=True)
            current, longest, last = advance_streak(agg, activity_date)

            if (current, longest, last) == (
                agg.current_streak,
                agg.longest_streak,
                agg.last_activity_date,
            ):
                return StreakUpdate(current_streak=current, longest_streak=longest)

            await self._repo.save_streak(
                user_id,
                current_streak=current,
                longest_streak=longest,
                last_activity_date=last,
            )

        logger.info(
            "Streak user=%s day=%s current=%d longest=%d",
            user_id,
            activity_date,
            current,
            longest,
        )
        # Milestones are >= 7, so reaching one always means the streak grew.
        bonus = await self._ledger.award_streak_bonus(user_id, current, last)
        return StreakUpdate(
            current_streak=current, longest_streak=longest, changed=True, bonus=bonus
        )
