"""XP ledger: idempotent grants over an append-only entry log.

Every XP movement is one ledger row; the per-user total is a running sum
kept next to it.  A grant is identified by (user, reason, reference), so
re-delivered events, retried jobs and concurrent duplicates all collapse
to a single positive entry.  The uniqueness check lives in the repo
(unique index in PostgreSQL), not here: the service appends first and
treats a conflict as "already granted".
"""

from __future__ import annotations

import datetime
import logging

from app.core.metrics import XP_GRANTS
from app.models.ledger import GrantResult, Reconciliation, XPLedgerEntry, XPReason
from app.repos.progress_repo import ProgressRepo
from app.services.errors import ConflictRetryable, ValidationError

logger = logging.getLogger(__name__)

# Fixed rewards.  badge_bonus is per badge and correction is caller-supplied.
XP_AMOUNTS: dict[XPReason, int] = {
    XPReason.LESSON_COMPLETE: 10,
    XPReason.QUIZ_PASS: 15,
    XPReason.COURSE_COMPLETE_BONUS: 50,
    XPReason.DAILY_LOGIN: 5,
}

# Streak length -> one-off bonus for reaching it.
STREAK_BONUSES: dict[int, int] = {7: 25, 30: 100, 100: 500}


def parse_reason(raw: str | XPReason) -> XPReason:
    try:
        return XPReason(raw)
    except ValueError:
        raise ValidationError(f"unknown xp reason {raw!r}") from None


def resolve_amount(reason: XPReason, amount: int | None) -> int:
    """Return the amount to grant for ``reason``.

    Raises ValidationError for a missing badge amount, a non-positive
    amount, or an amount that disagrees with the fixed table.
    """
    if reason == XPReason.CORRECTION:
        raise ValidationError("corrections go through correct(), not grant()")
    if reason == XPReason.STREAK_BONUS and amount not in STREAK_BONUSES.values():
        raise ValidationError(
            f"streak_bonus must be one of {sorted(STREAK_BONUSES.values())} XP"
            f" (got {amount})"
        )
    fixed = XP_AMOUNTS.get(reason)
    if fixed is None:
        if amount is None:
            raise ValidationError(f"{reason} requires an explicit amount")
        resolved = amount
    elif amount is not None and amount != fixed:
        raise ValidationError(f"{reason} is worth {fixed} XP (got {amount})")
    else:
        resolved = fixed
    if resolved <= 0:
        raise ValidationError(f"grant amount must be positive (got {resolved})")
    return resolved


class XPLedger:
    def __init__(self, repo: ProgressRepo) -> None:
        self._repo = repo

    async def grant(
        self,
        user_id: str,
        reason: XPReason,
        reference_id: str,
        amount: int | None = None,
    ) -> GrantResult:
        if not user_id:
            raise ValidationError("user_id must be non-empty")
        if not reference_id:
            raise ValidationError("reference_id must be non-empty")
        reason = parse_reason(reason)
        resolved = resolve_amount(reason, amount)

        entry = XPLedgerEntry.new(
            user_id=user_id,
            amount=resolved,
            reason=reason,
            reference_id=reference_id,
        )
        try:
            new_total = await self._repo.append_entry(entry)
        except ConflictRetryable:
            XP_GRANTS.labels(reason=reason.value, result="duplicate").inc()
            logger.info(
                "Duplicate xp grant ignored user=%s reason=%s ref=%s",
                user_id,
                reason,
                reference_id,
            )
            agg = await self._repo.get_or_create_aggregate(user_id)
            return GrantResult(granted=False, new_total=agg.total_xp)

        XP_GRANTS.labels(reason=reason.value, result="granted").inc()
        logger.info(
            "Granted xp=%d user=%s reason=%s ref=%s total=%d",
            resolved,
            user_id,
            reason,
            reference_id,
            new_total,
        )
        return GrantResult(granted=True, new_total=new_total, amount=resolved)

    async def correct(
        self, user_id: str, reference_id: str, amount: int
    ) -> GrantResult:
        """Append a negative correction entry.

        Existing entries are never edited or deleted; a correction is a new
        row and may be repeated for the same reference.
        """
        if not user_id or not reference_id:
            raise ValidationError("user_id and reference_id must be non-empty")
        if amount >= 0:
            raise ValidationError(f"correction amount must be negative (got {amount})")

        entry = XPLedgerEntry.new(
            user_id=user_id,
            amount=amount,
            reason=XPReason.CORRECTION,
            reference_id=reference_id,
        )
        new_total = await self._repo.append_entry(entry)
        XP_GRANTS.labels(reason=XPReason.CORRECTION.value, result="correction").inc()
        logger.warning(
            "Applied xp correction=%d user=%s ref=%s total=%d",
            amount,
            user_id,
            reference_id,
            new_total,
        )
        return GrantResult(granted=True, new_total=new_total, amount=amount)

    async def award_daily_login(
        self, user_id: str, day: datetime.date
    ) -> GrantResult:
        return await self.grant(user_id, XPReason.DAILY_LOGIN, day.isoformat())

    async def award_streak_bonus(
        self, user_id: str, streak: int, day: datetime.date
    ) -> GrantResult | None:
        """Grant the milestone bonus for a streak that just reached ``streak``
        on ``day``.  Returns None when ``streak`` is not a milestone.

        Keyed by milestone and day, so a replayed event cannot pay twice
        while a later run that reaches the milestone again does.
        """
        amount = STREAK_BONUSES.get(streak)
        if amount is None:
            return None
        return await self.grant(
            user_id,
            XPReason.STREAK_BONUS,
            f"streak-{streak}:{day.isoformat()}",
            amount,
        )

    async def total(self, user_id: str) -> int:
        agg = await self._repo.get_aggregate(user_id)
        return 0 if agg is None else agg.total_xp

    async def reconcile(self, user_id: str) -> Reconciliation:
        agg = await self._repo.get_aggregate(user_id)
        result = Reconciliation(
            user_id=user_id,
            aggregate_total=0 if agg is None else agg.total_xp,
            ledger_total=await self._repo.ledger_total(user_id),
        )
        if not result.balanced:
            logger.error(
                "XP aggregate drift user=%s aggregate=%d ledger=%d",
                user_id,
                result.aggregate_total,
                result.ledger_total,
            )
        return result

    async def recent_entries(
        self, user_id: str, limit: int = 10
    ) -> list[XPLedgerEntry]:
        return await self._repo.list_entries(user_id, limit=limit)
