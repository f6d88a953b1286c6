from __future__ import annotations

import datetime
from collections.abc import Collection
from dataclasses import replace
from typing import Protocol

from app.models.ledger import UserProgressAggregate, XPLedgerEntry
from app.services.errors import ConflictRetryable


class ProgressRepo(Protocol):
    """XP ledger + per-user aggregate.

    The two live behind one repo because appending a ledger entry and
    bumping the aggregate total must happen atomically.
    """

    async def get_aggregate(self, user_id: str) -> UserProgressAggregate | None: ...
    async def get_or_create_aggregate(
        self, user_id: str, *, for_update: bool = False
    ) -> UserProgressAggregate: ...
    async def append_entry(self, entry: XPLedgerEntry) -> int: ...
    async def ledger_total(self, user_id: str) -> int: ...
    async def list_entries(
        self, user_id: str, limit: int | None = None
    ) -> list[XPLedgerEntry]: ...
    async def save_streak(
        self,
        user_id: str,
        *,
        current_streak: int,
        longest_streak: int,
        last_activity_date: datetime.date,
    ) -> UserProgressAggregate: ...
    async def list_totals(
        self, user_ids: Collection[str] | None = None
    ) -> list[tuple[str, int]]: ...


class InMemoryProgressRepo:
    """Dict-backed repo for tests and local runs.

    No method awaits anything, so each call is atomic with respect to the
    event loop, which gives the same guarantees the database's unique
    index and single-statement UPDATE give in production.
    """

    def __init__(self) -> None:
        self._aggregates: dict[str, UserProgressAggregate] = {}
        self._entries: list[XPLedgerEntry] = []
        self._first_grant_keys: set[tuple[str, str, str]] = set()

    async def get_aggregate(self, user_id: str) -> UserProgressAggregate | None:
        return self._aggregates.get(user_id)

    async def get_or_create_aggregate(
        self, user_id: str, *, for_update: bool = False
    ) -> UserProgressAggregate:
        agg = self._aggregates.get(user_id)
        if agg is None:
            agg = UserProgressAggregate(user_id=user_id)
            self._aggregates[user_id] = agg
        return agg

    async def append_entry(self, entry: XPLedgerEntry) -> int:
        """Append and return the user's new total.

        Raises ConflictRetryable when a positive entry already exists for
        the same (user, reason, reference).
        """
        if entry.amount > 0:
            if entry.idempotency_key in self._first_grant_keys:
                raise ConflictRetryable(
                    f"xp already granted for {entry.idempotency_key}"
                )
            self._first_grant_keys.add(entry.idempotency_key)

        self._entries.append(entry)
        agg = self._aggregates.get(entry.user_id) or UserProgressAggregate(
            user_id=entry.user_id
        )
        updated = replace(agg, total_xp=agg.total_xp + entry.amount)
        self._aggregates[entry.user_id] = updated
        return updated.total_xp

    async def ledger_total(self, user_id: str) -> int:
        return sum(e.amount for e in self._entries if e.user_id == user_id)

    async def list_entries(
        self, user_id: str, limit: int | None = None
    ) -> list[XPLedgerEntry]:
        entries = [e for e in reversed(self._entries) if e.user_id == user_id]
        return entries if limit is None else entries[:limit]

    async def save_streak(
        self,
        user_id: str,
        *,
        current_streak: int,
        longest_streak: int,
        last_activity_date: datetime.date,
    ) -> UserProgressAggregate:
        agg = self._aggregates.get(user_id) or UserProgressAggregate(user_id=user_id)
        updated = replace(
            agg,
            current_streak=current_streak,
            longest_streak=longest_streak,
            last_activity_date=last_activity_date,
        )
        self._aggregates[user_id] = updated
        return updated

    async def list_totals(
        self, user_ids: Collection[str] | None = None
    ) -> list[tuple[str, int]]:
        if user_ids is None:
            return [(a.user_id, a.total_xp) for a in self._aggregates.values()]
        return [
            (uid, self._aggregates[uid].total_xp if uid in self._aggregates else 0)
            for uid in user_ids
        ]
