"""PostgreSQL implementation of ProgressRepo."""

from __future__ import annotations

import datetime
from collections.abc import Collection

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import UserProgressRow, XPLedgerEntryRow
from app.models.ledger import UserProgressAggregate, XPLedgerEntry, XPReason
from app.repos.pg_errors import guarded_insert, storage_errors


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_aggregate(self, user_id: str) -> UserProgressAggregate | None:
        stmt = (
            select(UserProgressRow)
            .where(UserProgressRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        async with storage_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_aggregate(row)

    async def get_or_create_aggregate(
        self, user_id: str, *, for_update: bool = False
    ) -> UserProgressAggregate:
        """Lazily create the zero-valued aggregate.

        for_update=True takes a row lock held until the transaction ends,
        which serializes concurrent streak updates for the same user.
        """
        await self._ensure_aggregate(user_id)
        stmt = (
            select(UserProgressRow)
            .where(UserProgressRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        async with storage_errors():
            row = (await self._session.execute(stmt)).scalar_one()
        return _row_to_aggregate(row)

    async def append_entry(self, entry: XPLedgerEntry) -> int:
        await self._ensure_aggregate(entry.user_id)

        async with guarded_insert(self._session, f"xp grant {entry.idempotency_key}"):
            self._session.add(
                XPLedgerEntryRow(
                    id=entry.id,
                    user_id=entry.user_id,
                    amount=entry.amount,
                    reason=entry.reason.value,
                    reference_id=entry.reference_id,
                    created_at=entry.created_at,
                )
            )

        # Single-statement increment: no lost updates between concurrent grants.
        stmt = (
            update(UserProgressRow)
            .where(UserProgressRow.user_id == entry.user_id)
            .values(total_xp=UserProgressRow.total_xp + entry.amount)
            .returning(UserProgressRow.total_xp)
        )
        async with storage_errors():
            return (await self._session.execute(stmt)).scalar_one()

    async def ledger_total(self, user_id: str) -> int:
        stmt = select(func.coalesce(func.sum(XPLedgerEntryRow.amount), 0)).where(
            XPLedgerEntryRow.user_id == user_id
        )
        async with storage_errors():
            return int((await self._session.execute(stmt)).scalar_one())

    async def list_entries(
        self, user_id: str, limit: int | None = None
    ) -> list[XPLedgerEntry]:
        stmt = (
            select(XPLedgerEntryRow)
            .where(XPLedgerEntryRow.user_id == user_id)
            .order_by(XPLedgerEntryRow.created_at.desc(), XPLedgerEntryRow.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with storage_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_entry(r) for r in rows]

    async def save_streak(
        self,
        user_id: str,
        *,
        current_streak: int,
        longest_streak: int,
        last_activity_date: datetime.date,
    ) -> UserProgressAggregate:
        await self._ensure_aggregate(user_id)
        stmt = (
            update(UserProgressRow)
            .where(UserProgressRow.user_id == user_id)
            .values(
                current_streak=current_streak,
                longest_streak=longest_streak,
                last_activity_date=last_activity_date,
            )
            .returning(UserProgressRow)
            .execution_options(populate_existing=True)
        )
        async with storage_errors():
            row = (await self._session.execute(stmt)).scalar_one()
        return _row_to_aggregate(row)

    async def list_totals(
        self, user_ids: Collection[str] | None = None
    ) -> list[tuple[str, int]]:
        stmt = select(UserProgressRow.user_id, UserProgressRow.total_xp)
        if user_ids is not None:
            if not user_ids:
                return []
            stmt = stmt.where(UserProgressRow.user_id.in_(list(user_ids)))
        async with storage_errors():
            rows = (await self._session.execute(stmt)).all()
        totals = {uid: xp for uid, xp in rows}
        if user_ids is None:
            return list(totals.items())
        return [(uid, totals.get(uid, 0)) for uid in user_ids]

    async def _ensure_aggregate(self, user_id: str) -> None:
        stmt = (
            pg_insert(UserProgressRow)
            .values(user_id=user_id, total_xp=0, current_streak=0, longest_streak=0)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        async with storage_errors():
            await self._session.execute(stmt)


def _row_to_aggregate(row: UserProgressRow) -> UserProgressAggregate:
    return UserProgressAggregate(
        user_id=row.user_id,
        total_xp=row.total_xp,
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        last_activity_date=row.last_activity_date,
    )


def _row_to_entry(row: XPLedgerEntryRow) -> XPLedgerEntry:
    return XPLedgerEntry(
        id=row.id,
        user_id=row.user_id,
        amount=row.amount,
        reason=XPReason(row.reason),
        reference_id=row.reference_id,
        created_at=row.created_at,
    )
