"""PostgreSQL implementation of BadgeRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import UserBadgeRow
from app.models.badge import UserBadge
from app.repos.pg_errors import guarded_insert, storage_errors


class PgBadgeRepo:
    """Satisfies the BadgeRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_user(self, user_id: str) -> list[UserBadge]:
        stmt = (
            select(UserBadgeRow)
            .where(UserBadgeRow.user_id == user_id)
            .order_by(UserBadgeRow.earned_at, UserBadgeRow.badge_key)
        )
        async with storage_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [
            UserBadge(user_id=r.user_id, badge_key=r.badge_key, earned_at=r.earned_at)
            for r in rows
        ]

    async def add(self, badge: UserBadge) -> None:
        async with guarded_insert(self._session, f"badge {badge.badge_key}"):
            self._session.add(
                UserBadgeRow(
                    user_id=badge.user_id,
                    badge_key=badge.badge_key,
                    earned_at=badge.earned_at,
                )
            )
