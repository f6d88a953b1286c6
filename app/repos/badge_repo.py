from __future__ import annotations

from typing import Protocol

from app.models.badge import UserBadge
from app.services.errors import ConflictRetryable


class BadgeRepo(Protocol):
    async def list_for_user(self, user_id: str) -> list[UserBadge]: ...
    async def add(self, badge: UserBadge) -> None: ...


class InMemoryBadgeRepo:
    def __init__(self) -> None:
        self._by_key: dict[tuple[str, str], UserBadge] = {}

    async def list_for_user(self, user_id: str) -> list[UserBadge]:
        return sorted(
            (b for (uid, _), b in self._by_key.items() if uid == user_id),
            key=lambda b: (b.earned_at, b.badge_key),
        )

    async def add(self, badge: UserBadge) -> None:
        """Raises ConflictRetryable if the user already holds the badge."""
        key = (badge.user_id, badge.badge_key)
        if key in self._by_key:
            raise ConflictRetryable(f"badge {badge.badge_key} already held")
        self._by_key[key] = badge
