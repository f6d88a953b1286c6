"""Badge catalog: the static set of badges a user can unlock.

The engine treats the catalog as read-only configuration.  The default
catalog ships below; BADGE_CATALOG_PATH may name a JSON file that replaces
it, e.g.:

    [
      {"key": "FIRST_COURSE_COMPLETE", "name": "Course Conqueror",
       "criteria_type": "courses_completed", "target": 1,
       "xp_reward": 200, "rarity": "rare"}
    ]

The file is validated with pydantic at load time, so a typo fails the
worker at startup rather than silently never unlocking a badge.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.models.badge import BadgeDefinition, CriteriaType, Rarity
from app.services.errors import ValidationError

logger = logging.getLogger(__name__)


class BadgeDefinitionIn(BaseModel):
    """Schema for one catalog entry in a JSON catalog file."""

    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)
    description: str = ""
    criteria_type: CriteriaType
    target: int = Field(ge=1)
    xp_reward: int = Field(ge=0)
    rarity: Rarity = Rarity.COMMON

    def to_definition(self) -> BadgeDefinition:
        return BadgeDefinition(
            key=self.key,
            name=self.name,
            description=self.description,
            criteria_type=self.criteria_type,
            target=self.target,
            xp_reward=self.xp_reward,
            rarity=self.rarity,
        )


_CATALOG_ADAPTER = TypeAdapter(list[BadgeDefinitionIn])


class BadgeCatalog:
    """Immutable, validated collection of BadgeDefinitions."""

    def __init__(self, badges: Iterable[BadgeDefinition]) -> None:
        by_key: dict[str, BadgeDefinition] = {}
        for badge in badges:
            if badge.key in by_key:
                raise ValidationError(f"duplicate badge key {badge.key!r}")
            if badge.target < 1:
                raise ValidationError(f"badge {badge.key!r} target must be >= 1")
            if badge.xp_reward < 0:
                raise ValidationError(f"badge {badge.key!r} xp_reward must be >= 0")
            by_key[badge.key] = badge
        self._by_key = by_key

    def __iter__(self) -> Iterator[BadgeDefinition]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def get(self, key: str) -> BadgeDefinition | None:
        return self._by_key.get(key)


DEFAULT_BADGES: tuple[BadgeDefinition, ...] = (
    BadgeDefinition(
        key="FIRST_COURSE_COMPLETE",
        name="Course Conqueror",
        description="Complete your first course",
        criteria_type=CriteriaType.COURSES_COMPLETED,
        target=1,
        xp_reward=200,
        rarity=Rarity.RARE,
    ),
    BadgeDefinition(
        key="FIVE_COURSES_COMPLETE",
        name="Learning Legend",
        description="Complete 5 courses",
        criteria_type=CriteriaType.COURSES_COMPLETED,
        target=5,
        xp_reward=500,
        rarity=Rarity.EPIC,
    ),
    BadgeDefinition(
        key="TEN_COURSES_COMPLETE",
        name="Master Scholar",
        description="Complete 10 courses",
        criteria_type=CriteriaType.COURSES_COMPLETED,
        target=10,
        xp_reward=1000,
        rarity=Rarity.LEGENDARY,
    ),
    BadgeDefinition(
        key="STREAK_7_DAYS",
        name="Week Warrior",
        description="Learn 7 days in a row",
        criteria_type=CriteriaType.STREAK_DAYS,
        target=7,
        xp_reward=250,
        rarity=Rarity.RARE,
    ),
    BadgeDefinition(
        key="STREAK_30_DAYS",
        name="Monthly Master",
        description="Learn 30 days in a row",
        criteria_type=CriteriaType.STREAK_DAYS,
        target=30,
        xp_reward=1000,
        rarity=Rarity.EPIC,
    ),
    BadgeDefinition(
        key="STREAK_100_DAYS",
        name="Century Champion",
        description="Learn 100 days in a row",
        criteria_type=CriteriaType.STREAK_DAYS,
        target=100,
        xp_reward=5000,
        rarity=Rarity.LEGENDARY,
    ),
    BadgeDefinition(
        key="QUIZ_MASTER",
        name="Quiz Master",
        description="Pass 50 quizzes",
        criteria_type=CriteriaType.QUIZZES_PASSED,
        target=50,
        xp_reward=300,
        rarity=Rarity.RARE,
    ),
    BadgeDefinition(
        key="TOP_REVIEWER",
        name="Review Master",
        description="Leave 10 course reviews",
        criteria_type=CriteriaType.REVIEWS_WRITTEN,
        target=10,
        xp_reward=500,
        rarity=Rarity.EPIC,
    ),
)


def default_catalog() -> BadgeCatalog:
    return BadgeCatalog(DEFAULT_BADGES)


def load_badge_catalog(path: str | Path | None = None) -> BadgeCatalog:
    """Load the catalog from a JSON file, or the default when path is None."""
    if path is None:
        return default_catalog()

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = _CATALOG_ADAPTER.validate_python(raw)
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        raise ValidationError(f"invalid badge catalog {str(path)!r}: {e}") from e

    catalog = BadgeCatalog(entry.to_definition() for entry in entries)
    logger.info("Loaded badge catalog path=%s badges=%d", path, len(catalog))
    return catalog
