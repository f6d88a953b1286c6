"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in app/models/.
Repos convert between SQLAlchemy rows and domain dataclasses.

The unique constraints here are load-bearing: exactly-once XP, badge and
certificate issuance under concurrent requests rely on them, not on
application-side checks.
"""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import (
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base

# User and course ids come from the identity and course services; they are
# opaque strings here and carry no foreign keys.


class XPLedgerEntryRow(Base):
    __tablename__ = "xp_ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # lesson_complete|quiz_pass|course_complete_bonus|badge_bonus|daily_login|
    # streak_bonus|correction
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        # At most one positive ("first-time") grant per idempotency key;
        # negative corrections may repeat.
        Index(
            "uq_xp_ledger_first_grant",
            "user_id",
            "reason",
            "reference_id",
            unique=True,
            postgresql_where=text("amount > 0"),
            sqlite_where=text("amount > 0"),
        ),
    )


class UserProgressRow(Base):
    __tablename__ = "user_progress"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[datetime.date | None] = mapped_column(
        Date, nullable=True
    )

    __table_args__ = (Index("ix_user_progress_total_xp", "total_xp"),)


class UserBadgeRow(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    badge_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    earned_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class CertificateRow(Base):
    __tablename__ = "certificates"

    certificate_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(128), nullable=False)
    course_id: Mapped[str] = mapped_column(String(128), nullable=False)
    issued_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "student_id", "course_id", name="uq_certificates_student_course"
        ),
    )
