"""create gamification tables

Revision ID: 3b7e1c9d2a40
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "xp_ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("reference_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_xp_ledger_entries_user_id", "xp_ledger_entries", ["user_id"]
    )
    # One positive grant per (user, reason, reference); corrections may repeat.
    op.create_index(
        "uq_xp_ledger_first_grant",
        "xp_ledger_entries",
        ["user_id", "reason", "reference_id"],
        unique=True,
        postgresql_where=sa.text("amount > 0"),
    )

    op.create_table(
        "user_progress",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("total_xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_date", sa.Date(), nullable=True),
    )
    op.create_index("ix_user_progress_total_xp", "user_progress", ["total_xp"])

    op.create_table(
        "user_badges",
        sa.Column("user_id", sa.String(length=128), primary_key=True),
        sa.Column("badge_key", sa.String(length=64), primary_key=True),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "certificates",
        sa.Column("certificate_id", sa.String(length=32), primary_key=True),
        sa.Column("student_id", sa.String(length=128), nullable=False),
        sa.Column("course_id", sa.String(length=128), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "student_id", "course_id", name="uq_certificates_student_course"
        ),
    )


def downgrade() -> None:
    op.drop_table("certificates")
    op.drop_table("user_badges")
    op.drop_index("ix_user_progress_total_xp", table_name="user_progress")
    op.drop_table("user_progress")
    op.drop_index("uq_xp_ledger_first_grant", table_name="xp_ledger_entries")
    op.drop_index("ix_xp_ledger_entries_user_id", table_name="xp_ledger_entries")
    op.drop_table("xp_ledger_entries")
