"""add_activity_log_and_match_reminders

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 12:00:00.000000

Add the user_activity_logs table and the reminder_sent_at/reminder_sent_by
columns on matches.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import text


# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(conn, table_name: str) -> bool:
    """Check if a table exists."""
    result = conn.execute(
        text(
            "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = :table_name)"
        ),
        {"table_name": table_name},
    )
    return result.scalar()


def _column_exists(conn, table_name: str, column_name: str) -> bool:
    """Check if a column exists in a table."""
    result = conn.execute(
        text(
            "SELECT EXISTS (SELECT FROM information_schema.columns WHERE table_name = :table_name AND column_name = :column_name)"
        ),
        {"table_name": table_name, "column_name": column_name},
    )
    return result.scalar()


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, "user_activity_logs"):
        op.create_table(
            "user_activity_logs",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(50), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=True,
            ),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_user_activity_logs_user", "user_activity_logs", ["user_id"])
        op.create_index("idx_user_activity_logs_action", "user_activity_logs", ["action"])
        op.create_index(
            "idx_user_activity_logs_user_created",
            "user_activity_logs",
            ["user_id", "created_at"],
        )

    if not _column_exists(conn, "matches", "reminder_sent_at"):
        op.add_column(
            "matches", sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True)
        )
    if not _column_exists(conn, "matches", "reminder_sent_by"):
        op.add_column("matches", sa.Column("reminder_sent_by", sa.Integer(), nullable=True))
        op.create_foreign_key(
            "fk_matches_reminder_sent_by",
            "matches",
            "users",
            ["reminder_sent_by"],
            ["id"],
            ondelete="SET NULL",
        )


def downgrade() -> None:
    op.drop_constraint("fk_matches_reminder_sent_by", "matches", type_="foreignkey")
    op.drop_column("matches", "reminder_sent_by")
    op.drop_column("matches", "reminder_sent_at")
    op.drop_table("user_activity_logs")
