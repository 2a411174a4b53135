"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Users, events, participations, matches, reviews, the stage point ledger,
stage history and the point outbox.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import text


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
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


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True
    )


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("display_name", sa.String(), nullable=False),
            sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("messaging_user_id", sa.String(), nullable=True),
            sa.Column("subscription_status", sa.String(20), nullable=False, server_default="none"),
            sa.Column("subscription_period_end", sa.DateTime(timezone=True), nullable=True),
            sa.Column("stage_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("member_stage", sa.String(20), nullable=False, server_default="bronze"),
            sa.Column("stage_updated_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
            sa.UniqueConstraint("messaging_user_id"),
        )
        op.create_index("idx_users_messaging_user_id", "users", ["messaging_user_id"])

    if not _table_exists(conn, "events"):
        op.create_table(
            "events",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("area", sa.String(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="open"),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('open', 'matched', 'closed')", name="ck_events_status"
            ),
        )
        op.create_index("idx_events_event_date", "events", ["event_date"])
        op.create_index("idx_events_status", "events", ["status"])

    if not _table_exists(conn, "participations"):
        op.create_table(
            "participations",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("event_id", sa.Integer(), nullable=False),
            sa.Column("group_id", sa.String(36), nullable=False),
            sa.Column("entry_type", sa.String(10), nullable=False),
            sa.Column("mood", sa.String(50), nullable=True),
            sa.Column("mood_text", sa.Text(), nullable=True),
            sa.Column("budget_level", sa.Integer(), nullable=True),
            sa.Column("invite_token", sa.String(32), nullable=False),
            sa.Column("short_code", sa.String(6), nullable=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
            sa.Column(
                "attendance_status", sa.String(20), nullable=False, server_default="attending"
            ),
            sa.Column("attendance_updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("late_minutes", sa.Integer(), nullable=True),
            sa.Column("cancel_reason", sa.Text(), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "event_id", name="uq_participations_user_event"),
            sa.UniqueConstraint("invite_token"),
            sa.UniqueConstraint("short_code"),
            sa.CheckConstraint(
                "status IN ('pending', 'matched', 'canceled')", name="ck_participations_status"
            ),
            sa.CheckConstraint(
                "attendance_status IN ('attending', 'canceled', 'late')",
                name="ck_participations_attendance_status",
            ),
        )
        op.create_index("idx_participations_event", "participations", ["event_id"])
        op.create_index(
            "idx_participations_group_event", "participations", ["group_id", "event_id"]
        )
        op.create_index(
            "idx_participations_event_attendance",
            "participations",
            ["event_id", "attendance_status"],
        )

    if not _table_exists(conn, "matches"):
        op.create_table(
            "matches",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("event_id", sa.Integer(), nullable=False),
            sa.Column("restaurant_name", sa.String(), nullable=False),
            sa.Column("restaurant_url", sa.String(500), nullable=True),
            sa.Column("reservation_name", sa.String(), nullable=True),
            sa.Column("table_members", sa.JSON(), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_matches_event", "matches", ["event_id"])

    if not _table_exists(conn, "reviews"):
        op.create_table(
            "reviews",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("reviewer_id", sa.Integer(), nullable=False),
            sa.Column("target_user_id", sa.Integer(), nullable=False),
            sa.Column("match_id", sa.Integer(), nullable=False),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("memo", sa.Text(), nullable=True),
            sa.Column("block_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_no_show", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(),
            sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["target_user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["match_id"], ["matches.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "reviewer_id", "target_user_id", "match_id", name="uq_reviews_reviewer_target_match"
            ),
            sa.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_reviews_rating_range"),
            sa.CheckConstraint("reviewer_id <> target_user_id", name="ck_reviews_not_self"),
        )
        op.create_index("idx_reviews_reviewer", "reviews", ["reviewer_id"])
        op.create_index("idx_reviews_target", "reviews", ["target_user_id"])
        op.create_index("idx_reviews_match", "reviews", ["match_id"])

    if not _table_exists(conn, "stage_point_logs"):
        op.create_table(
            "stage_point_logs",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("points", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(30), nullable=False),
            sa.Column("reference_id", sa.Integer(), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "user_id", "reason", "reference_id", name="uq_stage_point_logs_cause"
            ),
        )
        op.create_index("idx_stage_point_logs_user", "stage_point_logs", ["user_id"])
        op.create_index("idx_stage_point_logs_created", "stage_point_logs", ["created_at"])

    if not _table_exists(conn, "member_stage_history"):
        op.create_table(
            "member_stage_history",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("old_stage", sa.String(20), nullable=True),
            sa.Column("new_stage", sa.String(20), nullable=False),
            sa.Column("points_at_change", sa.Integer(), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_member_stage_history_user", "member_stage_history", ["user_id"])

    if not _table_exists(conn, "point_outbox"):
        op.create_table(
            "point_outbox",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("points", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(30), nullable=False),
            sa.Column("reference_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            _created_at(),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_point_outbox_status", "point_outbox", ["status"])


def downgrade() -> None:
    for table in (
        "point_outbox",
        "member_stage_history",
        "stage_point_logs",
        "reviews",
        "matches",
        "participations",
        "events",
        "users",
    ):
        op.drop_table(table)
