"""
SQLAlchemy ORM models for the dinner matching and member reputation system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from tablematch.database.db import Base


class SubscriptionStatus(str, enum.Enum):
    """Billing subscription status, synced from the billing provider."""

    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    NONE = "none"


class MemberStage(str, enum.Enum):
    """Reputation tier, ascending."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class EventStatus(str, enum.Enum):
    """Event status enum. Monotonic: open -> matched -> closed (or open -> closed)."""

    OPEN = "open"
    MATCHED = "matched"
    CLOSED = "closed"


class EntryType(str, enum.Enum):
    """How a participation entered the event."""

    SOLO = "solo"
    PAIR = "pair"


class ParticipationStatus(str, enum.Enum):
    """Participation status enum."""

    PENDING = "pending"
    MATCHED = "matched"
    CANCELED = "canceled"


class AttendanceStatus(str, enum.Enum):
    """Attendance sub-state of a matched participation."""

    ATTENDING = "attending"
    CANCELED = "canceled"
    LATE = "late"


class StagePointReason(str, enum.Enum):
    """Cause of a ledger entry."""

    PARTICIPATION = "participation"
    REVIEW_SENT = "review_sent"
    REVIEW_RECEIVED = "review_received"
    CANCEL = "cancel"
    LATE_CANCEL = "late_cancel"
    NO_SHOW = "no_show"


class OutboxStatus(str, enum.Enum):
    """Point outbox entry status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ActivityAction(str, enum.Enum):
    """Member actions recorded in the activity log."""

    EVENT_JOIN = "event_join"
    EVENT_CANCEL = "event_cancel"
    ACCOUNT_DELETE = "account_delete"
    SUBSCRIPTION_START = "subscription_start"
    SUBSCRIPTION_CANCEL = "subscription_cancel"
    PAYMENT_FAILED = "payment_failed"


class User(Base):
    """Member accounts."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=True, unique=True)
    display_name = Column(String, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    messaging_user_id = Column(String, nullable=True, unique=True)  # Push target
    subscription_status = Column(
        String(20), nullable=False, default=SubscriptionStatus.NONE.value
    )
    subscription_period_end = Column(DateTime(timezone=True), nullable=True)
    # Cached sum of stage_point_logs; written only by stage_service
    stage_points = Column(Integer, nullable=False, default=0)
    member_stage = Column(String(20), nullable=False, default=MemberStage.BRONZE.value)
    stage_updated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    participations = relationship(
        "Participation", back_populates="user", cascade="all, delete-orphan"
    )
    reviews_sent = relationship(
        "Review",
        foreign_keys="Review.reviewer_id",
        back_populates="reviewer",
        cascade="all, delete-orphan",
    )
    reviews_received = relationship(
        "Review",
        foreign_keys="Review.target_user_id",
        back_populates="target",
        cascade="all, delete-orphan",
    )
    stage_point_logs = relationship(
        "StagePointLog", back_populates="user", cascade="all, delete-orphan"
    )
    stage_history = relationship(
        "MemberStageHistory", back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_users_messaging_user_id", "messaging_user_id"),
    )


class Event(Base):
    """Scheduled dinner events."""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_date = Column(DateTime(timezone=True), nullable=False)
    area = Column(String, nullable=False)
    status = Column(String(20), nullable=False, default=EventStatus.OPEN.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    participations = relationship(
        "Participation", back_populates="event", cascade="all, delete-orphan"
    )
    matches = relationship("Match", back_populates="event", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'matched', 'closed')", name="ck_events_status"
        ),
        Index("idx_events_event_date", "event_date"),
        Index("idx_events_status", "status"),
    )


class Participation(Base):
    """One user's enrollment in one event.

    A canceled row is reactivated in place on re-entry, so there is exactly one
    row per (user, event).
    """

    __tablename__ = "participations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    group_id = Column(String(36), nullable=False)
    entry_type = Column(String(10), nullable=False)
    mood = Column(String(50), nullable=True)
    mood_text = Column(Text, nullable=True)
    budget_level = Column(Integer, nullable=True)
    invite_token = Column(String(32), nullable=False, unique=True)
    short_code = Column(String(6), nullable=True, unique=True)
    status = Column(String(20), nullable=False, default=ParticipationStatus.PENDING.value)
    attendance_status = Column(
        String(20), nullable=False, default=AttendanceStatus.ATTENDING.value
    )
    attendance_updated_at = Column(DateTime(timezone=True), nullable=True)
    late_minutes = Column(Integer, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="participations")
    event = relationship("Event", back_populates="participations")

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_participations_user_event"),
        CheckConstraint(
            "status IN ('pending', 'matched', 'canceled')", name="ck_participations_status"
        ),
        CheckConstraint(
            "attendance_status IN ('attending', 'canceled', 'late')",
            name="ck_participations_attendance_status",
        ),
        Index("idx_participations_event", "event_id"),
        Index("idx_participations_group_event", "group_id", "event_id"),
        Index("idx_participations_event_attendance", "event_id", "attendance_status"),
    )


class Match(Base):
    """A table seated together for one event."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    restaurant_name = Column(String, nullable=False)
    restaurant_url = Column(String(500), nullable=True)
    reservation_name = Column(String, nullable=True)
    table_members = Column(JSON, nullable=False, default=list)  # List of user ids
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    event = relationship("Event", back_populates="matches")
    reviews = relationship("Review", back_populates="match", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_matches_event", "event_id"),)


class Review(Base):
    """Peer feedback after an event (one per reviewer, target, match)."""

    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reviewer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    target_user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=False)  # 0 only for no-show
    memo = Column(Text, nullable=True)  # Private to the reviewer
    block_flag = Column(Boolean, default=False, nullable=False)
    is_no_show = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    reviewer = relationship("User", foreign_keys=[reviewer_id], back_populates="reviews_sent")
    target = relationship(
        "User", foreign_keys=[target_user_id], back_populates="reviews_received"
    )
    match = relationship("Match", back_populates="reviews")

    __table_args__ = (
        UniqueConstraint(
            "reviewer_id", "target_user_id", "match_id", name="uq_reviews_reviewer_target_match"
        ),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_reviews_rating_range"),
        CheckConstraint("reviewer_id <> target_user_id", name="ck_reviews_not_self"),
        Index("idx_reviews_reviewer", "reviewer_id"),
        Index("idx_reviews_target", "target_user_id"),
        Index("idx_reviews_match", "match_id"),
    )


class StagePointLog(Base):
    """Append-only reputation ledger.

    (user_id, reason, reference_id) is the idempotency key: one cause is
    credited at most once.
    """

    __tablename__ = "stage_point_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points = Column(Integer, nullable=False)
    reason = Column(String(30), nullable=False)
    reference_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="stage_point_logs")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "reason", "reference_id", name="uq_stage_point_logs_cause"
        ),
        Index("idx_stage_point_logs_user", "user_id"),
        Index("idx_stage_point_logs_created", "created_at"),
    )


class MemberStageHistory(Base):
    """Stage transitions, one row per change."""

    __tablename__ = "member_stage_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    old_stage = Column(String(20), nullable=True)
    new_stage = Column(String(20), nullable=False)
    points_at_change = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="stage_history")

    __table_args__ = (Index("idx_member_stage_history_user", "user_id"),)


class PointOutbox(Base):
    """Retry queue for ledger writes that failed as a secondary effect."""

    __tablename__ = "point_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points = Column(Integer, nullable=False)
    reason = Column(String(30), nullable=False)
    reference_id = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=OutboxStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_point_outbox_status", "status"),
    )


class UserActivityLog(Base):
    """Member activity trail. Written best-effort, never read by the engine."""

    __tablename__ = "user_activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(50), nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_user_activity_logs_user", "user_id"),
        Index("idx_user_activity_logs_action", "action"),
        Index("idx_user_activity_logs_user_created", "user_id", "created_at"),
    )
