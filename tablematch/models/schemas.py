"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    message: str


# Participation schemas


class EntryRequest(BaseModel):
    """Request to enter an event."""

    event_id: int
    entry_type: Literal["solo", "pair"]
    mood: Optional[str] = Field(default=None, max_length=50)
    mood_text: Optional[str] = None
    budget_level: Optional[int] = Field(default=None, ge=1, le=5)


class EntryResponse(BaseModel):
    """Entry result. Invite codes are only set for pair entries."""

    participation_id: int
    status: str
    group_id: str
    invite_token: Optional[str] = None
    short_code: Optional[str] = None


class AttendanceRequest(BaseModel):
    """Request to report lateness or cancel attendance after matching."""

    participation_id: int
    action: Literal["cancel", "late"]
    late_minutes: Optional[int] = None
    cancel_reason: Optional[str] = None


class AttendanceResponse(BaseModel):
    participation_id: int
    attendance_status: str
    penalty_points: int
    penalty_reason: Optional[str] = None
    penalty_recorded: bool


class ParticipationResponse(BaseModel):
    """Participation data."""

    id: int
    user_id: int
    event_id: int
    group_id: str
    entry_type: str
    mood: Optional[str] = None
    mood_text: Optional[str] = None
    budget_level: Optional[int] = None
    status: str
    attendance_status: str
    late_minutes: Optional[int] = None
    cancel_reason: Optional[str] = None
    invite_token: Optional[str] = None
    short_code: Optional[str] = None
    event: Optional[dict] = None


# Invite schemas


class ResolveInviteRequest(BaseModel):
    """Token, short code or invite URL as pasted by the user."""

    input: str


class ResolveInviteResponse(BaseModel):
    token: str
    inviter_name: str
    event_id: int
    event_date: str
    area: str
    group_member_count: int
    max_group_size: int
    subscription_valid: bool


class AcceptInviteRequest(BaseModel):
    """Request to join an inviter's group."""

    token: str
    mood: Optional[str] = Field(default=None, max_length=50)
    mood_text: Optional[str] = None
    budget_level: Optional[int] = Field(default=None, ge=1, le=5)


class AcceptInviteResponse(BaseModel):
    participation_id: int
    group_id: str
    event_id: int
    status: str


# Review schemas


class ReviewCreate(BaseModel):
    """Request to review a tablemate."""

    match_id: int
    target_user_id: int
    rating: int
    memo: Optional[str] = None
    block_flag: bool = False
    is_no_show: bool = False


class ReviewMemoUpdate(BaseModel):
    memo: Optional[str] = None


class ReviewResponse(BaseModel):
    """Review data."""

    id: int
    reviewer_id: int
    target_user_id: int
    match_id: int
    rating: int
    memo: Optional[str] = None
    block_flag: bool
    is_no_show: bool


class SubmitReviewResponse(BaseModel):
    review: ReviewResponse
    reviewer_points_recorded: bool
    target_points_recorded: bool


# Member stage schemas


class MemberStageResponse(BaseModel):
    """Current stage and progress toward the next one."""

    stage: str
    points: int
    progress_percent: int
    next_stage: Optional[str] = None
    message: str


class ReconcileResponse(BaseModel):
    user_id: int
    cached_points: int
    stage_points: int
    member_stage: str
    previous_stage: Optional[str] = None


# Event schemas


class EventCreate(BaseModel):
    """Request to schedule an event."""

    event_date: datetime
    area: str


class EventResponse(BaseModel):
    """Event data."""

    id: int
    event_date: str
    area: str
    status: str


class NextEventResponse(BaseModel):
    next_event: Optional[EventResponse] = None


class MatchTable(BaseModel):
    """One table in a match import."""

    restaurant_name: str
    restaurant_url: Optional[str] = None
    reservation_name: Optional[str] = None
    members: List[int]


class ImportMatchesRequest(BaseModel):
    tables: List[MatchTable]


class NotificationCounts(BaseModel):
    sent: int
    failed: int
    skipped: int


class ImportMatchesResponse(BaseModel):
    event_id: int
    status: str
    matches: List[dict]
    matched_participations: int
    notifications: NotificationCounts


class CompleteEventResponse(BaseModel):
    """Outcome of closing a matched event."""

    event_id: int
    status: str
    participants: int
    awarded: int
    failed: int


class CancelEventResponse(BaseModel):
    event_id: int
    status: str
    canceled_participations: int
    notifications: NotificationCounts


class ReminderRecipient(BaseModel):
    user_id: int
    match_id: int
    display_name: Optional[str] = None
    has_messaging_id: bool


class ReminderStats(BaseModel):
    total: int
    will_receive: int
    will_skip: int


class ReminderPreviewResponse(BaseModel):
    """Who a day-of reminder would reach."""

    event_id: int
    recipients: List[ReminderRecipient]
    stats: ReminderStats
    reminder_already_sent: bool


class SendReminderRequest(BaseModel):
    force: bool = False


class SendReminderResponse(BaseModel):
    event_id: int
    already_sent: bool
    tables: int
    notifications: NotificationCounts


# Account schemas


class SubscriptionUpdate(BaseModel):
    """Subscription state pushed by the billing webhook."""

    status: Literal["active", "canceled", "past_due", "none"]
    period_end: Optional[datetime] = None


class UserResponse(BaseModel):
    """User data."""

    id: int
    email: Optional[str] = None
    display_name: str
    is_admin: bool
    subscription_status: str
    subscription_period_end: Optional[datetime] = None
    stage_points: int
    member_stage: str


class ActivityEntry(BaseModel):
    """One entry of a member's activity trail."""

    id: int
    action: str
    metadata: dict
    created_at: Optional[str] = None
