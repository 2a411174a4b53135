"""
Participation service: per-user entry, cancellation and attendance for one event.

A user holds at most one participation row per event. Canceling keeps the
row; entering again reactivates it with a fresh group and fresh invite codes.
"""

import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Tuple

from sqlalchemy import select, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import (
    ActivityAction,
    Event,
    EventStatus,
    Participation,
    ParticipationStatus,
    AttendanceStatus,
    EntryType,
)
from tablematch.services import activity_service, eligibility_service, stage_service
from tablematch.services.errors import (
    NotFound,
    AlreadyEntered,
    AlreadyCanceled,
    AlreadyMatched,
    EventNotOpen,
    InvalidEventState,
    WindowClosed,
    ValidationFailed,
    StoreFailure,
)
from tablematch.services.point_outbox import award_points_best_effort
from tablematch.utils import constants
from tablematch.utils.datetime_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

INVITE_TOKEN_ALPHABET = string.ascii_letters + string.digits
# No 0/O or 1/I: short codes are read aloud and typed by hand
SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

ATTENDANCE_ACTIONS = ("cancel", "late")


def generate_invite_token() -> str:
    """Generate a 32-character capability token for invite links."""
    return "".join(
        secrets.choice(INVITE_TOKEN_ALPHABET) for _ in range(constants.INVITE_TOKEN_LENGTH)
    )


def generate_short_code() -> str:
    """Generate a 6-character, upper-case code for relaying an invite by hand."""
    return "".join(
        secrets.choice(SHORT_CODE_ALPHABET) for _ in range(constants.SHORT_CODE_LENGTH)
    )


def participation_to_dict(participation: Participation) -> Dict:
    return {
        "id": participation.id,
        "user_id": participation.user_id,
        "event_id": participation.event_id,
        "group_id": participation.group_id,
        "entry_type": participation.entry_type,
        "mood": participation.mood,
        "mood_text": participation.mood_text,
        "budget_level": participation.budget_level,
        "status": participation.status,
        "attendance_status": participation.attendance_status,
        "late_minutes": participation.late_minutes,
        "cancel_reason": participation.cancel_reason,
    }


async def get_event(session: AsyncSession, event_id: int) -> Event:
    result = await session.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFound("Event not found")
    return event


async def get_user_participation(
    session: AsyncSession, user_id: int, event_id: int
) -> Optional[Participation]:
    """The single participation row for (user, event), canceled or not."""
    result = await session.execute(
        select(Participation).where(
            and_(Participation.user_id == user_id, Participation.event_id == event_id)
        )
    )
    return result.scalar_one_or_none()


async def _get_owned_participation(
    session: AsyncSession, user_id: int, participation_id: int
) -> Participation:
    result = await session.execute(
        select(Participation).where(
            and_(Participation.id == participation_id, Participation.user_id == user_id)
        )
    )
    participation = result.scalar_one_or_none()
    if not participation:
        raise NotFound("Participation not found")
    return participation


async def _allocate_invite_codes(session: AsyncSession) -> Tuple[str, str]:
    """
    Draw an invite token and short code that no participation holds yet.

    Raises:
        StoreFailure: If every draw collided with an existing code
    """
    for attempt in range(1, constants.CODE_GENERATION_ATTEMPTS + 1):
        invite_token = generate_invite_token()
        short_code = generate_short_code()
        result = await session.execute(
            select(Participation.id)
            .where(
                or_(
                    Participation.invite_token == invite_token,
                    Participation.short_code == short_code,
                )
            )
            .limit(1)
        )
        if result.first() is None:
            return invite_token, short_code
        logger.warning(f"Invite code collision on draw {attempt}, regenerating")
    raise StoreFailure("Could not allocate unique invite codes")


def _is_duplicate_entry(error: IntegrityError) -> bool:
    """True when the violated constraint is the one-row-per-(user, event) rule."""
    message = str(error.orig)
    return (
        "uq_participations_user_event" in message
        or "participations.user_id, participations.event_id" in message
    )


async def upsert_participation(
    session: AsyncSession,
    user_id: int,
    event_id: int,
    group_id: str,
    entry_type: str,
    mood: Optional[str] = None,
    mood_text: Optional[str] = None,
    budget_level: Optional[int] = None,
) -> Participation:
    """
    Create the (user, event) participation or reactivate a canceled one.

    Shared by Entry and invite acceptance. The caller commits.

    Raises:
        AlreadyEntered: If the user already holds a non-canceled participation
        StoreFailure: If no unique invite codes could be allocated, or a
            concurrent write took a code between allocation and insert
    """
    existing = await get_user_participation(session, user_id, event_id)
    if existing and existing.status != ParticipationStatus.CANCELED.value:
        raise AlreadyEntered("Already entered this event")

    invite_token, short_code = await _allocate_invite_codes(session)
    values = dict(
        group_id=group_id,
        entry_type=entry_type,
        mood=mood,
        mood_text=mood_text or None,
        budget_level=budget_level,
        invite_token=invite_token,
        short_code=short_code,
        status=ParticipationStatus.PENDING.value,
        attendance_status=AttendanceStatus.ATTENDING.value,
        attendance_updated_at=None,
        late_minutes=None,
        cancel_reason=None,
    )

    if existing:
        for key, value in values.items():
            setattr(existing, key, value)
        participation = existing
        logger.info(f"Reactivated participation {existing.id} for user {user_id} in event {event_id}")
    else:
        participation = Participation(user_id=user_id, event_id=event_id, **values)
        session.add(participation)

    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        if _is_duplicate_entry(e):
            # Lost a race with a concurrent entry for the same (user, event)
            raise AlreadyEntered("Already entered this event")
        logger.error(f"Participation write for user {user_id} in event {event_id} failed: {e}")
        raise StoreFailure("Could not save participation")
    return participation


async def enter_event(
    session: AsyncSession,
    user: Optional[Dict],
    event_id: int,
    entry_type: str,
    mood: Optional[str] = None,
    mood_text: Optional[str] = None,
    budget_level: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Enter an event solo or as the inviter of a pair/trio.

    Args:
        session: Database session
        user: Caller's user dictionary (None when anonymous)
        event_id: Event to enter
        entry_type: 'solo' or 'pair'
        mood: Optional mood tag
        mood_text: Optional free-text mood
        budget_level: Optional budget level
        now: Clock override

    Returns:
        Dict with the participation id and status; ``invite_token`` and
        ``short_code`` are set only for pair entries

    Raises:
        Unauthorized, SubscriptionRequired, EventNotOpen, WindowClosed,
        NotFound, AlreadyEntered, ValidationFailed
    """
    if entry_type not in {t.value for t in EntryType}:
        raise ValidationFailed(f"Unknown entry type: {entry_type}")

    event = await get_event(session, event_id)
    eligibility_service.check_entry_eligibility(user, event, now)

    participation = await upsert_participation(
        session,
        user_id=user["id"],
        event_id=event_id,
        group_id=str(uuid.uuid4()),
        entry_type=entry_type,
        mood=mood,
        mood_text=mood_text,
        budget_level=budget_level,
    )
    await session.commit()

    logger.info(f"User {user['id']} entered event {event_id} ({entry_type})")
    is_pair = entry_type == EntryType.PAIR.value
    entry = {
        "participation_id": participation.id,
        "status": participation.status,
        "group_id": participation.group_id,
        "invite_token": participation.invite_token if is_pair else None,
        "short_code": participation.short_code if is_pair else None,
    }

    await activity_service.log_activity(
        session,
        user["id"],
        ActivityAction.EVENT_JOIN.value,
        {"event_id": event_id, "entry_type": entry_type, "mood": mood},
    )
    return entry


async def cancel_participation(
    session: AsyncSession, user_id: int, participation_id: int
) -> Dict:
    """
    Withdraw a not-yet-matched entry while the event is still open. Free of
    penalty.

    Raises:
        NotFound: If the participation does not exist or is not the caller's
        AlreadyMatched: If matching already happened (use attendance instead)
        AlreadyCanceled: If already canceled
        EventNotOpen: If the event has moved past 'open'
    """
    participation = await _get_owned_participation(session, user_id, participation_id)

    if participation.status == ParticipationStatus.MATCHED.value:
        raise AlreadyMatched("Matched entries are canceled through attendance")
    if participation.status == ParticipationStatus.CANCELED.value:
        raise AlreadyCanceled("Already canceled")

    event = await get_event(session, participation.event_id)
    if event.status != EventStatus.OPEN.value:
        raise EventNotOpen("Entries can only be withdrawn while the event is open")

    participation.status = ParticipationStatus.CANCELED.value
    await session.commit()

    logger.info(f"User {user_id} canceled participation {participation_id}")
    canceled = participation_to_dict(participation)

    await activity_service.log_activity(
        session,
        user_id,
        ActivityAction.EVENT_CANCEL.value,
        {"event_id": canceled["event_id"], "participation_id": participation_id},
    )
    return canceled


async def update_attendance(
    session: AsyncSession,
    user_id: int,
    participation_id: int,
    action: str,
    late_minutes: Optional[int] = None,
    cancel_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Report lateness or cancel attendance for a matched participation.

    Canceling costs stage points; less than 24 hours before the event the
    larger late-cancel penalty applies. The penalty is a secondary effect:
    the attendance change stands even if the ledger write fails.

    Args:
        session: Database session
        user_id: Caller's user ID
        participation_id: Participation to update
        action: 'cancel' or 'late'
        late_minutes: Expected delay, required for 'late'
        cancel_reason: Optional note for 'cancel'
        now: Clock override

    Returns:
        Dict with the new attendance status, the penalty applied and whether
        the penalty was recorded

    Raises:
        ValidationFailed, NotFound, InvalidEventState, WindowClosed, AlreadyCanceled
    """
    if action not in ATTENDANCE_ACTIONS:
        raise ValidationFailed(f"Unknown attendance action: {action}")
    if action == "late" and (late_minutes is None or late_minutes <= 0):
        raise ValidationFailed("late_minutes is required for late action")

    participation = await _get_owned_participation(session, user_id, participation_id)
    if participation.status != ParticipationStatus.MATCHED.value:
        raise InvalidEventState("Attendance can only be changed after matching")

    event = await get_event(session, participation.event_id)
    now = as_utc(now) if now is not None else utcnow()
    event_end = as_utc(event.event_date) + timedelta(hours=constants.EVENT_DURATION_HOURS)
    if now > event_end:
        raise WindowClosed("Attendance cannot be changed after the event")

    if participation.attendance_status == AttendanceStatus.CANCELED.value:
        raise AlreadyCanceled("Attendance already canceled")

    penalty_points = 0
    penalty_reason = None
    if action == "cancel":
        penalty_points, penalty_reason = stage_service.get_cancellation_penalty(
            event.event_date, now
        )
        participation.attendance_status = AttendanceStatus.CANCELED.value
        participation.cancel_reason = cancel_reason or None
        participation.late_minutes = None
    else:
        participation.attendance_status = AttendanceStatus.LATE.value
        participation.late_minutes = late_minutes
        participation.cancel_reason = None
    participation.attendance_updated_at = now

    attendance_status = participation.attendance_status
    await session.commit()
    logger.info(f"User {user_id} set attendance of participation {participation_id} to {attendance_status}")

    penalty_recorded = True
    if penalty_reason:
        penalty_recorded = await award_points_best_effort(
            session, user_id, penalty_points, penalty_reason, participation_id
        )

    return {
        "participation_id": participation_id,
        "attendance_status": attendance_status,
        "penalty_points": penalty_points,
        "penalty_reason": penalty_reason,
        "penalty_recorded": penalty_recorded,
    }


async def get_participation(
    session: AsyncSession, user_id: int, participation_id: int
) -> Dict:
    participation = await _get_owned_participation(session, user_id, participation_id)
    return participation_to_dict(participation)


async def list_my_participations(session: AsyncSession, user_id: int) -> List[Dict]:
    """All of a user's participations with their event, newest event first."""
    result = await session.execute(
        select(Participation, Event)
        .join(Event, Event.id == Participation.event_id)
        .where(Participation.user_id == user_id)
        .order_by(Event.event_date.desc())
    )
    items = []
    for participation, event in result.all():
        item = participation_to_dict(participation)
        item["event"] = {
            "id": event.id,
            "event_date": as_utc(event.event_date).isoformat(),
            "area": event.area,
            "status": event.status,
        }
        if participation.entry_type == EntryType.PAIR.value and (
            participation.status == ParticipationStatus.PENDING.value
        ):
            item["invite_token"] = participation.invite_token
            item["short_code"] = participation.short_code
        items.append(item)
    return items
