"""
Invite resolution: turn a token, short code or invite URL into a group.

Groups are capped at three non-canceled members (the inviter plus two). The
cap check and the invitee's insert happen in one transaction with the
inviter's participation row locked, so concurrent accepts against the same
group serialize on PostgreSQL.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Tuple
from urllib.parse import urlparse, parse_qs

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import (
    ActivityAction,
    Event,
    Participation,
    ParticipationStatus,
    EntryType,
    User,
)
from tablematch.services import activity_service, eligibility_service, participation_service
from tablematch.services.errors import (
    NotFound,
    GroupFull,
    AlreadyEntered,
    ValidationFailed,
)
from tablematch.utils import constants
from tablematch.utils.datetime_utils import as_utc

logger = logging.getLogger(__name__)


def extract_invite_code(raw: str) -> Optional[str]:
    """
    Pull the invite code out of whatever the user pasted.

    Accepts a bare token or short code, or an invite URL carrying the code in
    a ``code``/``token`` query parameter or as its last path segment.
    """
    if not raw:
        return None
    value = raw.strip()
    if not value:
        return None

    if "://" in value:
        parsed = urlparse(value)
        query = parse_qs(parsed.query)
        for key in ("code", "token"):
            if query.get(key) and query[key][0].strip():
                return query[key][0].strip()
        segments = [s for s in parsed.path.split("/") if s]
        return segments[-1] if segments else None

    return value


async def find_participation_by_code(
    session: AsyncSession, code: str, for_update: bool = False
) -> Optional[Participation]:
    """
    Look up a participation by invite token, then by short code.

    Short codes are matched case-insensitively.
    """
    query = select(Participation).where(Participation.invite_token == code)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    participation = result.scalar_one_or_none()
    if participation:
        return participation

    if len(code) != constants.SHORT_CODE_LENGTH:
        return None

    query = select(Participation).where(Participation.short_code == code.upper())
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def count_group_members(session: AsyncSession, group_id: str, event_id: int) -> int:
    """Count non-canceled participations sharing a group within one event."""
    result = await session.execute(
        select(func.count())
        .select_from(Participation)
        .where(
            and_(
                Participation.group_id == group_id,
                Participation.event_id == event_id,
                Participation.status != ParticipationStatus.CANCELED.value,
            )
        )
    )
    return result.scalar() or 0


async def _resolve(
    session: AsyncSession, raw: str, for_update: bool = False
) -> Tuple[Participation, Event]:
    code = extract_invite_code(raw)
    if not code:
        raise ValidationFailed("An invite code is required")

    inviter = await find_participation_by_code(session, code, for_update=for_update)
    if not inviter or inviter.status == ParticipationStatus.CANCELED.value:
        raise NotFound("Invite code not found")

    event = await participation_service.get_event(session, inviter.event_id)
    return inviter, event


async def _check_group_capacity(session: AsyncSession, inviter: Participation) -> int:
    size = await count_group_members(session, inviter.group_id, inviter.event_id)
    if size >= constants.MAX_GROUP_SIZE:
        raise GroupFull(
            f"This invite has already been used (group limit: {constants.MAX_GROUP_SIZE})"
        )
    return size


async def _check_invitee(
    session: AsyncSession, invitee_id: int, inviter: Participation
) -> None:
    if invitee_id == inviter.user_id:
        raise ValidationFailed("You cannot accept your own invite")
    existing = await participation_service.get_user_participation(
        session, invitee_id, inviter.event_id
    )
    if existing and existing.status != ParticipationStatus.CANCELED.value:
        raise AlreadyEntered("Already entered this event")


async def resolve_invite(
    session: AsyncSession,
    raw: str,
    viewer: Optional[Dict] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Preview an invite before joining.

    Args:
        session: Database session
        raw: Token, short code or invite URL
        viewer: Caller's user dictionary if signed in
        now: Clock override

    Returns:
        Inviter name, event details, current and maximum group size, and
        whether the viewer's subscription currently allows joining

    Raises:
        ValidationFailed, NotFound, GroupFull, EventNotOpen, WindowClosed,
        AlreadyEntered
    """
    inviter, event = await _resolve(session, raw)
    group_size = await _check_group_capacity(session, inviter)
    eligibility_service.check_event_open(event, now)

    subscription_valid = False
    if viewer is not None:
        await _check_invitee(session, viewer["id"], inviter)
        subscription_valid = eligibility_service.has_valid_subscription(
            viewer.get("subscription_status"), viewer.get("subscription_period_end"), now
        )

    result = await session.execute(select(User.display_name).where(User.id == inviter.user_id))
    inviter_name = result.scalar_one_or_none()

    return {
        "token": inviter.invite_token,
        "inviter_name": inviter_name or "A friend",
        "event_id": event.id,
        "event_date": as_utc(event.event_date).isoformat(),
        "area": event.area,
        "group_member_count": group_size,
        "max_group_size": constants.MAX_GROUP_SIZE,
        "subscription_valid": subscription_valid,
    }


async def accept_invite(
    session: AsyncSession,
    user: Optional[Dict],
    raw: str,
    mood: Optional[str] = None,
    mood_text: Optional[str] = None,
    budget_level: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Join the inviter's group for their event.

    The inviter's row is locked before the group is counted so the
    count-then-insert cannot interleave with another accept for the same group.

    Returns:
        Dict with the invitee's participation id, group id and status

    Raises:
        Unauthorized, SubscriptionRequired, EventNotOpen, WindowClosed,
        ValidationFailed, NotFound, AlreadyEntered, GroupFull
    """
    inviter, event = await _resolve(session, raw, for_update=True)
    eligibility_service.check_entry_eligibility(user, event, now)
    await _check_invitee(session, user["id"], inviter)
    await _check_group_capacity(session, inviter)

    group_id = inviter.group_id
    participation = await participation_service.upsert_participation(
        session,
        user_id=user["id"],
        event_id=event.id,
        group_id=group_id,
        entry_type=EntryType.PAIR.value,
        mood=mood,
        mood_text=mood_text,
        budget_level=budget_level,
    )
    await session.commit()

    logger.info(f"User {user['id']} joined group {group_id} for event {event.id}")
    accepted = {
        "participation_id": participation.id,
        "group_id": group_id,
        "event_id": event.id,
        "status": participation.status,
    }

    await activity_service.log_activity(
        session,
        user["id"],
        ActivityAction.EVENT_JOIN.value,
        {"event_id": accepted["event_id"], "entry_type": EntryType.PAIR.value, "via": "invite"},
    )
    return accepted
