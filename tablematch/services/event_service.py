"""
Event lifecycle: open -> matched -> closed, or open -> closed on cancellation.

Each transition commits the event status (and any participation cascade)
first. Ledger awards and notifications follow as secondary effects whose
failures are counted and logged, never raised. Matched events can also be
sent a day-of reminder once.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, List

from sqlalchemy import select, update, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import (
    Event,
    EventStatus,
    Match,
    Participation,
    ParticipationStatus,
    StagePointReason,
    User,
)
from tablematch.services import notification_service
from tablematch.services.errors import NotFound, InvalidEventState, ValidationFailed
from tablematch.services.point_outbox import award_points_best_effort
from tablematch.utils import constants
from tablematch.utils.datetime_utils import as_utc, local_date, utcnow

logger = logging.getLogger(__name__)


def event_to_dict(event: Event) -> Dict:
    return {
        "id": event.id,
        "event_date": as_utc(event.event_date).isoformat(),
        "area": event.area,
        "status": event.status,
    }


def match_to_dict(match: Match) -> Dict:
    return {
        "id": match.id,
        "event_id": match.event_id,
        "restaurant_name": match.restaurant_name,
        "restaurant_url": match.restaurant_url,
        "reservation_name": match.reservation_name,
        "table_members": list(match.table_members or []),
        "reminder_sent_at": as_utc(match.reminder_sent_at).isoformat()
        if match.reminder_sent_at
        else None,
    }


async def get_event(session: AsyncSession, event_id: int) -> Event:
    result = await session.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFound("Event not found")
    return event


async def create_event(session: AsyncSession, event_date: datetime, area: str) -> Dict:
    """
    Schedule a new event, open for entries.

    Raises:
        ValidationFailed: If the area is blank
    """
    if not area or not area.strip():
        raise ValidationFailed("area is required")

    event = Event(
        event_date=as_utc(event_date),
        area=area.strip(),
        status=EventStatus.OPEN.value,
    )
    session.add(event)
    await session.flush()
    await session.commit()

    logger.info(f"Created event {event.id} in {event.area} at {event.event_date}")
    return event_to_dict(event)


async def get_next_event(
    session: AsyncSession, now: Optional[datetime] = None
) -> Optional[Dict]:
    """
    Earliest open event at least two calendar days out (public teaser).

    The cutoff is midnight UTC two days from ``now``.
    """
    now = as_utc(now) if now is not None else utcnow()
    cutoff = (now + timedelta(days=2)).replace(hour=0, minute=0, second=0, microsecond=0)

    result = await session.execute(
        select(Event)
        .where(and_(Event.status == EventStatus.OPEN.value, Event.event_date >= cutoff))
        .order_by(Event.event_date.asc())
        .limit(1)
    )
    event = result.scalar_one_or_none()
    return event_to_dict(event) if event else None


def _validate_tables(tables: List[Dict]) -> List[int]:
    """Check table payloads; returns every member id in order."""
    if not tables:
        raise ValidationFailed("At least one table is required")

    seen = set()
    member_ids = []
    for index, table in enumerate(tables):
        if not (table.get("restaurant_name") or "").strip():
            raise ValidationFailed(f"Table {index + 1}: restaurant_name is required")
        members = table.get("members") or []
        if not members:
            raise ValidationFailed(f"Table {index + 1}: members are required")
        for member_id in members:
            if member_id in seen:
                raise ValidationFailed(f"User {member_id} is seated at more than one table")
            seen.add(member_id)
            member_ids.append(member_id)
    return member_ids


def _format_match_message(event_date: datetime, area: str, table: Dict) -> str:
    lines = [
        f"Your table is set for {as_utc(event_date).strftime('%Y-%m-%d %H:%M')} UTC ({area}).",
        f"Restaurant: {table['restaurant_name']}",
    ]
    if table.get("restaurant_url"):
        lines.append(table["restaurant_url"])
    if table.get("reservation_name"):
        lines.append(f"Reservation under: {table['reservation_name']}")
    return "\n".join(lines)


async def import_matches(session: AsyncSession, event_id: int, tables: List[Dict]) -> Dict:
    """
    Record the seating for an event and move it to matched.

    Replaces the event's tables, flips every seated member's non-canceled
    participation to matched, then notifies each table.

    Args:
        session: Database session
        event_id: Event ID
        tables: Dicts with restaurant_name, restaurant_url, reservation_name
            and members (user ids)

    Returns:
        Dict with the created matches, the number of participations matched
        and aggregated notification counts

    Raises:
        NotFound, InvalidEventState, ValidationFailed
    """
    event = await get_event(session, event_id)
    if event.status != EventStatus.OPEN.value:
        raise InvalidEventState(f"Event is {event.status}; only open events can be matched")
    member_ids = _validate_tables(tables)

    await session.execute(delete(Match).where(Match.event_id == event_id))
    matches = [
        Match(
            event_id=event_id,
            restaurant_name=table["restaurant_name"].strip(),
            restaurant_url=table.get("restaurant_url") or None,
            reservation_name=table.get("reservation_name") or None,
            table_members=list(table["members"]),
        )
        for table in tables
    ]
    session.add_all(matches)

    result = await session.execute(
        update(Participation)
        .where(
            and_(
                Participation.event_id == event_id,
                Participation.user_id.in_(member_ids),
                Participation.status != ParticipationStatus.CANCELED.value,
            )
        )
        .values(status=ParticipationStatus.MATCHED.value)
    )
    matched_count = result.rowcount

    event.status = EventStatus.MATCHED.value
    event_date, area = event.event_date, event.area
    await session.flush()
    match_dicts = [match_to_dict(m) for m in matches]
    await session.commit()

    logger.info(
        f"Event {event_id} matched: {len(matches)} table(s), "
        f"{matched_count} participation(s)"
    )

    notifications = {"sent": 0, "failed": 0, "skipped": 0}
    for table in tables:
        counts = await notification_service.notify_users(
            session, table["members"], _format_match_message(event_date, area, table)
        )
        for key in notifications:
            notifications[key] += counts[key]
    logger.info(
        f"Match notifications for event {event_id}: sent {notifications['sent']}, "
        f"failed {notifications['failed']}, skipped {notifications['skipped']}"
    )

    return {
        "event_id": event_id,
        "status": EventStatus.MATCHED.value,
        "matches": match_dicts,
        "matched_participations": matched_count,
        "notifications": notifications,
    }


async def complete_event(session: AsyncSession, event_id: int) -> Dict:
    """
    Close a matched event and award participation points.

    The event is closed first. Awards are then written one participant at a
    time; a failed award is parked in the point outbox and counted, and does
    not stop the others.

    Returns:
        Dict with participant, awarded and failed counts

    Raises:
        NotFound, InvalidEventState
    """
    event = await get_event(session, event_id)
    if event.status != EventStatus.MATCHED.value:
        raise InvalidEventState("Event must be matched to complete")

    result = await session.execute(
        select(Participation.id, Participation.user_id).where(
            and_(
                Participation.event_id == event_id,
                Participation.status == ParticipationStatus.MATCHED.value,
            )
        )
    )
    participants = result.all()

    event.status = EventStatus.CLOSED.value
    await session.commit()
    logger.info(f"Event {event_id} closed with {len(participants)} participant(s)")

    awarded = 0
    failed = 0
    for participation_id, user_id in participants:
        ok = await award_points_best_effort(
            session,
            user_id,
            constants.POINTS_PARTICIPATION,
            StagePointReason.PARTICIPATION.value,
            participation_id,
        )
        if ok:
            awarded += 1
        else:
            failed += 1

    if failed:
        logger.warning(f"Event {event_id}: {failed} participation award(s) queued for retry")

    return {
        "event_id": event_id,
        "status": EventStatus.CLOSED.value,
        "participants": len(participants),
        "awarded": awarded,
        "failed": failed,
    }


async def cancel_event(session: AsyncSession, event_id: int) -> Dict:
    """
    Cancel an open event: close it and cancel every live participation.

    Affected members are notified afterwards; notification failures are
    counted, never raised.

    Raises:
        NotFound, InvalidEventState
    """
    event = await get_event(session, event_id)
    if event.status != EventStatus.OPEN.value:
        raise InvalidEventState("Only open events can be canceled")

    result = await session.execute(
        select(Participation.user_id).where(
            and_(
                Participation.event_id == event_id,
                Participation.status != ParticipationStatus.CANCELED.value,
            )
        )
    )
    affected_user_ids = list(result.scalars().all())

    await session.execute(
        update(Participation)
        .where(
            and_(
                Participation.event_id == event_id,
                Participation.status != ParticipationStatus.CANCELED.value,
            )
        )
        .values(status=ParticipationStatus.CANCELED.value)
    )
    event.status = EventStatus.CLOSED.value
    event_date, area = event.event_date, event.area
    await session.commit()
    logger.info(
        f"Event {event_id} canceled; {len(affected_user_ids)} participation(s) canceled"
    )

    message = (
        f"The {area} dinner on {as_utc(event_date).strftime('%Y-%m-%d')} has been canceled. "
        "Sorry for the inconvenience."
    )
    notifications = await notification_service.notify_users(session, affected_user_ids, message)

    return {
        "event_id": event_id,
        "status": EventStatus.CLOSED.value,
        "canceled_participations": len(affected_user_ids),
        "notifications": notifications,
    }


def _format_reminder_message(event_date: datetime, area: str, table: Dict) -> str:
    lines = [
        f"Reminder: dinner today at {as_utc(event_date).strftime('%H:%M')} UTC ({area}).",
        f"Restaurant: {table['restaurant_name']}",
    ]
    if table.get("restaurant_url"):
        lines.append(table["restaurant_url"])
    if table.get("reservation_name"):
        lines.append(f"Reservation under: {table['reservation_name']}")
    return "\n".join(lines)


async def _get_event_matches(session: AsyncSession, event_id: int) -> List[Match]:
    result = await session.execute(
        select(Match).where(Match.event_id == event_id).order_by(Match.id.asc())
    )
    return list(result.scalars().all())


async def get_reminder_preview(session: AsyncSession, event_id: int) -> Dict:
    """
    Who a day-of reminder would reach, without sending anything.

    Returns:
        Dict with one recipient per seated member, reach stats and whether a
        reminder already went out for this event

    Raises:
        NotFound
    """
    await get_event(session, event_id)
    matches = await _get_event_matches(session, event_id)

    member_ids = [uid for match in matches for uid in (match.table_members or [])]
    users = {}
    if member_ids:
        result = await session.execute(
            select(User.id, User.display_name, User.messaging_user_id).where(
                User.id.in_(member_ids)
            )
        )
        users = {uid: (name, mid) for uid, name, mid in result.all()}

    recipients = []
    for match in matches:
        for uid in match.table_members or []:
            name, messaging_user_id = users.get(uid, (None, None))
            recipients.append(
                {
                    "user_id": uid,
                    "match_id": match.id,
                    "display_name": name,
                    "has_messaging_id": bool(messaging_user_id),
                }
            )

    will_receive = sum(1 for r in recipients if r["has_messaging_id"])
    return {
        "event_id": event_id,
        "recipients": recipients,
        "stats": {
            "total": len(recipients),
            "will_receive": will_receive,
            "will_skip": len(recipients) - will_receive,
        },
        "reminder_already_sent": any(m.reminder_sent_at is not None for m in matches),
    }


async def send_reminders(
    session: AsyncSession,
    event_id: int,
    sent_by: Optional[int] = None,
    force: bool = False,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Push a day-of reminder to every seated member of a matched event.

    The tables are stamped with ``reminder_sent_at`` before anything is sent,
    so a repeated call is a no-op unless ``force`` is set. Push failures are
    counted, never raised.

    Args:
        session: Database session
        event_id: Event ID
        sent_by: Operator user ID, recorded on the tables
        force: Send again even if a reminder already went out
        now: Clock override

    Returns:
        Dict with ``already_sent``, the number of tables reminded and
        aggregated notification counts

    Raises:
        NotFound, InvalidEventState, ValidationFailed
    """
    event = await get_event(session, event_id)
    if event.status != EventStatus.MATCHED.value:
        raise InvalidEventState("Reminders can only be sent for matched events")

    now = as_utc(now) if now is not None else utcnow()
    if local_date(event.event_date, constants.EVENT_TIMEZONE) != local_date(
        now, constants.EVENT_TIMEZONE
    ):
        raise ValidationFailed("Reminders can only be sent on the day of the event")

    matches = await _get_event_matches(session, event_id)
    if not matches:
        raise ValidationFailed("No tables found for this event")

    notifications = {"sent": 0, "failed": 0, "skipped": 0}
    if not force and any(m.reminder_sent_at is not None for m in matches):
        logger.info(f"Reminder for event {event_id} already sent; nothing to do")
        return {
            "event_id": event_id,
            "already_sent": True,
            "tables": 0,
            "notifications": notifications,
        }

    tables = [
        {
            "restaurant_name": m.restaurant_name,
            "restaurant_url": m.restaurant_url,
            "reservation_name": m.reservation_name,
            "members": list(m.table_members or []),
        }
        for m in matches
    ]
    event_date, area = event.event_date, event.area

    await session.execute(
        update(Match)
        .where(Match.event_id == event_id)
        .values(reminder_sent_at=now, reminder_sent_by=sent_by)
    )
    await session.commit()

    for table in tables:
        counts = await notification_service.notify_users(
            session, table["members"], _format_reminder_message(event_date, area, table)
        )
        for key in notifications:
            notifications[key] += counts[key]
    logger.info(
        f"Reminders for event {event_id}: sent {notifications['sent']}, "
        f"failed {notifications['failed']}, skipped {notifications['skipped']}"
    )

    return {
        "event_id": event_id,
        "already_sent": False,
        "tables": len(tables),
        "notifications": notifications,
    }
