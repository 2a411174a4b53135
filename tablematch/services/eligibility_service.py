"""
Eligibility gate: may this user act on this event right now?

Pure checks, no side effects. Failures are raised as structured refusals in
a fixed order: identity, subscription, event status, time window.
"""

from datetime import datetime
from typing import Optional

from tablematch.database.models import Event, EventStatus, SubscriptionStatus
from tablematch.services.errors import (
    Unauthorized,
    SubscriptionRequired,
    EventNotOpen,
    WindowClosed,
)
from tablematch.utils import constants
from tablematch.utils.datetime_utils import as_utc, hours_until, utcnow


def has_valid_subscription(
    status: Optional[str],
    period_end: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """
    A subscription is valid while active, or after cancellation until the paid
    period runs out.
    """
    if status == SubscriptionStatus.ACTIVE.value:
        return True
    if status == SubscriptionStatus.CANCELED.value and period_end is not None:
        now = as_utc(now) if now is not None else utcnow()
        return as_utc(period_end) > now
    return False


def is_entry_window_open(event_date: datetime, now: Optional[datetime] = None) -> bool:
    """Entries and invite acceptances close once the event is 48 hours away."""
    return hours_until(event_date, now) > constants.ENTRY_WINDOW_HOURS


def check_event_open(event: Event, now: Optional[datetime] = None) -> None:
    """
    Raises:
        EventNotOpen: If the event no longer accepts entries
        WindowClosed: If the event is inside the entry window
    """
    if event.status != EventStatus.OPEN.value:
        raise EventNotOpen("This event is no longer accepting entries")
    if not is_entry_window_open(event.event_date, now):
        raise WindowClosed(
            f"Entries close {constants.ENTRY_WINDOW_HOURS} hours before the event"
        )


def check_entry_eligibility(
    user: Optional[dict], event: Event, now: Optional[datetime] = None
) -> None:
    """
    Run the full gate for an entry or invite acceptance.

    Args:
        user: Caller's user dictionary, or None when anonymous
        event: Target event
        now: Clock override

    Raises:
        Unauthorized, SubscriptionRequired, EventNotOpen, WindowClosed
    """
    if user is None:
        raise Unauthorized("Sign in required")
    if not has_valid_subscription(
        user.get("subscription_status"), user.get("subscription_period_end"), now
    ):
        raise SubscriptionRequired("An active subscription is required to join events")
    check_event_open(event, now)
