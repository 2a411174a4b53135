"""
Unit tests for the eligibility gate.

The gate is pure, so events are plain (unsaved) Event instances.
"""

from datetime import timedelta

import pytest

from tablematch.database.models import Event
from tablematch.services import eligibility_service
from tablematch.services.errors import (
    Unauthorized,
    SubscriptionRequired,
    EventNotOpen,
    WindowClosed,
)
from tablematch.utils.datetime_utils import utcnow


NOW = utcnow()


def _event(hours_from_now=72, status="open"):
    return Event(id=1, event_date=NOW + timedelta(hours=hours_from_now), area="shibuya", status=status)


def _user(status="active", period_end=None):
    return {"id": 1, "subscription_status": status, "subscription_period_end": period_end}


# ──────────────────────────────────────────────────────────────
# Subscription
# ──────────────────────────────────────────────────────────────


def test_active_subscription_is_valid():
    """Test an active subscription is valid regardless of period end."""
    assert eligibility_service.has_valid_subscription("active", None, NOW)


def test_canceled_subscription_valid_until_period_end():
    """Test a canceled subscription stays valid while the paid period runs."""
    assert eligibility_service.has_valid_subscription("canceled", NOW + timedelta(days=3), NOW)
    assert not eligibility_service.has_valid_subscription("canceled", NOW - timedelta(seconds=1), NOW)
    assert not eligibility_service.has_valid_subscription("canceled", None, NOW)


def test_canceled_subscription_accepts_naive_period_end():
    """Test naive datetimes (as SQLite returns them) are treated as UTC."""
    naive_end = (NOW + timedelta(days=1)).replace(tzinfo=None)
    assert eligibility_service.has_valid_subscription("canceled", naive_end, NOW)


@pytest.mark.parametrize("status", ["past_due", "none", None])
def test_other_subscription_states_are_invalid(status):
    """Test past_due, none and missing status never allow entry."""
    assert not eligibility_service.has_valid_subscription(status, NOW + timedelta(days=30), NOW)


# ──────────────────────────────────────────────────────────────
# Entry window
# ──────────────────────────────────────────────────────────────


def test_entry_window_boundaries():
    """Test the window closes once the event is 48 hours away."""
    assert eligibility_service.is_entry_window_open(NOW + timedelta(hours=72), NOW)
    assert eligibility_service.is_entry_window_open(NOW + timedelta(hours=48, minutes=1), NOW)
    assert not eligibility_service.is_entry_window_open(NOW + timedelta(hours=48), NOW)
    assert not eligibility_service.is_entry_window_open(NOW + timedelta(hours=40), NOW)
    assert not eligibility_service.is_entry_window_open(NOW - timedelta(hours=1), NOW)


# ──────────────────────────────────────────────────────────────
# Full gate
# ──────────────────────────────────────────────────────────────


def test_eligible_user_passes():
    """Test an active member may enter an open event 72 hours out."""
    eligibility_service.check_entry_eligibility(_user(), _event(72), NOW)


def test_window_closed_40_hours_out():
    """Test entering 40 hours before the event is refused."""
    with pytest.raises(WindowClosed):
        eligibility_service.check_entry_eligibility(_user(), _event(40), NOW)


def test_anonymous_user_is_unauthorized():
    """Test identity is checked before anything else."""
    with pytest.raises(Unauthorized):
        eligibility_service.check_entry_eligibility(None, _event(40, status="closed"), NOW)


def test_subscription_checked_before_event_state():
    """Test a lapsed member on a closed event gets SubscriptionRequired first."""
    with pytest.raises(SubscriptionRequired):
        eligibility_service.check_entry_eligibility(
            _user(status="past_due"), _event(40, status="closed"), NOW
        )


def test_event_state_checked_before_window():
    """Test a non-open event inside the window reports EventNotOpen."""
    with pytest.raises(EventNotOpen):
        eligibility_service.check_entry_eligibility(_user(), _event(10, status="matched"), NOW)


def test_refusal_is_structured():
    """Test refusals carry a machine-readable kind and status code."""
    with pytest.raises(WindowClosed) as exc_info:
        eligibility_service.check_event_open(_event(12), NOW)
    error = exc_info.value
    assert error.status_code == 400
    assert error.to_dict()["error"] == error.kind
