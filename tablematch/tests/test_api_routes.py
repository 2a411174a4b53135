"""
API route tests.

Services are mocked; these tests cover authentication, admin gating,
request validation and how service refusals map onto HTTP responses.
"""

import pytest
from fastapi.testclient import TestClient

from tablematch.api.main import app
from tablematch.services import (
    activity_service,
    auth_service,
    event_service,
    invite_service,
    participation_service,
    review_service,
    stage_service,
    user_service,
)
from tablematch.services.errors import (
    AlreadyReviewed,
    GroupFull,
    InvalidEventState,
    NotFound,
    NotYetAccessible,
    SubscriptionRequired,
    WindowClosed,
)


@pytest.fixture
def client():
    """Create a test client."""
    return TestClient(app)


def make_client_with_auth(monkeypatch, user_id=1, is_admin=False):
    """Create a test client with mocked authentication."""

    def fake_verify_token(token):
        return {"user_id": user_id}

    async def fake_get_user_by_id(session, uid):
        return {
            "id": user_id,
            "email": "member@example.com",
            "display_name": "Test Member",
            "is_admin": is_admin,
            "messaging_user_id": None,
            "subscription_status": "active",
            "subscription_period_end": None,
            "stage_points": 0,
            "member_stage": "bronze",
            "created_at": "2026-01-01T00:00:00+00:00",
        }

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)

    return TestClient(app), {"Authorization": "Bearer dummy"}


def test_health(client):
    """Test the health check."""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ──────────────────────────────────────────────────────────────
# Authentication
# ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "method,path",
    [
        ("post", "/api/events/entry"),
        ("patch", "/api/events/attendance"),
        ("get", "/api/events/me"),
        ("post", "/api/invite/accept"),
        ("post", "/api/reviews"),
        ("get", "/api/member-stage"),
        ("delete", "/api/account"),
    ],
)
def test_member_routes_require_token(client, method, path):
    """Test member routes refuse anonymous callers with a structured 401."""
    response = getattr(client, method)(path)
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "Unauthorized"


def test_invalid_token_rejected(client, monkeypatch):
    """Test a token that fails verification is a 401."""
    monkeypatch.setattr(auth_service, "verify_token", lambda token: None)
    response = client.get("/api/member-stage", headers={"Authorization": "Bearer expired"})
    assert response.status_code == 401


def test_admin_routes_forbidden_for_members(monkeypatch):
    """Test non-admin members get a 403 on operator routes."""
    client, headers = make_client_with_auth(monkeypatch, is_admin=False)
    response = client.post("/api/admin/events/1/complete", headers=headers)
    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "Forbidden"


# ──────────────────────────────────────────────────────────────
# Entry and attendance
# ──────────────────────────────────────────────────────────────


def test_enter_event(monkeypatch):
    """Test a successful entry returns the participation."""
    client, headers = make_client_with_auth(monkeypatch, user_id=5)
    calls = {}

    async def fake_enter_event(session, user, event_id, entry_type, **kwargs):
        calls.update(user_id=user["id"], event_id=event_id, entry_type=entry_type, **kwargs)
        return {
            "participation_id": 11,
            "status": "pending",
            "group_id": "7b0c3f0e-3b1b-4c55-9d7e-1f1c6c8f9a00",
            "invite_token": "a" * 32,
            "short_code": "ABC234",
        }

    monkeypatch.setattr(participation_service, "enter_event", fake_enter_event)

    response = client.post(
        "/api/events/entry",
        json={"event_id": 3, "entry_type": "pair", "mood": "chatty", "budget_level": 2},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["short_code"] == "ABC234"
    assert calls["user_id"] == 5
    assert calls["event_id"] == 3
    assert calls["entry_type"] == "pair"
    assert calls["budget_level"] == 2


@pytest.mark.parametrize(
    "error,status_code,kind",
    [
        (WindowClosed("Entries close 48 hours before the event"), 400, "WindowClosed"),
        (SubscriptionRequired("An active subscription is required"), 403, "SubscriptionRequired"),
        (NotFound("Event not found"), 404, "NotFound"),
    ],
)
def test_enter_event_refusals(monkeypatch, error, status_code, kind):
    """Test service refusals keep their kind and message in the response detail."""
    client, headers = make_client_with_auth(monkeypatch)

    async def refuse(*args, **kwargs):
        raise error

    monkeypatch.setattr(participation_service, "enter_event", refuse)

    response = client.post(
        "/api/events/entry", json={"event_id": 3, "entry_type": "solo"}, headers=headers
    )

    assert response.status_code == status_code
    assert response.json()["detail"] == {"error": kind, "message": error.message}


def test_enter_event_unexpected_error(monkeypatch):
    """Test unexpected failures become a StoreFailure 500."""
    client, headers = make_client_with_auth(monkeypatch)

    async def explode(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(participation_service, "enter_event", explode)

    response = client.post(
        "/api/events/entry", json={"event_id": 3, "entry_type": "solo"}, headers=headers
    )

    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "StoreFailure"


def test_enter_event_rejects_unknown_entry_type(monkeypatch):
    """Test request validation happens before the service is called."""
    client, headers = make_client_with_auth(monkeypatch)
    response = client.post(
        "/api/events/entry", json={"event_id": 3, "entry_type": "trio"}, headers=headers
    )
    assert response.status_code == 422


def test_update_attendance(monkeypatch):
    """Test the attendance route reports the applied penalty."""
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_update_attendance(session, user_id, participation_id, action, **kwargs):
        return {
            "participation_id": participation_id,
            "attendance_status": "canceled",
            "penalty_points": -50,
            "penalty_reason": "late_cancel",
            "penalty_recorded": True,
        }

    monkeypatch.setattr(participation_service, "update_attendance", fake_update_attendance)

    response = client.patch(
        "/api/events/attendance",
        json={"participation_id": 9, "action": "cancel"},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["penalty_points"] == -50


def test_next_event_is_public(client, monkeypatch):
    """Test the teaser needs no token."""

    async def fake_get_next_event(session):
        return {"id": 4, "event_date": "2026-11-01T10:00:00+00:00", "area": "ebisu", "status": "open"}

    monkeypatch.setattr(event_service, "get_next_event", fake_get_next_event)

    response = client.get("/api/next-event")
    assert response.status_code == 200
    assert response.json()["next_event"]["area"] == "ebisu"


# ──────────────────────────────────────────────────────────────
# Invites
# ──────────────────────────────────────────────────────────────


def test_resolve_invite_anonymous(client, monkeypatch):
    """Test invites can be previewed without signing in."""
    seen = {}

    async def fake_resolve_invite(session, raw, viewer=None):
        seen["viewer"] = viewer
        return {
            "token": "t" * 32,
            "inviter_name": "Aiko",
            "event_id": 2,
            "event_date": "2026-11-01T10:00:00+00:00",
            "area": "shibuya",
            "group_member_count": 1,
            "max_group_size": 3,
            "subscription_valid": False,
        }

    monkeypatch.setattr(invite_service, "resolve_invite", fake_resolve_invite)

    response = client.post("/api/invite/resolve", json={"input": "abc234"})
    assert response.status_code == 200
    assert response.json()["inviter_name"] == "Aiko"
    assert seen["viewer"] is None


def test_accept_invite_group_full(monkeypatch):
    """Test a full group maps to 409."""
    client, headers = make_client_with_auth(monkeypatch)

    async def refuse(*args, **kwargs):
        raise GroupFull("This invite has already been used")

    monkeypatch.setattr(invite_service, "accept_invite", refuse)

    response = client.post("/api/invite/accept", json={"token": "ABC234"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "GroupFull"


# ──────────────────────────────────────────────────────────────
# Reviews and stage
# ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "error,status_code",
    [(NotYetAccessible("Reviews open later"), 403), (AlreadyReviewed("Already reviewed"), 409)],
)
def test_submit_review_refusals(monkeypatch, error, status_code):
    """Test review refusals map to their status codes."""
    client, headers = make_client_with_auth(monkeypatch)

    async def refuse(*args, **kwargs):
        raise error

    monkeypatch.setattr(review_service, "submit_review", refuse)

    response = client.post(
        "/api/reviews", json={"match_id": 1, "target_user_id": 2, "rating": 4}, headers=headers
    )
    assert response.status_code == status_code
    assert response.json()["detail"]["error"] == error.kind


def test_member_stage(monkeypatch):
    """Test the caller's stage view."""
    client, headers = make_client_with_auth(monkeypatch, user_id=8)

    async def fake_stage_info(session, user_id):
        assert user_id == 8
        return stage_service.get_member_stage_info(150)

    monkeypatch.setattr(stage_service, "get_user_stage_info", fake_stage_info)

    response = client.get("/api/member-stage", headers=headers)
    assert response.status_code == 200
    assert response.json() == {
        "stage": "silver",
        "points": 150,
        "progress_percent": 25,
        "next_stage": "gold",
        "message": "Next up: aim for Gold",
    }


def test_delete_account(monkeypatch):
    """Test members can delete their own account."""
    client, headers = make_client_with_auth(monkeypatch, user_id=3)
    deleted = []

    async def fake_delete_account(session, user_id):
        deleted.append(user_id)
        return True

    monkeypatch.setattr(user_service, "delete_account", fake_delete_account)

    response = client.delete("/api/account", headers=headers)
    assert response.status_code == 200
    assert deleted == [3]


# ──────────────────────────────────────────────────────────────
# Operator routes
# ──────────────────────────────────────────────────────────────


def test_complete_event_as_admin(monkeypatch):
    """Test operators can complete an event and see award counts."""
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)

    async def fake_complete_event(session, event_id):
        return {"event_id": event_id, "status": "closed", "participants": 5, "awarded": 4, "failed": 1}

    monkeypatch.setattr(event_service, "complete_event", fake_complete_event)

    response = client.post("/api/admin/events/7/complete", headers=headers)
    assert response.status_code == 200
    assert response.json() == {
        "event_id": 7,
        "status": "closed",
        "participants": 5,
        "awarded": 4,
        "failed": 1,
    }


def test_import_matches_as_admin(monkeypatch):
    """Test the seating payload reaches the service as plain dicts."""
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)
    received = {}

    async def fake_import_matches(session, event_id, tables):
        received["tables"] = tables
        return {
            "event_id": event_id,
            "status": "matched",
            "matches": [],
            "matched_participations": 2,
            "notifications": {"sent": 0, "failed": 0, "skipped": 2},
        }

    monkeypatch.setattr(event_service, "import_matches", fake_import_matches)

    response = client.post(
        "/api/admin/events/7/matches",
        json={"tables": [{"restaurant_name": "Bistro", "members": [1, 2]}]},
        headers=headers,
    )

    assert response.status_code == 200
    assert received["tables"][0]["members"] == [1, 2]
    assert received["tables"][0]["restaurant_name"] == "Bistro"


def test_sync_subscription_rejects_unknown_status(monkeypatch):
    """Test the billing webhook payload is validated."""
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)
    response = client.put(
        "/api/admin/users/3/subscription", json={"status": "trialing"}, headers=headers
    )
    assert response.status_code == 422


def test_send_reminder_records_operator(monkeypatch):
    """Test the reminder route passes the operator id and the force flag."""
    client, headers = make_client_with_auth(monkeypatch, user_id=42, is_admin=True)
    received = {}

    async def fake_send_reminders(session, event_id, sent_by=None, force=False):
        received.update(event_id=event_id, sent_by=sent_by, force=force)
        return {
            "event_id": event_id,
            "already_sent": False,
            "tables": 3,
            "notifications": {"sent": 7, "failed": 1, "skipped": 1},
        }

    monkeypatch.setattr(event_service, "send_reminders", fake_send_reminders)

    response = client.post("/api/admin/events/7/reminder", json={"force": True}, headers=headers)

    assert response.status_code == 200
    assert received == {"event_id": 7, "sent_by": 42, "force": True}
    assert response.json()["notifications"] == {"sent": 7, "failed": 1, "skipped": 1}


def test_send_reminder_for_unmatched_event(monkeypatch):
    """Test a reminder refusal maps to 409 with its kind."""
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)

    async def fake_send_reminders(session, event_id, sent_by=None, force=False):
        raise InvalidEventState("Reminders can only be sent for matched events")

    monkeypatch.setattr(event_service, "send_reminders", fake_send_reminders)

    response = client.post("/api/admin/events/7/reminder", headers=headers)
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "InvalidEventState"


def test_reminder_preview_requires_admin(monkeypatch):
    """Test members cannot see who an event reminder would reach."""
    client, headers = make_client_with_auth(monkeypatch, is_admin=False)
    response = client.get("/api/admin/events/7/reminder", headers=headers)
    assert response.status_code == 403


def test_user_activity_as_admin(monkeypatch):
    """Test operators can read a member's activity trail."""
    client, headers = make_client_with_auth(monkeypatch, is_admin=True)

    async def fake_list_user_activity(session, user_id, limit=50):
        return [{"id": 1, "action": "event_join", "metadata": {"event_id": 7}, "created_at": None}]

    monkeypatch.setattr(activity_service, "list_user_activity", fake_list_user_activity)

    response = client.get("/api/admin/users/3/activity", headers=headers)
    assert response.status_code == 200
    assert response.json()[0]["action"] == "event_join"
