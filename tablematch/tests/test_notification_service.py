"""
Unit tests for the push notification dispatcher.

HTTP is never reached: push is either unconfigured, or ``push_message`` is
exercised against an httpx MockTransport.
"""

import json

import httpx
import pytest

from tablematch.services import notification_service


@pytest.fixture
def push_configured(monkeypatch):
    monkeypatch.setenv("PUSH_CHANNEL_ACCESS_TOKEN", "test-token")
    monkeypatch.setenv("PUSH_API_URL", "https://push.example/send")


@pytest.mark.asyncio
async def test_push_message_request_shape():
    """Test the push request carries the bearer token and a text message."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await notification_service.push_message(
            client, "https://push.example/send", "tok", "U123", "Hello"
        )

    assert seen["url"] == "https://push.example/send"
    assert seen["auth"] == "Bearer tok"
    assert seen["body"] == {"to": "U123", "messages": [{"type": "text", "text": "Hello"}]}


@pytest.mark.asyncio
async def test_push_message_raises_on_error_status():
    """Test non-2xx responses surface as httpx errors."""
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await notification_service.push_message(client, "https://push.example/send", "t", "U1", "x")


@pytest.mark.asyncio
async def test_notify_without_token_skips_everything(monkeypatch):
    """Test nothing is sent when push is not configured."""
    monkeypatch.delenv("PUSH_CHANNEL_ACCESS_TOKEN", raising=False)
    targets = [{"user_id": 1, "messaging_user_id": "U1"}, {"user_id": 2, "messaging_user_id": None}]

    counts = await notification_service.notify(targets, "hello")
    assert counts == {"sent": 0, "failed": 0, "skipped": 2}


@pytest.mark.asyncio
async def test_notify_counts_sent_failed_skipped(push_configured, monkeypatch):
    """Test per-target outcomes are counted and failures do not raise."""

    async def fake_push(client, url, token, to, text):
        if to == "U-broken":
            raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(notification_service, "push_message", fake_push)
    targets = [
        {"user_id": 1, "messaging_user_id": "U-ok"},
        {"user_id": 2, "messaging_user_id": "U-broken"},
        {"user_id": 3, "messaging_user_id": None},
    ]

    counts = await notification_service.notify(targets, "Your table is set")
    assert counts == {"sent": 1, "failed": 1, "skipped": 1}


@pytest.mark.asyncio
async def test_notify_users_looks_up_messaging_ids(db_session, make_user, push_configured, monkeypatch):
    """Test user ids are resolved to messaging ids before pushing."""
    sent_to = []

    async def fake_push(client, url, token, to, text):
        sent_to.append((url, to))

    monkeypatch.setattr(notification_service, "push_message", fake_push)
    linked = await make_user(messaging_user_id="U-linked")
    unlinked = await make_user()

    counts = await notification_service.notify_users(db_session, [linked["id"], unlinked["id"]], "hi")

    assert counts == {"sent": 1, "failed": 0, "skipped": 1}
    assert sent_to == [("https://push.example/send", "U-linked")]


@pytest.mark.asyncio
async def test_notify_users_never_raises(db_session, monkeypatch):
    """Test unexpected dispatch errors are counted as failures."""

    async def broken_lookup(session, user_ids):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(notification_service, "get_messaging_targets", broken_lookup)

    counts = await notification_service.notify_users(db_session, iter([1, 2, 3]), "hi")
    assert counts == {"sent": 0, "failed": 3, "skipped": 0}


@pytest.mark.asyncio
async def test_notify_users_empty(db_session, monkeypatch):
    """Test an empty recipient list sends nothing."""
    monkeypatch.delenv("PUSH_CHANNEL_ACCESS_TOKEN", raising=False)
    counts = await notification_service.notify_users(db_session, [], "hi")
    assert counts == {"sent": 0, "failed": 0, "skipped": 0}


@pytest.mark.asyncio
async def test_notify_keeps_counting_after_non_http_error(db_session, make_user, push_configured, monkeypatch):
    """Test an unexpected exception for one target is a failure for that target only."""

    async def fake_push(client, url, token, to, text):
        if to == "U-bad":
            raise ValueError("malformed push request")

    monkeypatch.setattr(notification_service, "push_message", fake_push)
    first = await make_user(messaging_user_id="U-first")
    bad = await make_user(messaging_user_id="U-bad")
    last = await make_user(messaging_user_id="U-last")

    counts = await notification_service.notify_users(
        db_session, [first["id"], bad["id"], last["id"]], "Your table is set"
    )
    assert counts == {"sent": 2, "failed": 1, "skipped": 0}
