"""
Unit tests for the point outbox.

Tests that failed secondary ledger writes are parked, retried through the
idempotent ledger write, and given up on after the attempt limit.
"""

import pytest
from sqlalchemy import select

from tablematch.database.models import PointOutbox
from tablematch.services import point_outbox, stage_service
from tablematch.services.point_outbox import PointOutboxQueue, award_points_best_effort
from tablematch.utils import constants


@pytest.fixture
def queue():
    """Fresh queue instance (no worker running)."""
    return PointOutboxQueue()


async def _outbox_rows(db_session):
    result = await db_session.execute(
        select(PointOutbox.status, PointOutbox.attempts).order_by(PointOutbox.id)
    )
    return [tuple(row) for row in result.all()]


async def _broken_ledger(*args, **kwargs):
    raise RuntimeError("ledger unavailable")


@pytest.mark.asyncio
async def test_award_success_writes_ledger(db_session, make_user):
    """Test a successful award lands in the ledger and nothing is queued."""
    user = await make_user()

    assert await award_points_best_effort(db_session, user["id"], 20, "participation", 1) is True
    assert await stage_service.get_ledger_sum(db_session, user["id"]) == 20
    assert await _outbox_rows(db_session) == []


@pytest.mark.asyncio
async def test_award_failure_is_queued(db_session, make_user, monkeypatch):
    """Test a failed award returns False and parks the write."""
    user = await make_user()
    monkeypatch.setattr(stage_service, "add_stage_points", _broken_ledger)

    assert await award_points_best_effort(db_session, user["id"], 20, "participation", 1) is False
    assert await _outbox_rows(db_session) == [("pending", 0)]


@pytest.mark.asyncio
async def test_process_pending_applies_queued_write(db_session, make_user, queue):
    """Test pending rows are applied to the ledger and marked completed."""
    user = await make_user()
    await queue.enqueue(db_session, user["id"], -30, "cancel", 11)

    counts = await queue.process_pending(db_session)

    assert counts == {"completed": 1, "retrying": 0, "failed": 0}
    assert await _outbox_rows(db_session) == [("completed", 1)]
    assert await stage_service.get_ledger_sum(db_session, user["id"]) == -30
    assert await queue.get_queue_status(db_session) == {"pending": [], "failed": []}


@pytest.mark.asyncio
async def test_process_pending_does_not_double_apply(db_session, make_user, queue):
    """Test a queued write that already reached the ledger is not applied twice."""
    user = await make_user()
    await stage_service.add_stage_points(db_session, user["id"], 20, "participation", 5)
    await db_session.commit()
    await queue.enqueue(db_session, user["id"], 20, "participation", 5)

    counts = await queue.process_pending(db_session)

    assert counts["completed"] == 1
    assert await stage_service.get_ledger_sum(db_session, user["id"]) == 20


@pytest.mark.asyncio
async def test_process_pending_retries_then_fails(db_session, make_user, queue, monkeypatch):
    """Test a persistently failing write is retried up to the limit, then marked failed."""
    user = await make_user()
    await queue.enqueue(db_session, user["id"], 20, "participation", 3)
    monkeypatch.setattr(stage_service, "add_stage_points", _broken_ledger)

    for attempt in range(1, constants.OUTBOX_MAX_ATTEMPTS):
        counts = await queue.process_pending(db_session)
        assert counts == {"completed": 0, "retrying": 1, "failed": 0}
        assert await _outbox_rows(db_session) == [("pending", attempt)]

    counts = await queue.process_pending(db_session)
    assert counts == {"completed": 0, "retrying": 0, "failed": 1}
    assert await _outbox_rows(db_session) == [("failed", constants.OUTBOX_MAX_ATTEMPTS)]

    # Failed rows are left for an operator; further runs skip them
    assert await queue.process_pending(db_session) == {"completed": 0, "retrying": 0, "failed": 0}

    status = await queue.get_queue_status(db_session)
    assert status["pending"] == []
    assert len(status["failed"]) == 1
    assert status["failed"][0]["last_error"] == "ledger unavailable"
    assert status["failed"][0]["reference_id"] == 3


@pytest.mark.asyncio
async def test_process_pending_isolates_bad_rows(db_session, make_user, queue, monkeypatch):
    """Test one failing row does not stop the others in the batch."""
    good = await make_user()
    bad = await make_user()
    await queue.enqueue(db_session, bad["id"], 20, "participation", 1)
    await queue.enqueue(db_session, good["id"], 20, "participation", 2)

    original = stage_service.add_stage_points

    async def fails_for_bad_user(session, user_id, points, reason, reference_id):
        if user_id == bad["id"]:
            raise RuntimeError("row locked")
        return await original(session, user_id, points, reason, reference_id)

    monkeypatch.setattr(stage_service, "add_stage_points", fails_for_bad_user)

    counts = await queue.process_pending(db_session)

    assert counts == {"completed": 1, "retrying": 1, "failed": 0}
    assert await stage_service.get_ledger_sum(db_session, good["id"]) == 20


def test_global_outbox_instance():
    """Test the module exposes one shared queue."""
    assert point_outbox.get_point_outbox() is point_outbox.get_point_outbox()
