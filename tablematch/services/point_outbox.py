"""
Point outbox: durable retry queue for ledger writes.

Ledger writes that happen as a secondary effect (after a participation,
review or event update has already committed) must never fail the primary
operation. When such a write fails it is logged and parked here; a background
worker re-applies pending rows through the idempotent ledger write until they
succeed or run out of attempts.
"""

import asyncio
import logging
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database import db
from tablematch.database.models import PointOutbox, OutboxStatus
from tablematch.services import stage_service
from tablematch.utils import constants
from tablematch.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class PointOutboxQueue:
    """Database-backed queue of ledger writes awaiting retry."""

    def __init__(self):
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def enqueue(
        self,
        session: AsyncSession,
        user_id: int,
        points: int,
        reason: str,
        reference_id: int,
    ) -> Optional[int]:
        """
        Park a failed ledger write for retry.

        Returns:
            Outbox entry ID, or None if the outbox itself could not be written
        """
        entry = PointOutbox(
            user_id=user_id,
            points=points,
            reason=reason,
            reference_id=reference_id,
            status=OutboxStatus.PENDING.value,
            attempts=0,
        )
        session.add(entry)
        try:
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(
                f"Could not enqueue ledger write {reason}/{reference_id} for user {user_id}; "
                f"reconcile required: {e}",
                exc_info=True,
            )
            return None
        logger.info(f"Queued ledger write {reason}/{reference_id} for user {user_id} (outbox {entry.id})")
        return entry.id

    async def process_pending(
        self, session: AsyncSession, limit: int = constants.OUTBOX_BATCH_SIZE
    ) -> Dict[str, int]:
        """
        Re-apply pending outbox rows.

        Each row is handled in its own commit so one bad row does not block
        the rest.

        Returns:
            Counts of rows completed, left pending for another retry, and failed
        """
        result = await session.execute(
            select(
                PointOutbox.id,
                PointOutbox.user_id,
                PointOutbox.points,
                PointOutbox.reason,
                PointOutbox.reference_id,
                PointOutbox.attempts,
            )
            .where(PointOutbox.status == OutboxStatus.PENDING.value)
            .order_by(PointOutbox.id.asc())
            .limit(limit)
        )
        rows = result.all()

        counts = {"completed": 0, "retrying": 0, "failed": 0}
        for outbox_id, user_id, points, reason, reference_id, attempts in rows:
            try:
                await stage_service.add_stage_points(
                    session, user_id, points, reason, reference_id
                )
                await session.execute(
                    update(PointOutbox)
                    .where(PointOutbox.id == outbox_id)
                    .values(
                        status=OutboxStatus.COMPLETED.value,
                        attempts=attempts + 1,
                        completed_at=utcnow(),
                    )
                )
                await session.commit()
                counts["completed"] += 1
            except Exception as e:
                await session.rollback()
                exhausted = attempts + 1 >= constants.OUTBOX_MAX_ATTEMPTS
                await session.execute(
                    update(PointOutbox)
                    .where(PointOutbox.id == outbox_id)
                    .values(
                        status=OutboxStatus.FAILED.value if exhausted else OutboxStatus.PENDING.value,
                        attempts=attempts + 1,
                        last_error=str(e)[:1000],
                    )
                )
                await session.commit()
                if exhausted:
                    counts["failed"] += 1
                    logger.error(
                        f"Outbox {outbox_id} gave up after {attempts + 1} attempts: {e}"
                    )
                else:
                    counts["retrying"] += 1
                    logger.warning(f"Outbox {outbox_id} retry {attempts + 1} failed: {e}")

        if rows:
            logger.info(
                f"Processed {len(rows)} outbox row(s): {counts['completed']} completed, "
                f"{counts['retrying']} retrying, {counts['failed']} failed"
            )
        return counts

    async def get_queue_status(self, session: AsyncSession) -> Dict:
        """Pending and failed entries, for the admin view."""
        result = await session.execute(
            select(PointOutbox)
            .where(PointOutbox.status != OutboxStatus.COMPLETED.value)
            .order_by(PointOutbox.id.asc())
        )
        entries = result.scalars().all()

        def _entry(e: PointOutbox) -> Dict:
            return {
                "id": e.id,
                "user_id": e.user_id,
                "points": e.points,
                "reason": e.reason,
                "reference_id": e.reference_id,
                "attempts": e.attempts,
                "last_error": e.last_error,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }

        return {
            "pending": [_entry(e) for e in entries if e.status == OutboxStatus.PENDING.value],
            "failed": [_entry(e) for e in entries if e.status == OutboxStatus.FAILED.value],
        }

    async def _process_queue_worker(self) -> None:
        """Background worker: drain pending rows, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                async with db.AsyncSessionLocal() as session:
                    await self.process_pending(session)
            except Exception as e:
                logger.error(f"Error in point outbox worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=constants.OUTBOX_POLL_INTERVAL_SECONDS
                )
                break
            except asyncio.TimeoutError:
                pass

    def start_background_worker(self) -> None:
        """Start the background worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._process_queue_worker())
            logger.info("Point outbox worker started")

    def stop_background_worker(self) -> None:
        """Stop the background worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Point outbox worker stopped")


# Global queue instance
_point_outbox = PointOutboxQueue()


def get_point_outbox() -> PointOutboxQueue:
    """Get the global point outbox instance."""
    return _point_outbox


async def award_points_best_effort(
    session: AsyncSession,
    user_id: int,
    points: int,
    reason: str,
    reference_id: int,
) -> bool:
    """
    Write a ledger entry as a secondary effect of an already-committed change.

    Commits on success. On failure the session is rolled back, the error is
    logged and the write is parked in the outbox; the caller only learns
    whether the award landed now. Callers must not read ORM attributes after a
    failed call (the rollback expires them).

    Returns:
        True if the ledger entry was written (or already existed)
    """
    try:
        await stage_service.add_stage_points(session, user_id, points, reason, reference_id)
        await session.commit()
        return True
    except Exception as e:
        await session.rollback()
        logger.error(
            f"Ledger write {reason}/{reference_id} ({points:+d}) for user {user_id} failed: {e}",
            exc_info=True,
        )
        await get_point_outbox().enqueue(session, user_id, points, reason, reference_id)
        return False
