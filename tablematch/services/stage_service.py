"""
Member stage service: the reputation ledger and the stage derived from it.

The ledger (stage_point_logs) is append-only and authoritative. The
``stage_points`` / ``member_stage`` columns on users are a cache recomputed
from the ledger on every write; nothing else writes them.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import (
    User,
    StagePointLog,
    MemberStageHistory,
    StagePointReason,
)
from tablematch.services.errors import NotFound, ValidationFailed
from tablematch.utils import constants
from tablematch.utils.datetime_utils import utcnow, hours_until

logger = logging.getLogger(__name__)

STAGE_DISPLAY_NAMES = {
    "bronze": "Bronze",
    "silver": "Silver",
    "gold": "Gold",
    "platinum": "Platinum",
}


# --- Pure stage derivation ---


def get_stage_from_points(points: int, thresholds: Optional[Dict[str, int]] = None) -> str:
    """
    Map a cumulative point total to its stage.

    Totals below the lowest threshold (negative balances) stay at the lowest stage.
    """
    thresholds = thresholds or constants.STAGE_THRESHOLDS
    for stage in reversed(constants.STAGE_ORDER):
        if points >= thresholds[stage]:
            return stage
    return constants.STAGE_ORDER[0]


def get_next_stage(stage: str) -> Optional[str]:
    """Return the stage above ``stage``, or None at the top."""
    if stage not in constants.STAGE_ORDER:
        return None
    index = constants.STAGE_ORDER.index(stage)
    if index == len(constants.STAGE_ORDER) - 1:
        return None
    return constants.STAGE_ORDER[index + 1]


def get_stage_progress_percent(
    points: int, thresholds: Optional[Dict[str, int]] = None
) -> int:
    """
    Percentage progress from the current stage threshold to the next one.

    Clamped to [0, 100]; always 100 at the top stage.
    """
    thresholds = thresholds or constants.STAGE_THRESHOLDS
    current = get_stage_from_points(points, thresholds)
    nxt = get_next_stage(current)
    if nxt is None:
        return 100

    current_threshold = thresholds[current]
    stage_range = thresholds[nxt] - current_threshold
    percent = int((points - current_threshold) * 100 // stage_range)
    return max(0, min(100, percent))


def get_stage_message(stage: str, progress_percent: int) -> str:
    nxt = get_next_stage(stage)
    if nxt is None:
        return "You have reached the highest stage!"

    name = STAGE_DISPLAY_NAMES[nxt]
    if progress_percent >= 80:
        return f"Almost at {name}!"
    if progress_percent >= 50:
        return f"{name} is in sight"
    return f"Next up: aim for {name}"


def get_member_stage_info(points: int) -> Dict:
    """Stage, progress and next stage for a point total."""
    stage = get_stage_from_points(points)
    progress = get_stage_progress_percent(points)
    return {
        "stage": stage,
        "points": points,
        "progress_percent": progress,
        "next_stage": get_next_stage(stage),
        "message": get_stage_message(stage, progress),
    }


# --- Point table ---


def get_review_received_points(rating: int) -> int:
    """Reward for a received (non-no-show) review, scaled by rating."""
    if rating not in constants.REVIEW_RATING_POINTS:
        raise ValidationFailed(f"No reward defined for rating {rating}")
    return constants.REVIEW_RATING_POINTS[rating]


def is_block_rating(rating: int) -> bool:
    """Ratings 1-3 also mean 'do not match me with this person again'."""
    return rating in constants.BLOCK_RATINGS


def get_cancellation_penalty(
    event_date: datetime, now: Optional[datetime] = None
) -> Tuple[int, str]:
    """
    Penalty for canceling attendance, branching on time left before the event.

    Returns:
        (points, reason) - late_cancel inside the late-cancel window, else cancel
    """
    if hours_until(event_date, now) < constants.LATE_CANCEL_WINDOW_HOURS:
        return constants.POINTS_LATE_CANCEL, StagePointReason.LATE_CANCEL.value
    return constants.POINTS_CANCEL, StagePointReason.CANCEL.value


# --- Ledger ---


def _log_to_dict(entry: StagePointLog) -> Dict:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "points": entry.points,
        "reason": entry.reason,
        "reference_id": entry.reference_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


async def _get_user_for_update(session: AsyncSession, user_id: int) -> User:
    """Load the user row, locking it so ledger folds for one user serialize."""
    result = await session.execute(
        select(User).where(User.id == user_id).with_for_update()
    )
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


async def get_ledger_sum(session: AsyncSession, user_id: int) -> int:
    """Sum of every ledger row for a user."""
    result = await session.execute(
        select(func.coalesce(func.sum(StagePointLog.points), 0)).where(
            StagePointLog.user_id == user_id
        )
    )
    return int(result.scalar_one())


async def _refresh_stage(session: AsyncSession, user: User) -> Dict:
    """Fold the ledger into the user's cached points and stage."""
    total = await get_ledger_sum(session, user.id)
    old_stage = user.member_stage
    new_stage = get_stage_from_points(total)

    user.stage_points = total
    user.member_stage = new_stage
    user.stage_updated_at = utcnow()

    if old_stage != new_stage:
        session.add(
            MemberStageHistory(
                user_id=user.id,
                old_stage=old_stage,
                new_stage=new_stage,
                points_at_change=total,
            )
        )
        logger.info(
            f"User {user.id} moved from {old_stage} to {new_stage} at {total} points"
        )

    await session.flush()
    return {"stage_points": total, "member_stage": new_stage, "previous_stage": old_stage}


async def add_stage_points(
    session: AsyncSession,
    user_id: int,
    points: int,
    reason: str,
    reference_id: int,
) -> Dict:
    """
    Append a ledger entry and recompute the user's stage.

    Idempotent per (user_id, reason, reference_id): a repeated cause returns
    the existing entry with ``created=False`` and writes nothing.

    Args:
        session: Database session
        user_id: User receiving the points
        points: Signed point delta
        reason: StagePointReason value
        reference_id: Id of the participation/review that caused the entry

    Returns:
        Dict with the ledger entry, ``created`` and the user's new totals

    Raises:
        NotFound: If the user does not exist
        ValidationFailed: If the reason is unknown
    """
    valid_reasons = {r.value for r in StagePointReason}
    if reason not in valid_reasons:
        raise ValidationFailed(f"Unknown stage point reason: {reason}")

    user = await _get_user_for_update(session, user_id)

    result = await session.execute(
        select(StagePointLog).where(
            and_(
                StagePointLog.user_id == user_id,
                StagePointLog.reason == reason,
                StagePointLog.reference_id == reference_id,
            )
        )
    )
    existing = result.scalar_one_or_none()
    if existing:
        logger.debug(
            f"Ledger entry for user {user_id} {reason}/{reference_id} already exists"
        )
        return {
            **_log_to_dict(existing),
            "created": False,
            "stage_points": user.stage_points,
            "member_stage": user.member_stage,
        }

    entry = StagePointLog(
        user_id=user_id,
        points=points,
        reason=reason,
        reference_id=reference_id,
    )
    session.add(entry)
    await session.flush()
    await session.refresh(entry)

    totals = await _refresh_stage(session, user)
    return {**_log_to_dict(entry), "created": True, **totals}


async def reconcile_user(session: AsyncSession, user_id: int) -> Dict:
    """
    Rebuild a user's cached points and stage from the ledger and commit.

    Returns:
        Dict with the previous cached total and the recomputed totals
    """
    user = await _get_user_for_update(session, user_id)
    cached_points = user.stage_points
    totals = await _refresh_stage(session, user)
    await session.commit()
    if cached_points != totals["stage_points"]:
        logger.warning(
            f"Reconciled user {user_id}: cached {cached_points}, "
            f"ledger {totals['stage_points']}"
        )
    return {"user_id": user_id, "cached_points": cached_points, **totals}


async def get_user_stage_info(session: AsyncSession, user_id: int) -> Dict:
    """Stage info for a user based on the cached ledger sum."""
    result = await session.execute(select(User.stage_points).where(User.id == user_id))
    points = result.scalar_one_or_none()
    if points is None:
        raise NotFound("User not found")
    return get_member_stage_info(points)


async def get_ledger(session: AsyncSession, user_id: int) -> List[Dict]:
    """All ledger entries for a user, oldest first."""
    result = await session.execute(
        select(StagePointLog)
        .where(StagePointLog.user_id == user_id)
        .order_by(StagePointLog.id.asc())
    )
    return [_log_to_dict(entry) for entry in result.scalars().all()]


async def get_stage_history(session: AsyncSession, user_id: int) -> List[Dict]:
    result = await session.execute(
        select(MemberStageHistory)
        .where(MemberStageHistory.user_id == user_id)
        .order_by(MemberStageHistory.id.asc())
    )
    return [
        {
            "old_stage": h.old_stage,
            "new_stage": h.new_stage,
            "points_at_change": h.points_at_change,
            "created_at": h.created_at.isoformat() if h.created_at else None,
        }
        for h in result.scalars().all()
    ]
