"""
Activity log: a per-member trail of joins, cancellations, billing changes and
account deletion.

Writes are fire-and-forget. They run after the action they describe has
committed, and a failed write is logged and dropped; it never fails or undoes
the action.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import (
    ActivityAction,
    SubscriptionStatus,
    UserActivityLog,
)

logger = logging.getLogger(__name__)

# Billing states that are worth a trail entry; 'none' is not
SUBSCRIPTION_ACTIONS = {
    SubscriptionStatus.ACTIVE.value: ActivityAction.SUBSCRIPTION_START,
    SubscriptionStatus.CANCELED.value: ActivityAction.SUBSCRIPTION_CANCEL,
    SubscriptionStatus.PAST_DUE.value: ActivityAction.PAYMENT_FAILED,
}


async def log_activity(
    session: AsyncSession,
    user_id: int,
    action: str,
    details: Optional[Dict] = None,
) -> bool:
    """
    Record one member action.

    Commits on success. On failure the session is rolled back and the error
    logged; callers must not read ORM attributes after a failed call.

    Args:
        session: Database session
        user_id: Member the action belongs to
        action: One of the ActivityAction values
        details: JSON-serializable context (event id, entry type, ...)

    Returns:
        True if the entry was written
    """
    try:
        session.add(UserActivityLog(user_id=user_id, action=action, details=details or {}))
        await session.commit()
        return True
    except Exception as e:
        await session.rollback()
        logger.error(f"Failed to log activity {action} for user {user_id}: {e}", exc_info=True)
        return False


async def log_admin_activity(
    session: AsyncSession,
    admin_user_id: int,
    target_user_id: int,
    action: str,
    details: Optional[Dict] = None,
) -> bool:
    """Record an action an operator took on a member's behalf."""
    return await log_activity(
        session, target_user_id, action, {**(details or {}), "admin_user_id": admin_user_id}
    )


async def list_user_activity(
    session: AsyncSession, user_id: int, limit: int = 50
) -> List[Dict]:
    """A member's most recent activity, newest first."""
    result = await session.execute(
        select(UserActivityLog)
        .where(UserActivityLog.user_id == user_id)
        .order_by(UserActivityLog.created_at.desc(), UserActivityLog.id.desc())
        .limit(limit)
    )
    return [
        {
            "id": entry.id,
            "action": entry.action,
            "metadata": entry.details or {},
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in result.scalars().all()
    ]
