"""
User service layer: member lookup, billing sync and account deletion.
"""

from datetime import datetime
from typing import Optional, Dict
import logging

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import (
    User,
    Participation,
    Review,
    StagePointLog,
    MemberStageHistory,
    PointOutbox,
    SubscriptionStatus,
    UserActivityLog,
    ActivityAction,
)
from tablematch.services import activity_service
from tablematch.services.errors import NotFound, ValidationFailed

logger = logging.getLogger(__name__)


def _user_to_dict(user: User) -> Dict:
    """
    Convert a User ORM instance to a dictionary.

    Args:
        user: User ORM instance

    Returns:
        User dictionary
    """
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "is_admin": bool(user.is_admin),
        "messaging_user_id": user.messaging_user_id,
        "subscription_status": user.subscription_status,
        "subscription_period_end": user.subscription_period_end,
        "stage_points": user.stage_points,
        "member_stage": user.member_stage,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def create_user(
    session: AsyncSession,
    display_name: str,
    email: Optional[str] = None,
    messaging_user_id: Optional[str] = None,
    is_admin: bool = False,
) -> int:
    """
    Create a new member account.

    Returns:
        User ID of the created user
    """
    new_user = User(
        display_name=display_name,
        email=email.strip().lower() if email else None,
        messaging_user_id=messaging_user_id,
        is_admin=is_admin,
    )
    session.add(new_user)
    await session.flush()
    user_id = new_user.id
    await session.commit()
    return user_id


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def sync_subscription(
    session: AsyncSession,
    user_id: int,
    status: str,
    period_end: Optional[datetime] = None,
    admin_user_id: Optional[int] = None,
) -> Dict:
    """
    Record subscription state pushed by the billing provider.

    Args:
        session: Database session
        user_id: User ID
        status: One of the SubscriptionStatus values
        period_end: End of the current billing period
        admin_user_id: Operator who pushed the change, if not the billing provider

    Returns:
        Updated user dictionary

    Raises:
        ValidationFailed: If the status is unknown
        NotFound: If the user does not exist
    """
    if status not in {s.value for s in SubscriptionStatus}:
        raise ValidationFailed(f"Unknown subscription status: {status}")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound("User not found")

    previous_status = user.subscription_status
    user.subscription_status = status
    user.subscription_period_end = period_end
    await session.commit()

    logger.info(f"Subscription for user {user_id} set to {status} (period_end={period_end})")
    updated = _user_to_dict(user)

    action = activity_service.SUBSCRIPTION_ACTIONS.get(status)
    if action and status != previous_status:
        details = {"previous_status": previous_status}
        if admin_user_id is not None:
            await activity_service.log_admin_activity(
                session, admin_user_id, user_id, action.value, details
            )
        else:
            await activity_service.log_activity(session, user_id, action.value, details)
    return updated


async def delete_account(session: AsyncSession, user_id: int) -> bool:
    """
    Delete a member and everything hanging off the account.

    Reviews (sent and received), participations, ledger rows, stage history,
    queued ledger writes and the activity trail are removed before the user
    row. External billing is not touched.

    Returns:
        True if the user existed and was deleted
    """
    result = await session.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        return False

    # Survives only if the deletion below fails
    await activity_service.log_activity(session, user_id, ActivityAction.ACCOUNT_DELETE.value)

    await session.execute(
        delete(Review).where(
            or_(Review.reviewer_id == user_id, Review.target_user_id == user_id)
        )
    )
    await session.execute(delete(Participation).where(Participation.user_id == user_id))
    await session.execute(delete(StagePointLog).where(StagePointLog.user_id == user_id))
    await session.execute(
        delete(MemberStageHistory).where(MemberStageHistory.user_id == user_id)
    )
    await session.execute(delete(PointOutbox).where(PointOutbox.user_id == user_id))
    await session.execute(delete(UserActivityLog).where(UserActivityLog.user_id == user_id))
    await session.execute(delete(User).where(User.id == user_id))
    await session.commit()

    logger.info(f"Deleted account for user {user_id}")
    return True
