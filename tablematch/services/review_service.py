"""
Review service: peer feedback after an event and the points it carries.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, List

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import Review, Match, Event, StagePointReason
from tablematch.services import stage_service
from tablematch.services.errors import (
    NotFound,
    Forbidden,
    NotYetAccessible,
    AlreadyReviewed,
    ValidationFailed,
)
from tablematch.services.point_outbox import award_points_best_effort
from tablematch.utils import constants
from tablematch.utils.datetime_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


def review_to_dict(review: Review) -> Dict:
    return {
        "id": review.id,
        "reviewer_id": review.reviewer_id,
        "target_user_id": review.target_user_id,
        "match_id": review.match_id,
        "rating": review.rating,
        "memo": review.memo,
        "block_flag": review.block_flag,
        "is_no_show": review.is_no_show,
    }


def is_review_accessible(event_date: datetime, now: Optional[datetime] = None) -> bool:
    """Reviews open two hours after the event starts."""
    now = as_utc(now) if now is not None else utcnow()
    opens_at = as_utc(event_date) + timedelta(hours=constants.REVIEW_OPEN_DELAY_HOURS)
    return now >= opens_at


def validate_rating(rating, is_no_show: bool) -> None:
    """
    Raises:
        ValidationFailed: If rating is not an integer in [0, 5], or is 0
            without the no-show flag
    """
    if isinstance(rating, bool) or not isinstance(rating, int) or not 0 <= rating <= 5:
        raise ValidationFailed("Rating must be an integer between 0 and 5")
    if rating == 0 and not is_no_show:
        raise ValidationFailed("Rating 0 requires is_no_show flag")


async def submit_review(
    session: AsyncSession,
    reviewer_id: int,
    match_id: int,
    target_user_id: int,
    rating: int,
    memo: Optional[str] = None,
    block_flag: bool = False,
    is_no_show: bool = False,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Review a tablemate.

    The review row is the primary write. Points for the reviewer (flat) and
    the target (no-show penalty or rating-scaled reward) follow as secondary
    writes that never undo the review.

    Args:
        session: Database session
        reviewer_id: Caller's user ID
        match_id: Table both users sat at
        target_user_id: User being reviewed
        rating: 1-5, or 0 for a no-show
        memo: Private note, visible only to the reviewer
        block_flag: Reviewer does not want to be matched with the target again
        is_no_show: Target did not turn up (forces rating 0)
        now: Clock override

    Returns:
        Dict with the review and whether each ledger write landed

    Raises:
        ValidationFailed, NotFound, NotYetAccessible, Forbidden, AlreadyReviewed
    """
    validate_rating(rating, is_no_show)
    if is_no_show:
        rating = 0

    result = await session.execute(
        select(Match.table_members, Event.event_date)
        .join(Event, Event.id == Match.event_id)
        .where(Match.id == match_id)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFound("Match not found")
    table_members, event_date = row
    table_members = table_members or []

    if not is_review_accessible(event_date, now):
        raise NotYetAccessible(
            f"Reviews open {constants.REVIEW_OPEN_DELAY_HOURS} hours after the event starts"
        )
    if reviewer_id not in table_members:
        raise Forbidden("You are not part of this match")
    if target_user_id not in table_members:
        raise ValidationFailed("Target user is not part of this match")
    if reviewer_id == target_user_id:
        raise ValidationFailed("Cannot review yourself")

    result = await session.execute(
        select(Review.id).where(
            and_(
                Review.reviewer_id == reviewer_id,
                Review.target_user_id == target_user_id,
                Review.match_id == match_id,
            )
        )
    )
    if result.scalar_one_or_none() is not None:
        raise AlreadyReviewed("Already reviewed this user for this match")

    review = Review(
        reviewer_id=reviewer_id,
        target_user_id=target_user_id,
        match_id=match_id,
        rating=rating,
        memo=memo,
        block_flag=bool(block_flag) or (not is_no_show and stage_service.is_block_rating(rating)),
        is_no_show=is_no_show,
    )
    session.add(review)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise AlreadyReviewed("Already reviewed this user for this match")
    review_data = review_to_dict(review)
    await session.commit()
    review_id = review_data["id"]
    logger.info(f"User {reviewer_id} reviewed user {target_user_id} for match {match_id}")

    reviewer_points = await award_points_best_effort(
        session,
        reviewer_id,
        constants.POINTS_REVIEW_SENT,
        StagePointReason.REVIEW_SENT.value,
        review_id,
    )
    if is_no_show:
        target_points = await award_points_best_effort(
            session,
            target_user_id,
            constants.POINTS_NO_SHOW,
            StagePointReason.NO_SHOW.value,
            review_id,
        )
    else:
        target_points = await award_points_best_effort(
            session,
            target_user_id,
            stage_service.get_review_received_points(rating),
            StagePointReason.REVIEW_RECEIVED.value,
            review_id,
        )

    return {
        "review": review_data,
        "reviewer_points_recorded": reviewer_points,
        "target_points_recorded": target_points,
    }


async def update_review_memo(
    session: AsyncSession, user_id: int, review_id: int, memo: Optional[str]
) -> Dict:
    """
    Edit the private memo on one of the caller's reviews.

    Raises:
        NotFound: If the review does not exist
        Forbidden: If the caller did not write it
    """
    result = await session.execute(select(Review).where(Review.id == review_id))
    review = result.scalar_one_or_none()
    if not review:
        raise NotFound("Review not found")
    if review.reviewer_id != user_id:
        raise Forbidden("Only the reviewer can edit this review")

    review.memo = memo
    await session.commit()
    return review_to_dict(review)


async def list_my_reviews_for_match(
    session: AsyncSession, user_id: int, match_id: int
) -> List[Dict]:
    """Reviews the caller already sent for one match."""
    result = await session.execute(
        select(Review)
        .where(and_(Review.reviewer_id == user_id, Review.match_id == match_id))
        .order_by(Review.id.asc())
    )
    return [review_to_dict(r) for r in result.scalars().all()]
