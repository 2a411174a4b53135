"""Review route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.api.routes import limiter, http_error, store_failure
from tablematch.api.auth_dependencies import require_user
from tablematch.database.db import get_db_session
from tablematch.services import review_service
from tablematch.services.errors import EngineError
from tablematch.models.schemas import (
    ReviewCreate,
    ReviewMemoUpdate,
    ReviewResponse,
    SubmitReviewResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/reviews", response_model=SubmitReviewResponse)
@limiter.limit("30/minute")
async def submit_review(
    request: Request,
    payload: ReviewCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Review a tablemate after the event."""
    try:
        return await review_service.submit_review(
            session,
            user["id"],
            payload.match_id,
            payload.target_user_id,
            payload.rating,
            memo=payload.memo,
            block_flag=payload.block_flag,
            is_no_show=payload.is_no_show,
        )
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error submitting review: {e}", exc_info=True)
        raise store_failure("Error submitting review")


@router.patch("/api/reviews/{review_id}", response_model=ReviewResponse)
async def update_review_memo(
    review_id: int,
    payload: ReviewMemoUpdate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Edit the private memo on one of the caller's reviews."""
    try:
        return await review_service.update_review_memo(session, user["id"], review_id, payload.memo)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error updating review {review_id}: {e}", exc_info=True)
        raise store_failure("Error updating review")


@router.get("/api/reviews/match/{match_id}", response_model=List[ReviewResponse])
async def list_my_reviews_for_match(
    match_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Reviews the caller already sent for a match."""
    try:
        return await review_service.list_my_reviews_for_match(session, user["id"], match_id)
    except Exception as e:
        logger.error(f"Error fetching reviews for match {match_id}: {e}", exc_info=True)
        raise store_failure("Error fetching reviews")
