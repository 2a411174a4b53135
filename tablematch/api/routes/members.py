"""Member stage and account route handlers."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.api.routes import http_error, store_failure
from tablematch.api.auth_dependencies import require_user
from tablematch.database.db import get_db_session
from tablematch.services import stage_service, user_service
from tablematch.services.errors import EngineError, NotFound
from tablematch.models.schemas import MemberStageResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/member-stage", response_model=MemberStageResponse)
async def get_member_stage(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Current stage, points and progress toward the next stage."""
    try:
        return await stage_service.get_user_stage_info(session, user["id"])
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching member stage: {e}", exc_info=True)
        raise store_failure("Error fetching member stage")


@router.delete("/api/account")
async def delete_account(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete the caller's account and everything attached to it."""
    try:
        deleted = await user_service.delete_account(session, user["id"])
    except Exception as e:
        logger.error(f"Error deleting account for user {user['id']}: {e}", exc_info=True)
        raise store_failure("Error deleting account")
    if not deleted:
        raise http_error(NotFound("User not found"))
    return {"status": "ok", "message": "Account deleted"}
