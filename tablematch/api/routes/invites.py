"""Invite resolution route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.api.routes import limiter, http_error, store_failure
from tablematch.api.auth_dependencies import require_user, get_current_user_optional
from tablematch.database.db import get_db_session
from tablematch.services import invite_service
from tablematch.services.errors import EngineError
from tablematch.models.schemas import (
    ResolveInviteRequest,
    ResolveInviteResponse,
    AcceptInviteRequest,
    AcceptInviteResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/invite/resolve", response_model=ResolveInviteResponse)
@limiter.limit("30/minute")
async def resolve_invite(
    request: Request,
    payload: ResolveInviteRequest,
    user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    """Preview an invite from a token, short code or invite URL."""
    try:
        return await invite_service.resolve_invite(session, payload.input, viewer=user)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error resolving invite: {e}", exc_info=True)
        raise store_failure("Error resolving invite")


@router.post("/api/invite/accept", response_model=AcceptInviteResponse)
@limiter.limit("10/minute")
async def accept_invite(
    request: Request,
    payload: AcceptInviteRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Join the inviter's group."""
    try:
        return await invite_service.accept_invite(
            session,
            user,
            payload.token,
            mood=payload.mood,
            mood_text=payload.mood_text,
            budget_level=payload.budget_level,
        )
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error accepting invite: {e}", exc_info=True)
        raise store_failure("Error accepting invite")
