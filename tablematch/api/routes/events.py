"""Event entry and attendance route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.api.routes import limiter, http_error, store_failure
from tablematch.api.auth_dependencies import require_user
from tablematch.database.db import get_db_session
from tablematch.services import participation_service, event_service
from tablematch.services.errors import EngineError
from tablematch.models.schemas import (
    EntryRequest,
    EntryResponse,
    AttendanceRequest,
    AttendanceResponse,
    ParticipationResponse,
    NextEventResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/events/entry", response_model=EntryResponse)
@limiter.limit("20/minute")
async def enter_event(
    request: Request,
    payload: EntryRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Enter an event solo or as the inviter of a group."""
    try:
        return await participation_service.enter_event(
            session,
            user,
            payload.event_id,
            payload.entry_type,
            mood=payload.mood,
            mood_text=payload.mood_text,
            budget_level=payload.budget_level,
        )
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error entering event: {e}", exc_info=True)
        raise store_failure("Error entering event")


@router.delete("/api/events/entry/{participation_id}", response_model=ParticipationResponse)
async def cancel_entry(
    participation_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Withdraw an entry before matching."""
    try:
        return await participation_service.cancel_participation(
            session, user["id"], participation_id
        )
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error canceling participation {participation_id}: {e}", exc_info=True)
        raise store_failure("Error canceling entry")


@router.patch("/api/events/attendance", response_model=AttendanceResponse)
async def update_attendance(
    payload: AttendanceRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Report lateness or cancel attendance for a matched event."""
    try:
        return await participation_service.update_attendance(
            session,
            user["id"],
            payload.participation_id,
            payload.action,
            late_minutes=payload.late_minutes,
            cancel_reason=payload.cancel_reason,
        )
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error updating attendance: {e}", exc_info=True)
        raise store_failure("Error updating attendance")


@router.get("/api/events/me", response_model=List[ParticipationResponse])
async def list_my_participations(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List the caller's participations, newest event first."""
    try:
        return await participation_service.list_my_participations(session, user["id"])
    except Exception as e:
        logger.error(f"Error fetching participations: {e}", exc_info=True)
        raise store_failure("Error fetching participations")


@router.get("/api/next-event", response_model=NextEventResponse)
async def get_next_event(session: AsyncSession = Depends(get_db_session)):
    """Public teaser: the next open event at least two days out."""
    try:
        return {"next_event": await event_service.get_next_event(session)}
    except Exception as e:
        logger.error(f"Error fetching next event: {e}", exc_info=True)
        raise store_failure("Error fetching next event")
