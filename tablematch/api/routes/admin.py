"""Operator route handlers: event lifecycle, reminders, ledger repair and member records."""

import logging

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.api.routes import http_error, store_failure
from tablematch.api.auth_dependencies import require_admin
from tablematch.database.db import get_db_session
from tablematch.services import activity_service, event_service, stage_service, user_service
from tablematch.services.errors import EngineError
from tablematch.services.point_outbox import get_point_outbox
from tablematch.models.schemas import (
    EventCreate,
    EventResponse,
    ImportMatchesRequest,
    ImportMatchesResponse,
    CompleteEventResponse,
    CancelEventResponse,
    ReminderPreviewResponse,
    SendReminderRequest,
    SendReminderResponse,
    ActivityEntry,
    ReconcileResponse,
    SubscriptionUpdate,
    UserResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/admin/events", response_model=EventResponse)
async def create_event(
    payload: EventCreate,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Schedule a new event."""
    try:
        return await event_service.create_event(session, payload.event_date, payload.area)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error creating event: {e}", exc_info=True)
        raise store_failure("Error creating event")


@router.post("/api/admin/events/{event_id}/matches", response_model=ImportMatchesResponse)
async def import_matches(
    event_id: int,
    payload: ImportMatchesRequest,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Import the table seating for an event and mark it matched."""
    try:
        tables = [table.model_dump() for table in payload.tables]
        return await event_service.import_matches(session, event_id, tables)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error importing matches for event {event_id}: {e}", exc_info=True)
        raise store_failure("Error importing matches")


@router.post("/api/admin/events/{event_id}/complete", response_model=CompleteEventResponse)
async def complete_event(
    event_id: int,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Close a matched event and award participation points."""
    try:
        return await event_service.complete_event(session, event_id)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error completing event {event_id}: {e}", exc_info=True)
        raise store_failure("Error completing event")


@router.post("/api/admin/events/{event_id}/cancel", response_model=CancelEventResponse)
async def cancel_event(
    event_id: int,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel an open event and notify its participants."""
    try:
        return await event_service.cancel_event(session, event_id)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error canceling event {event_id}: {e}", exc_info=True)
        raise store_failure("Error canceling event")


@router.get("/api/admin/events/{event_id}/reminder", response_model=ReminderPreviewResponse)
async def preview_reminder(
    event_id: int,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Preview who a day-of reminder would reach."""
    try:
        return await event_service.get_reminder_preview(session, event_id)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error previewing reminder for event {event_id}: {e}", exc_info=True)
        raise store_failure("Error previewing reminder")


@router.post("/api/admin/events/{event_id}/reminder", response_model=SendReminderResponse)
async def send_reminder(
    event_id: int,
    payload: Optional[SendReminderRequest] = None,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Send the day-of reminder to every seated member."""
    try:
        force = payload.force if payload else False
        return await event_service.send_reminders(
            session, event_id, sent_by=user["id"], force=force
        )
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error sending reminder for event {event_id}: {e}", exc_info=True)
        raise store_failure("Error sending reminder")


@router.post("/api/admin/users/{user_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_user(
    user_id: int,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Rebuild a member's cached points and stage from the ledger."""
    try:
        return await stage_service.reconcile_user(session, user_id)
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error reconciling user {user_id}: {e}", exc_info=True)
        raise store_failure("Error reconciling user")


@router.put("/api/admin/users/{user_id}/subscription", response_model=UserResponse)
async def sync_subscription(
    user_id: int,
    payload: SubscriptionUpdate,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Record subscription state from the billing provider."""
    try:
        return await user_service.sync_subscription(
            session, user_id, payload.status, payload.period_end, admin_user_id=user["id"]
        )
    except EngineError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error syncing subscription for user {user_id}: {e}", exc_info=True)
        raise store_failure("Error syncing subscription")


@router.get("/api/admin/point-outbox")
async def get_point_outbox_status(
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Ledger writes waiting for retry, and those that gave up."""
    try:
        return await get_point_outbox().get_queue_status(session)
    except Exception as e:
        logger.error(f"Error fetching point outbox status: {e}", exc_info=True)
        raise store_failure("Error fetching point outbox status")


@router.get("/api/admin/users/{user_id}/activity", response_model=List[ActivityEntry])
async def get_user_activity(
    user_id: int,
    limit: int = 50,
    user: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """A member's recent activity, newest first."""
    try:
        return await activity_service.list_user_activity(session, user_id, limit=min(limit, 200))
    except Exception as e:
        logger.error(f"Error fetching activity for user {user_id}: {e}", exc_info=True)
        raise store_failure("Error fetching activity")
