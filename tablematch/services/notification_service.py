"""
Notification dispatcher: push text messages to members' messaging accounts.

Delivery is fire-and-forget from the caller's point of view. Failures are
logged and counted, never raised.
"""

import logging
import os
from typing import Dict, Iterable, List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tablematch.database.models import User

logger = logging.getLogger(__name__)

DEFAULT_PUSH_API_URL = "https://api.line.me/v2/bot/message/push"
PUSH_TIMEOUT_SECONDS = 10.0


def _get_push_config() -> Dict[str, Optional[str]]:
    """Read push settings from the environment."""
    return {
        "url": os.environ.get("PUSH_API_URL", DEFAULT_PUSH_API_URL),
        "token": os.environ.get("PUSH_CHANNEL_ACCESS_TOKEN"),
    }


async def get_messaging_targets(
    session: AsyncSession, user_ids: Iterable[int]
) -> List[Dict]:
    """Messaging ids for a set of users (None where a user never linked one)."""
    ids = list(user_ids)
    if not ids:
        return []
    result = await session.execute(
        select(User.id, User.messaging_user_id).where(User.id.in_(ids))
    )
    return [{"user_id": uid, "messaging_user_id": mid} for uid, mid in result.all()]


async def push_message(
    client: httpx.AsyncClient, url: str, token: str, to: str, text: str
) -> None:
    resp = await client.post(
        url,
        headers={"Authorization": f"Bearer {token}"},
        json={"to": to, "messages": [{"type": "text", "text": text}]},
    )
    resp.raise_for_status()


async def notify(targets: List[Dict], message: str) -> Dict[str, int]:
    """
    Push ``message`` to every target.

    Args:
        targets: Dicts with ``user_id`` and ``messaging_user_id``
        message: Text to send

    Returns:
        Counts of messages sent, failed and skipped (no messaging id, or push
        not configured)
    """
    counts = {"sent": 0, "failed": 0, "skipped": 0}
    config = _get_push_config()

    if not config["token"]:
        logger.warning("PUSH_CHANNEL_ACCESS_TOKEN not set; skipping push notifications")
        counts["skipped"] = len(targets)
        return counts

    async with httpx.AsyncClient(timeout=PUSH_TIMEOUT_SECONDS) as client:
        for target in targets:
            to = target.get("messaging_user_id")
            if not to:
                counts["skipped"] += 1
                continue
            try:
                await push_message(client, config["url"], config["token"], to, message)
                counts["sent"] += 1
            except Exception as e:
                counts["failed"] += 1
                logger.warning(f"Push to user {target.get('user_id')} failed: {e}")

    return counts


async def notify_users(
    session: AsyncSession, user_ids: Iterable[int], message: str
) -> Dict[str, int]:
    """Look up messaging ids and push; never raises."""
    ids = list(user_ids)
    try:
        targets = await get_messaging_targets(session, ids)
        return await notify(targets, message)
    except Exception as e:
        logger.error(f"Notification dispatch failed: {e}", exc_info=True)
        return {"sent": 0, "failed": len(ids), "skipped": 0}
