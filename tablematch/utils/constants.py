"""
Constants used across the participation and reputation system.

Point values and stage thresholds are configuration: each can be overridden
through an environment variable of the same name.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    return int(value) if value not in (None, "") else default


# Group and time-window rules
MAX_GROUP_SIZE = _int_env("MAX_GROUP_SIZE", 3)  # Inviter + up to 2 invitees
ENTRY_WINDOW_HOURS = _int_env("ENTRY_WINDOW_HOURS", 48)  # No entries/invites inside this
LATE_CANCEL_WINDOW_HOURS = _int_env("LATE_CANCEL_WINDOW_HOURS", 24)
REVIEW_OPEN_DELAY_HOURS = _int_env("REVIEW_OPEN_DELAY_HOURS", 2)
EVENT_DURATION_HOURS = _int_env("EVENT_DURATION_HOURS", 3)  # Assumed dinner length

# Calendar used for "day of the event" checks
EVENT_TIMEZONE = os.getenv("EVENT_TIMEZONE", "Asia/Tokyo")

# Invite codes
INVITE_TOKEN_LENGTH = 32
SHORT_CODE_LENGTH = 6
CODE_GENERATION_ATTEMPTS = 5  # Fresh draws tried before giving up on a collision

# Stage thresholds (ascending, minimum points for each stage)
STAGE_THRESHOLDS = {
    "bronze": _int_env("STAGE_THRESHOLD_BRONZE", 0),
    "silver": _int_env("STAGE_THRESHOLD_SILVER", 100),
    "gold": _int_env("STAGE_THRESHOLD_GOLD", 300),
    "platinum": _int_env("STAGE_THRESHOLD_PLATINUM", 600),
}
STAGE_ORDER = ["bronze", "silver", "gold", "platinum"]

# Ledger point values
POINTS_PARTICIPATION = _int_env("POINTS_PARTICIPATION", 20)
POINTS_REVIEW_SENT = _int_env("POINTS_REVIEW_SENT", 20)
POINTS_NO_SHOW = _int_env("POINTS_NO_SHOW", -100)
POINTS_CANCEL = _int_env("POINTS_CANCEL", -30)
POINTS_LATE_CANCEL = _int_env("POINTS_LATE_CANCEL", -50)

# Received-review reward by rating; must be monotone non-decreasing
REVIEW_RATING_POINTS = {
    1: _int_env("POINTS_REVIEW_RATING_1", 5),
    2: _int_env("POINTS_REVIEW_RATING_2", 10),
    3: _int_env("POINTS_REVIEW_RATING_3", 15),
    4: _int_env("POINTS_REVIEW_RATING_4", 20),
    5: _int_env("POINTS_REVIEW_RATING_5", 25),
}

# Ratings that also mark the relationship as blocked (no future rematching)
BLOCK_RATINGS = frozenset({1, 2, 3})

# Point outbox worker
OUTBOX_POLL_INTERVAL_SECONDS = _int_env("OUTBOX_POLL_INTERVAL_SECONDS", 60)
OUTBOX_MAX_ATTEMPTS = _int_env("OUTBOX_MAX_ATTEMPTS", 5)
OUTBOX_BATCH_SIZE = 50
