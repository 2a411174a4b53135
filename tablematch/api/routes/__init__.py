"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from tablematch.services.errors import EngineError, StoreFailure

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
limiter = Limiter(key_func=get_remote_address, enabled=not IS_TEST_ENV)

# ---------------------------------------------------------------------------
# Shared error mapping
# ---------------------------------------------------------------------------


def http_error(error: EngineError) -> HTTPException:
    """Translate a service refusal into an HTTP error with a structured detail."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


def store_failure(message: str) -> HTTPException:
    return http_error(StoreFailure(message))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from tablematch.api.routes.events import router as events_router  # noqa: E402
from tablematch.api.routes.invites import router as invites_router  # noqa: E402
from tablematch.api.routes.reviews import router as reviews_router  # noqa: E402
from tablematch.api.routes.members import router as members_router  # noqa: E402
from tablematch.api.routes.admin import router as admin_router  # noqa: E402

router = APIRouter()
router.include_router(events_router)
router.include_router(invites_router)
router.include_router(reviews_router)
router.include_router(members_router)
router.include_router(admin_router)
