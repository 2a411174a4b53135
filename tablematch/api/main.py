"""
Dinner Matching API Server

FastAPI server for event entry, invites, reviews and member stages.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from tablematch.api.routes import router, limiter as routes_limiter
from tablematch.database import db
from tablematch.models.schemas import HealthResponse
from tablematch.services.point_outbox import get_point_outbox

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Dinner Matching API...")

    # Fallback for tables not yet created by migrations
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # Start the ledger retry worker
    try:
        get_point_outbox().start_background_worker()
    except Exception as e:
        logger.error(f"Failed to start point outbox worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Dinner Matching API...")

    try:
        get_point_outbox().stop_background_worker()
    except Exception as e:
        logger.error(f"Error stopping point outbox worker: {e}", exc_info=True)


app = FastAPI(
    title="Dinner Matching API",
    description="Event participation, invite groups, peer reviews and member stages",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Health check."""
    return {"status": "ok", "message": "API is running"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
