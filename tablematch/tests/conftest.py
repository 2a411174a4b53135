"""
Shared pytest configuration for tablematch tests.

Service tests run against an in-memory SQLite database created from the ORM
metadata for each test. Route tests use TestClient with the services mocked.
"""

import os

# Must be set before the routes package is imported (disables rate limiting)
os.environ.setdefault("ENV", "test")

import itertools  # noqa: E402
import uuid  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from tablematch.database import db  # noqa: E402
from tablematch.database.db import Base  # noqa: E402
from tablematch.database.models import User, Event, Participation, Match  # noqa: E402
from tablematch.services import user_service  # noqa: E402
from tablematch.services.participation_service import (  # noqa: E402
    generate_invite_token,
    generate_short_code,
)
from tablematch.utils.datetime_utils import utcnow  # noqa: E402


@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions (the outbox worker) uses the test engine
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    """Factory: create a member and return the user dictionary."""
    counter = itertools.count(1)

    async def _make(
        display_name=None,
        subscription_status="active",
        subscription_period_end=None,
        messaging_user_id=None,
        is_admin=False,
    ):
        n = next(counter)
        user = User(
            display_name=display_name or f"Member {n}",
            email=f"member{n}@example.com",
            subscription_status=subscription_status,
            subscription_period_end=subscription_period_end,
            messaging_user_id=messaging_user_id,
            is_admin=is_admin,
        )
        db_session.add(user)
        await db_session.flush()
        user_id = user.id
        await db_session.commit()
        return await user_service.get_user_by_id(db_session, user_id)

    return _make


@pytest.fixture
def make_event(db_session):
    """Factory: create an event ``hours_from_now`` hours out and return its id."""

    async def _make(hours_from_now=72, status="open", area="shibuya"):
        event = Event(
            event_date=utcnow() + timedelta(hours=hours_from_now),
            area=area,
            status=status,
        )
        db_session.add(event)
        await db_session.flush()
        event_id = event.id
        await db_session.commit()
        return event_id

    return _make


@pytest.fixture
def make_participation(db_session):
    """Factory: insert a participation row directly and return its id."""

    async def _make(user_id, event_id, status="pending", group_id=None, entry_type="solo",
                    attendance_status="attending"):
        participation = Participation(
            user_id=user_id,
            event_id=event_id,
            group_id=group_id or str(uuid.uuid4()),
            entry_type=entry_type,
            invite_token=generate_invite_token(),
            short_code=generate_short_code(),
            status=status,
            attendance_status=attendance_status,
        )
        db_session.add(participation)
        await db_session.flush()
        participation_id = participation.id
        await db_session.commit()
        return participation_id

    return _make


@pytest.fixture
def make_match(db_session):
    """Factory: seat ``members`` at one table for an event and return the match id."""

    async def _make(event_id, members, restaurant_name="Trattoria Uno"):
        match = Match(
            event_id=event_id,
            restaurant_name=restaurant_name,
            table_members=list(members),
        )
        db_session.add(match)
        await db_session.flush()
        match_id = match.id
        await db_session.commit()
        return match_id

    return _make
