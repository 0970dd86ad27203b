"""Service test fixtures: file-backed SQLite DB, dispatcher with recording sink, FastAPI client.

Invariants:
    - Every test gets a fresh SQLite database file under tmp_path
    - Separate sessions are separate connections, so concurrent transactions really race
    - get_db dependency overridden to use the test DB; db_manager patched for readiness
    - The dispatcher retries without delay and records every delivered notification

Design Decisions:
    - File-backed over :memory:: an in-memory database is private to one connection
    - Fake db_manager built with __new__: no engine kwargs, reuses the test engine
"""

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from httpx import ASGITransport, AsyncClient

from groupsync.config import Settings
from groupsync.core.domain_types import CourseRole
from groupsync.core.errors import NotificationDeliveryError
from groupsync.db.base import Base
from groupsync.infrastructure.database import get_db, DatabaseSessionManager
import groupsync.infrastructure.database as db_module
import groupsync.models  # noqa: F401
from groupsync.main import app
from groupsync.services.dispatcher import build_dispatcher
from groupsync.services.membership import MembershipService
from groupsync.services.participants import ParticipantService

COURSE = "course-2026"
OTHER_COURSE = "course-other"


class RecordingSink:
    """NotificationSink fake: records messages, fails the first `fail_times` publishes."""

    def __init__(self):
        self.messages = []
        self.attempts = 0
        self.fail_times = 0

    async def publish(self, message):
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise NotificationDeliveryError("subscriber unavailable", "test-sink")
        self.messages.append(message)

    def events(self):
        return [m.event.value for m in self.messages]


@pytest.fixture
def settings():
    return Settings(
        group_max_size=2,
        group_name_schema="Group",
        dispatcher_max_retries=2,
        dispatcher_base_delay_ms=0,
        dispatcher_max_delay_ms=0,
    )


@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'groupsync.db'}", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def fake_manager(test_engine, test_session_factory):
    manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    manager.engine = test_engine
    manager._session_factory = test_session_factory
    return manager


@pytest.fixture
def session_scope(fake_manager):
    return fake_manager.session


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
async def dispatcher(settings, session_scope, sink):
    d = build_dispatcher(settings, session_scope, sink)
    yield d
    await d.stop(timeout=5)


@pytest.fixture
def published():
    """Events a service emitted after commit."""
    return []


@pytest.fixture
def membership(test_db, published, settings):
    return MembershipService(test_db, publish=published.append, settings=settings)


@pytest.fixture
async def students(test_db):
    """Ids of four students of COURSE."""
    service = ParticipantService(test_db)
    return [
        (await service.add_participant(COURSE, f"student-{i}", CourseRole.STUDENT)).id
        for i in range(1, 5)
    ]


@pytest.fixture
async def tutor(test_db):
    participant = await ParticipantService(test_db).add_participant(
        COURSE, "tutor-1", CourseRole.TUTOR,
    )
    return participant.id


@pytest.fixture
async def outsider(test_db):
    participant = await ParticipantService(test_db).add_participant(OTHER_COURSE, "student-x")
    return participant.id


@pytest.fixture
async def client(test_engine, test_session_factory, fake_manager, dispatcher):
    """FastAPI test client with DB dependency overridden and the test dispatcher on app.state."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    original_manager = db_module.db_manager
    db_module.db_manager = fake_manager
    original_dispatcher = getattr(app.state, "dispatcher", None)
    app.state.dispatcher = dispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager
    app.state.dispatcher = original_dispatcher
