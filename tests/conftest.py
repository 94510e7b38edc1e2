"""
Pytest configuration and fixtures.

Each test gets a fresh in-memory SQLite database shared by every session
it opens, a controllable clock and a notification channel that records
what it was asked to deliver.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk.config import Priority
from helpdesk.infrastructure.database import Base
from helpdesk.notifications import NotificationDispatcher, NotificationService
from helpdesk.sla.application import SLAMonitorService
from helpdesk.sla.domain import SLAPolicy, SLAStateMachine
from helpdesk.sla.infrastructure import SQLAlchemyUnitOfWork

# Register every table on the metadata
import helpdesk.notifications.models  # noqa: F401
import helpdesk.sla.infrastructure.models  # noqa: F401

from tests.factories import FakeClock, RecordingChannel


TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_engine():
    """
    Create a test database engine.

    StaticPool keeps the single in-memory connection alive across
    sessions, so every unit of work sees the same data.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> SLAPolicy:
    return SLAPolicy(deadlines_minutes={Priority.HIGH: 1})


@pytest.fixture
def state_machine(policy) -> SLAStateMachine:
    return SLAStateMachine(policy)


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest_asyncio.fixture
async def dispatcher(recording_channel) -> AsyncGenerator[NotificationDispatcher, None]:
    dispatcher = NotificationDispatcher([recording_channel], timeout_seconds=1.0)
    yield dispatcher
    await dispatcher.close()


@pytest.fixture
def notification_service(dispatcher) -> NotificationService:
    return NotificationService(dispatcher)


@pytest.fixture
def monitor(session_maker, state_machine, notification_service, clock) -> SLAMonitorService:
    return SLAMonitorService(
        uow_factory=lambda: SQLAlchemyUnitOfWork(session_maker),
        state_machine=state_machine,
        notifier=notification_service,
        clock=clock,
    )
