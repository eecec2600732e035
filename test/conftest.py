"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite database file (aiosqlite) with the schema
created from the ORM metadata.
"""

from __future__ import annotations

import os

# Must be set before callhelm.main builds the app at import time.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./callhelm-test.db")
os.environ.setdefault("TELEPHONY_PROVIDER_TYPE", "mock")
os.environ.setdefault("TELEPHONY_VERIFY_SIGNATURES", "false")

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from callhelm.calls.enums import CallStatus
from callhelm.calls.models import CallRecord, PhoneNumber
from callhelm.calls.repository import CallRecordRepository
from callhelm.main import create_app
from callhelm.shared.database import Base, get_db_session
from callhelm.shared.timeutils import utcnow

ORG_ID = "org-1"
ORG_NUMBER = "+1 (613) 800-0000"
AGENT_NUMBER = "+16135550101"
CONTACT_NUMBER = "+16135550199"

MakeCall = Callable[..., Awaitable[CallRecord]]


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'calls.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository(db_session: AsyncSession) -> CallRecordRepository:
    return CallRecordRepository(db_session)


@pytest_asyncio.fixture
async def org_number(db_session: AsyncSession) -> PhoneNumber:
    number = PhoneNumber(organization_id=ORG_ID, number=ORG_NUMBER)
    db_session.add(number)
    await db_session.commit()
    return number


@pytest.fixture
def make_call(db_session: AsyncSession, repository: CallRecordRepository) -> MakeCall:
    """Factory creating committed call records.

    ``age`` backdates creation; ``status`` and any column in ``fields`` are
    applied after creation.
    """

    async def _make_call(
        external_id: str | None = "CA_primary",
        status: CallStatus = CallStatus.INITIATED,
        organization_id: str = ORG_ID,
        caller_number: str | None = ORG_NUMBER,
        called_number: str | None = CONTACT_NUMBER,
        age: timedelta = timedelta(seconds=5),
        metadata: dict[str, Any] | None = None,
        **fields: Any,
    ) -> CallRecord:
        created_at: datetime = utcnow() - age
        record = await repository.create(
            organization_id=organization_id,
            caller_number=caller_number,
            called_number=called_number,
            external_id=external_id,
            status=status,
            metadata=metadata if metadata is not None else {"initial_status": status.value},
            created_at=created_at,
        )
        for key, value in fields.items():
            setattr(record, key, value)
        await db_session.commit()
        return record

    return _make_call


@pytest.fixture
def fetch_call(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[str], Awaitable[CallRecord]]:
    """Read a call through a fresh session, bypassing any cached state."""

    async def _fetch(call_id: str) -> CallRecord:
        async with session_factory() as session:
            record = await CallRecordRepository(session).get_by_id(call_id)
        assert record is not None
        return record

    return _fetch


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """Application wired to the per-test database; lifespan (sweeper) not started."""
    application = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db_session] = _session
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
