"""Shared fixtures: isolated SQLite stores and a controllable clock."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.sqlite")
os.environ.setdefault("SCHEDULER_JOBSTORE_URL", "")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from job_coordinator.models import Base

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class FakeClock:
    """Injectable ``now_factory`` that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, *, seconds: float = 0, milliseconds: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, milliseconds=milliseconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[SessionScopeFactory]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'coordinator.sqlite'}",
        connect_args={"timeout": 30},
    )
    sessionmaker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )

    @asynccontextmanager
    async def scoped_session() -> AsyncIterator[AsyncSession]:
        session = sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    try:
        yield scoped_session
    finally:
        await engine.dispose()
