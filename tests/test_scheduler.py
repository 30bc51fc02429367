"""
Tests for the background KYC sweeps
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from kyc_service import scheduler
from kyc_service.db.models import Base


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sweeps.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_sweeps_run_against_empty_database(monkeypatch, session_factory):
    monkeypatch.setattr(scheduler, "SessionLocal", session_factory)

    result = await scheduler.run_sweeps_once()

    assert result == {"expired": 0, "purged": 0}


@pytest.mark.asyncio
async def test_failing_sweep_does_not_stop_the_other(monkeypatch, session_factory):
    async def broken(db):
        raise RuntimeError("boom")

    monkeypatch.setattr(scheduler, "SessionLocal", session_factory)
    monkeypatch.setattr(scheduler.verification_orchestrator, "expire_verifications", broken)

    result = await scheduler.run_sweeps_once()

    assert result["expired_error"] == "boom"
    assert result["purged"] == 0


@pytest.mark.asyncio
async def test_disabled_scheduler_does_not_start(monkeypatch):
    monkeypatch.setattr(scheduler.settings, "KYC_SWEEPS_ENABLED", False)
    scheduler.start_scheduler()
    assert scheduler._scheduler_task is None
