"""
Tests for verification sessions
"""

import pytest
from sqlalchemy import select

from kyc_service.core.context import RequestContext
from kyc_service.core.errors import NotFound, ValidationError
from kyc_service.db.models import KycSession
from kyc_service.db.models.base import as_utc
from kyc_service.services.sessions import SessionManager, generate_session_token

from conftest import NOW


@pytest.fixture
def sessions(clock):
    return SessionManager(timeout_hours=24, clock=clock)


@pytest.fixture
def context():
    return RequestContext(ip_address="203.0.113.7", user_agent="pytest", correlation_id="corr-1")


def test_session_token_is_32_random_bytes():
    token = generate_session_token()
    assert len(token) == 43
    assert "=" not in token
    assert token != generate_session_token()


class TestSessionManager:
    """Tests for SessionManager"""

    @pytest.mark.asyncio
    async def test_creates_active_session(self, db, sessions, context):
        session = await sessions.get_or_create_session(db, "user-1", "STANDARD", context, "device-1")

        assert session.status == "ACTIVE"
        assert session.verification_level == "STANDARD"
        assert as_utc(session.expires_at) == NOW + sessions.timeout
        assert session.progress == {"current_step": 1, "total_steps": 3, "completed_steps": []}
        assert session.security_context["ip_address"] == "203.0.113.7"
        assert session.security_context["device_fingerprint"] == "device-1"

    @pytest.mark.asyncio
    async def test_reuses_and_extends_unexpired_session(self, db, sessions, context, clock):
        first = await sessions.get_or_create_session(db, "user-1", "BASIC", context)
        clock.advance(hours=2)
        second = await sessions.get_or_create_session(db, "user-1", "BASIC", context)

        assert second.session_id == first.session_id
        assert as_utc(second.expires_at) == clock() + sessions.timeout

    @pytest.mark.asyncio
    async def test_timed_out_session_is_replaced(self, db, sessions, context, clock):
        first = await sessions.get_or_create_session(db, "user-1", "BASIC", context)
        first_id = first.session_id
        clock.advance(hours=25)

        second = await sessions.get_or_create_session(db, "user-1", "BASIC", context)

        assert second.session_id != first_id
        rows = (await db.execute(select(KycSession).where(KycSession.user_id == "user-1"))).scalars().all()
        statuses = {row.session_id: row.status for row in rows}
        assert statuses == {first_id: "EXPIRED", second.session_id: "ACTIVE"}

    @pytest.mark.asyncio
    async def test_validate_session(self, db, sessions, context):
        created = await sessions.get_or_create_session(db, "user-1", "BASIC", context)
        validated = await sessions.validate_session(db, created.session_id, "user-1", context)
        assert validated.session_id == created.session_id

    @pytest.mark.asyncio
    async def test_validate_session_rejects_other_user(self, db, sessions, context):
        created = await sessions.get_or_create_session(db, "user-1", "BASIC", context)
        with pytest.raises(NotFound):
            await sessions.validate_session(db, created.session_id, "user-2")

    @pytest.mark.asyncio
    async def test_validate_session_rejects_expired(self, db, sessions, context, clock):
        created = await sessions.get_or_create_session(db, "user-1", "BASIC", context)
        clock.advance(hours=24)
        with pytest.raises(NotFound):
            await sessions.validate_session(db, created.session_id, "user-1")

    @pytest.mark.asyncio
    async def test_invalidate_session(self, db, sessions, context):
        created = await sessions.get_or_create_session(db, "user-1", "BASIC", context)
        await sessions.invalidate_session(db, created.session_id, "user-1", "User cancelled")

        assert created.status == "EXPIRED"
        assert created.invalidation_reason == "User cancelled"
        with pytest.raises(NotFound):
            await sessions.validate_session(db, created.session_id, "user-1")

    @pytest.mark.asyncio
    async def test_invalidate_unknown_session(self, db, sessions):
        with pytest.raises(NotFound):
            await sessions.invalidate_session(db, "missing", "user-1")

    @pytest.mark.asyncio
    async def test_progress_tracks_completed_steps(self, db, sessions, context):
        created = await sessions.get_or_create_session(db, "user-1", "STANDARD", context)

        session = await sessions.update_progress(db, created.session_id, "user-1", 2)
        assert session.progress == {"current_step": 2, "total_steps": 3, "completed_steps": [1]}
        assert session.completed_at is None

        session = await sessions.update_progress(db, created.session_id, "user-1", 3)
        assert session.progress["completed_steps"] == [1, 2]
        assert as_utc(session.completed_at) == NOW

    @pytest.mark.asyncio
    async def test_progress_step_out_of_range(self, db, sessions, context):
        created = await sessions.get_or_create_session(db, "user-1", "BASIC", context)
        with pytest.raises(ValidationError):
            await sessions.update_progress(db, created.session_id, "user-1", 5)
