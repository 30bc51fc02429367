"""
Time-boxed verification sessions.

A session token is 32 random bytes (urlsafe base64). A user has at most one
ACTIVE session; this is enforced read-then-write and is therefore best effort
under concurrent initiation.
"""
import base64
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.config import settings
from kyc_service.core.context import RequestContext
from kyc_service.core.errors import DatabaseError, NotFound, ValidationError
from kyc_service.db.models import KycSession
from kyc_service.db.models.base import as_utc, utcnow
from kyc_service.services.kyc_state import KycLevel
from kyc_service.utils.masking import mask_token

log = logging.getLogger(__name__)

SESSION_ACTIVE = "ACTIVE"
SESSION_EXPIRED = "EXPIRED"

# Steps the client flow walks through per level
STEPS_PER_LEVEL = {
    KycLevel.BASIC.value: 2,
    KycLevel.STANDARD.value: 3,
    KycLevel.ADVANCED.value: 4,
    KycLevel.ENHANCED.value: 5,
}


def generate_session_token() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii").rstrip("=")


class SessionManager:
    def __init__(
        self,
        timeout_hours: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.timeout = timedelta(hours=timeout_hours or settings.KYC_SESSION_TIMEOUT_HOURS)
        self.clock = clock

    async def get_active_session(self, db: AsyncSession, user_id: str) -> Optional[KycSession]:
        """Best effort: a lookup failure is logged and reported as no session."""
        try:
            result = await db.execute(
                select(KycSession)
                .where(KycSession.user_id == str(user_id), KycSession.status == SESSION_ACTIVE)
                .order_by(desc(KycSession.created_at), desc(KycSession.id))
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            log.warning(f"Active session lookup failed for user {user_id}: {e}")
            return None

    async def get_or_create_session(
        self,
        db: AsyncSession,
        user_id: str,
        level: str,
        context: Optional[RequestContext] = None,
        device_fingerprint: Optional[str] = None,
    ) -> KycSession:
        context = context or RequestContext.system()
        now = self.clock()

        try:
            session = await self.get_active_session(db, user_id)
            if session is not None and as_utc(session.expires_at) > now:
                session.expires_at = now + self.timeout
                session.security_context = {
                    **(session.security_context or {}),
                    "last_accessed_at": now.isoformat(),
                    "ip_address": context.ip_address,
                    "user_agent": context.user_agent,
                }
                await db.commit()
                log.info(f"Extended KYC session {mask_token(session.session_id)} for user {user_id}")
                return session

            if session is not None:
                session.status = SESSION_EXPIRED
                session.invalidation_reason = "Session timed out"
                log.info(f"KYC session {mask_token(session.session_id)} for user {user_id} timed out")

            total_steps = STEPS_PER_LEVEL.get(level, STEPS_PER_LEVEL[KycLevel.BASIC.value])
            session = KycSession(
                session_id=generate_session_token(),
                user_id=str(user_id),
                status=SESSION_ACTIVE,
                verification_level=level,
                expires_at=now + self.timeout,
                security_context={
                    "ip_address": context.ip_address,
                    "user_agent": context.user_agent,
                    "device_fingerprint": device_fingerprint,
                    "created_at": now.isoformat(),
                    "last_accessed_at": now.isoformat(),
                },
                progress={"current_step": 1, "total_steps": total_steps, "completed_steps": []},
                created_at=now,
                updated_at=now,
            )
            db.add(session)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            log.error(f"Failed to create KYC session for user {user_id}: {e}")
            raise DatabaseError("Failed to create verification session") from e

        log.info(f"Created KYC session {mask_token(session.session_id)} for user {user_id} (level={level})")
        return session

    async def validate_session(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        context: Optional[RequestContext] = None,
    ) -> KycSession:
        """Owner, ACTIVE and unexpired, otherwise NotFound. Refreshes last access."""
        now = self.clock()
        try:
            result = await db.execute(
                select(KycSession).where(
                    KycSession.session_id == session_id,
                    KycSession.user_id == str(user_id),
                    KycSession.status == SESSION_ACTIVE,
                )
            )
            session = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            log.error(f"Failed to validate KYC session for user {user_id}: {e}")
            raise DatabaseError("Failed to validate verification session") from e

        if session is None or as_utc(session.expires_at) <= now:
            log.info(f"KYC session {mask_token(session_id)} invalid or expired for user {user_id}")
            raise NotFound("Invalid or expired session")

        if context is not None:
            session.security_context = {
                **(session.security_context or {}),
                "last_accessed_at": now.isoformat(),
                "ip_address": context.ip_address,
                "user_agent": context.user_agent,
            }
            try:
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise DatabaseError("Failed to update verification session") from e
        return session

    async def invalidate_session(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        reason: str = "Manual invalidation",
    ) -> None:
        try:
            result = await db.execute(
                select(KycSession).where(
                    KycSession.session_id == session_id,
                    KycSession.user_id == str(user_id),
                )
            )
            session = result.scalar_one_or_none()
            if session is None:
                raise NotFound("Session not found")

            session.status = SESSION_EXPIRED
            session.invalidation_reason = reason
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            log.error(f"Failed to invalidate KYC session for user {user_id}: {e}")
            raise DatabaseError("Failed to invalidate verification session") from e

        log.info(f"Invalidated KYC session {mask_token(session_id)} for user {user_id}: {reason}")

    async def update_progress(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        current_step: int,
        total_steps: Optional[int] = None,
    ) -> KycSession:
        session = await self.validate_session(db, session_id, user_id)

        progress = dict(session.progress or {})
        total = total_steps or progress.get("total_steps") or 1
        if current_step < 1 or current_step > total:
            raise ValidationError(f"current_step must be between 1 and {total}")

        completed = sorted(set(progress.get("completed_steps") or []) | set(range(1, current_step)))
        session.progress = {
            "current_step": current_step,
            "total_steps": total,
            "completed_steps": completed,
        }
        if current_step == total:
            session.completed_at = self.clock()

        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise DatabaseError("Failed to update session progress") from e
        return session
