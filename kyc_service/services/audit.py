"""Append-only KYC audit trail."""
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.context import RequestContext
from kyc_service.core.errors import DatabaseError
from kyc_service.db.models import AuditEvent

log = logging.getLogger(__name__)


class AuditTrail:
    """
    Write-only from every other component. ``record`` adds the event to the
    caller's unit of work and flushes; the caller owns the commit.
    """

    async def record(
        self,
        db: AsyncSession,
        user_id: str,
        action: str,
        details: Optional[dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
    ) -> AuditEvent:
        context = context or RequestContext.system()
        event = AuditEvent(
            user_id=str(user_id),
            action=action,
            details=details or {},
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            correlation_id=context.correlation_id,
        )
        try:
            db.add(event)
            await db.flush()
        except SQLAlchemyError as e:
            log.error(f"Failed to write audit event {action} for user {user_id}: {e}")
            raise DatabaseError(f"Failed to write audit event {action}") from e

        log.info(f"[AUDIT] user={user_id} action={action} correlation_id={context.correlation_id}")
        return event

    async def list_events(
        self,
        db: AsyncSession,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = select(AuditEvent)
        if user_id is not None:
            stmt = stmt.where(AuditEvent.user_id == str(user_id))
        if since is not None:
            stmt = stmt.where(AuditEvent.timestamp >= since)
        if until is not None:
            stmt = stmt.where(AuditEvent.timestamp <= until)
        stmt = stmt.order_by(desc(AuditEvent.timestamp), desc(AuditEvent.id)).limit(max(1, min(limit, 1000)))

        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as e:
            log.error(f"Failed to list audit events: {e}")
            raise DatabaseError("Failed to list audit events") from e
        return list(result.scalars().all())


audit_trail = AuditTrail()
