"""
Admin KYC endpoints: review queue, status overrides, AML, personal data,
audit trail and document housekeeping. All routes require the admin role.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.context import RequestContext
from kyc_service.db.session import get_db
from kyc_service.schemas.documents import DocumentStatistics, PurgeResponse
from kyc_service.schemas.verification import (
    AuditEventResponse,
    PaginatedResult,
    StatusUpdateRequest,
    VerificationRecordResponse,
)
from kyc_service.services.audit import audit_trail
from kyc_service.services.documents import document_custodian
from kyc_service.services.orchestrator import verification_orchestrator
from kyc_service.utils.deps import CurrentUser, get_request_context, require_admin

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/kyc", tags=["admin-kyc"])


@router.get("/pending", response_model=PaginatedResult[VerificationRecordResponse])
async def pending_verifications(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await verification_orchestrator.get_pending_verifications(db, page, page_size)


@router.get("/audit", response_model=list[AuditEventResponse])
async def audit_events(
    user_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await audit_trail.list_events(db, user_id=user_id, since=since, until=until, limit=limit)


@router.get("/documents/statistics", response_model=DocumentStatistics)
async def document_statistics(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await document_custodian.document_statistics(db)


@router.post("/documents/purge", response_model=PurgeResponse)
async def purge_documents(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    purged = await document_custodian.purge_expired(db)
    log.info(f"Admin {admin.user_id} purged {purged} expired document blobs")
    return PurgeResponse(purged=purged)


@router.post("/expire")
async def expire_verifications(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return {"expired": await verification_orchestrator.expire_verifications(db)}


@router.get("/{user_id}", response_model=VerificationRecordResponse)
async def get_record(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await verification_orchestrator.get_record(db, user_id)


@router.post("/{user_id}/status", response_model=VerificationRecordResponse)
async def update_status(
    user_id: str,
    body: StatusUpdateRequest,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return await verification_orchestrator.update_status(
        db, user_id, body.status, performed_by=admin.user_id, reason=body.reason, context=context
    )


@router.post("/{user_id}/aml-check", response_model=VerificationRecordResponse)
async def aml_check(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return await verification_orchestrator.perform_aml_check(db, user_id, context)


@router.get("/{user_id}/personal-data")
async def personal_data(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return await verification_orchestrator.get_personal_data(db, user_id, context)
