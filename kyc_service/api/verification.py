"""
KYC verification endpoints

- Current verification status and eligibility
- Starting a verification with the routed provider
- Session validation, progress and invalidation
- Personal data submission (stored encrypted)
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.context import RequestContext
from kyc_service.db.session import get_db
from kyc_service.schemas.verification import (
    EligibilityResponse,
    KycSessionResponse,
    KycStatusResponse,
    PersonalInfoRequest,
    ProgressUpdateRequest,
    SessionHandle,
    SessionInvalidateRequest,
    VerificationRequest,
)
from kyc_service.services.kyc_state import KycLevel
from kyc_service.services.orchestrator import verification_orchestrator
from kyc_service.utils.deps import CurrentUser, get_current_user, get_request_context

log = logging.getLogger(__name__)

router = APIRouter(prefix="/kyc", tags=["kyc"])


@router.get("/status", response_model=KycStatusResponse)
async def get_kyc_status(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Limited view of the caller's verification record; created on first access."""
    record = await verification_orchestrator.get_status(db, user.user_id)
    return KycStatusResponse(
        status=record.status,
        verification_level=record.verification_level,
        verified_at=record.verified_at,
        expires_at=record.expires_at,
        requires_review=bool(record.flags.get("requires_review")),
        rejection_reason=record.rejection_reason,
    )


@router.post("/initiate", response_model=SessionHandle)
async def initiate_verification(
    request_data: VerificationRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    """
    Start verification at the requested level and return the provider URL the
    user continues at.
    """
    request_data = request_data.model_copy(update={"user_id": user.user_id})
    return await verification_orchestrator.initiate_verification(db, request_data, context)


@router.get("/session/{session_id}", response_model=KycSessionResponse)
async def validate_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return await verification_orchestrator.sessions.validate_session(db, session_id, user.user_id, context)


@router.post("/session/{session_id}/progress", response_model=KycSessionResponse)
async def update_session_progress(
    session_id: str,
    body: ProgressUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await verification_orchestrator.sessions.update_progress(
        db, session_id, user.user_id, body.current_step, body.total_steps
    )


@router.post("/session/{session_id}/invalidate")
async def invalidate_session(
    session_id: str,
    body: SessionInvalidateRequest = SessionInvalidateRequest(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await verification_orchestrator.sessions.invalidate_session(db, session_id, user.user_id, body.reason)
    return {"ok": True}


@router.post("/personal-data")
async def submit_personal_data(
    body: PersonalInfoRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    await verification_orchestrator.submit_personal_data(
        db, user.user_id, body.model_dump(by_alias=True, exclude_none=True), context
    )
    return {"ok": True}


@router.get("/eligibility", response_model=EligibilityResponse)
async def trading_eligibility(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    eligible = await verification_orchestrator.is_eligible_for_trading(db, user.user_id)
    return EligibilityResponse(user_id=user.user_id, eligible=eligible)


@router.get("/verified")
async def is_verified(
    level: str = Query(default=KycLevel.STANDARD.value),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"verified": await verification_orchestrator.is_verified(db, user.user_id, level), "level": level}
