"""
Capability interface shared by every verification vendor, plus the result
handling all vendors have in common.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.config import settings
from kyc_service.core.errors import DatabaseError, NotFound, ThirdPartyServiceUnavailable
from kyc_service.db.models import VerificationRecord
from kyc_service.schemas.verification import CallbackRequest, SessionHandle, VerificationRequest
from kyc_service.services.kyc_state import KycStatus, append_history, can_transition, make_history_entry, transition

log = logging.getLogger(__name__)

VENDOR_STATUS_MAP = {
    "clear": KycStatus.APPROVED,
    "approved": KycStatus.APPROVED,
    "completed": KycStatus.APPROVED,
    "consider": KycStatus.NEEDS_REVIEW,
    "onhold": KycStatus.NEEDS_REVIEW,
    "pending_review": KycStatus.NEEDS_REVIEW,
    "rejected": KycStatus.REJECTED,
}


@runtime_checkable
class ProviderAdapter(Protocol):
    name: str
    signature_header: str

    async def initiate_verification(
        self, db: AsyncSession, request: VerificationRequest, record: VerificationRecord
    ) -> SessionHandle: ...

    async def process_callback(
        self, db: AsyncSession, callback: CallbackRequest, *, validity: Optional[timedelta] = None
    ) -> VerificationRecord: ...

    async def perform_aml_check(self, db: AsyncSession, record: VerificationRecord) -> None: ...

    def validate_callback_signature(self, signature: Optional[str], payload: bytes) -> bool: ...


def map_vendor_status(vendor_status: Optional[str]) -> KycStatus:
    return VENDOR_STATUS_MAP.get((vendor_status or "").strip().lower(), KycStatus.PENDING)


def handle_expiry(now: datetime) -> datetime:
    return now + timedelta(seconds=settings.KYC_PROVIDER_SESSION_TTL_SECONDS)


def provider_unavailable(provider: str, exc: httpx.HTTPError) -> ThirdPartyServiceUnavailable:
    if isinstance(exc, httpx.HTTPStatusError):
        log.error(f"{provider} API error: {exc.response.status_code} - {exc.response.text[:500]}")
    else:
        log.error(f"{provider} API request failed: {exc!r}")
    return ThirdPartyServiceUnavailable(f"{provider} request failed: {exc}")


async def find_record_by_reference(db: AsyncSession, reference_id: str) -> VerificationRecord:
    try:
        result = await db.execute(
            select(VerificationRecord)
            .where(VerificationRecord.reference_id == reference_id)
            .order_by(desc(VerificationRecord.updated_at), desc(VerificationRecord.id))
            .limit(1)
        )
        record = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        log.error(f"Failed to look up KYC record by reference: {e}")
        raise DatabaseError("Failed to load verification record") from e

    if record is None:
        raise NotFound(f"No KYC verification found with reference ID: {reference_id}")
    return record


def apply_verification_result(
    record: VerificationRecord,
    *,
    provider: str,
    vendor_status: Optional[str],
    result: dict[str, Any],
    session_id: Optional[str],
    now: datetime,
    rejection_reason: Optional[str] = None,
    validity: Optional[timedelta] = None,
) -> dict[str, Any]:
    """
    Map the vendor outcome onto the record with exactly one history entry.
    Returns that entry. ``validity`` defaults to KYC_VERIFICATION_VALIDITY_DAYS.
    """
    new_status = map_vendor_status(vendor_status)
    entry = transition(
        record,
        new_status,
        "Verification Completed",
        performed_by="SYSTEM",
        details={"provider_status": vendor_status, "provider": provider},
        session_id=session_id,
        now=now,
    )

    record.verification_data = result
    if new_status == KycStatus.APPROVED:
        record.verified_at = now
        record.expires_at = now + (validity or timedelta(days=settings.KYC_VERIFICATION_VALIDITY_DAYS))
        record.rejection_reason = None
        # An open AML hit keeps the account under review.
        record.set_flags(requires_review=bool(record.flags.get("high_risk")))
    elif new_status == KycStatus.REJECTED:
        record.rejection_reason = rejection_reason

    if new_status == KycStatus.NEEDS_REVIEW:
        record.set_flags(requires_review=True)
    return entry


def apply_aml_result(
    record: VerificationRecord,
    *,
    provider: str,
    is_high_risk: bool,
    is_politically_exposed: bool,
    risk_score: str,
    now: datetime,
    indicators: Optional[list[str]] = None,
) -> None:
    """
    Store the screening outcome. A high-risk hit forces NEEDS_REVIEW; the
    history only grows when the status actually changes.
    """
    record.aml_status = "REVIEW_REQUIRED" if is_high_risk else "CLEARED"
    record.aml_risk_score = str(risk_score)
    record.aml_checked_at = now

    changes: dict[str, Any] = {
        "high_risk": is_high_risk,
        "politically_exposed": is_politically_exposed,
    }
    if is_high_risk:
        changes["requires_review"] = True
        changes["high_risk_indicators"] = sorted(
            set(record.flags.get("high_risk_indicators") or []) | set(indicators or ["watchlist match"])
        )
    record.set_flags(**changes)

    if not is_high_risk:
        return

    details = {
        "risk_score": str(risk_score),
        "politically_exposed": is_politically_exposed,
        "high_risk": True,
        "provider": provider,
    }
    if record.status == KycStatus.NEEDS_REVIEW.value:
        return
    if can_transition(record.status, KycStatus.NEEDS_REVIEW):
        transition(record, KycStatus.NEEDS_REVIEW, "AML Check Completed", details=details, now=now)
    else:
        log.warning(
            f"AML hit for user {record.user_id} while {record.status}; status left unchanged"
        )
        append_history(
            record,
            make_history_entry(
                "AML Check Completed",
                previous_status=record.status,
                new_status=record.status,
                details=details,
                now=now,
            ),
        )
