"""
Onfido Identity Verification adapter

- Creates an applicant and an SDK token for the hosted flow
- Maps check results delivered by webhook onto the KYC record
- Runs watchlist (AML) screening via a ``watchlist_standard`` check

Documentation: https://documentation.onfido.com/
"""
import hmac
import logging
from typing import Any, Callable, Dict, Optional
from datetime import datetime, timedelta

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.config import settings
from kyc_service.core.errors import ConfigurationError, ValidationError
from kyc_service.db.models import VerificationRecord
from kyc_service.db.models.base import utcnow
from kyc_service.schemas.verification import CallbackRequest, SessionHandle, VerificationRequest
from kyc_service.services.kyc_state import KycStatus
from kyc_service.services.providers.base import (
    apply_aml_result,
    apply_verification_result,
    find_record_by_reference,
    handle_expiry,
    provider_unavailable,
)
from kyc_service.utils.masking import mask_email

log = logging.getLogger(__name__)


class OnfidoAdapter:
    """
    Onfido API v3 client. Authenticates with ``Authorization: Token token=...``.
    """

    name = "onfido"
    signature_header = "X-Onfido-Webhook-Token"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        sdk_url: Optional[str] = None,
        webhook_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_url = api_url or settings.ONFIDO_API_URL
        self.api_key = api_key or settings.ONFIDO_API_KEY
        self.sdk_url = sdk_url or settings.ONFIDO_SDK_URL
        self.webhook_token = webhook_token or settings.ONFIDO_WEBHOOK_TOKEN
        self.timeout = settings.KYC_PROVIDER_TIMEOUT
        self.transport = transport
        self.clock = clock

    def _get_headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("ONFIDO_API_KEY is not configured")

        return {
            "Authorization": f"Token token={self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._get_headers()
        async with self._client() as client:
            try:
                response = await client.post(path, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                raise provider_unavailable("Onfido", e) from e

    async def initiate_verification(
        self,
        db: AsyncSession,
        request: VerificationRequest,
        record: VerificationRecord,
    ) -> SessionHandle:
        user_data = request.user_data or {}
        applicant = await self._post("applicants", {
            "first_name": user_data.get("firstName", ""),
            "last_name": user_data.get("lastName", ""),
            "email": user_data.get("email", ""),
            "address": user_data.get("address") or {},
        })
        applicant_id = applicant.get("id")
        if not applicant_id:
            raise provider_unavailable("Onfido", httpx.HTTPError("applicant response missing id"))

        sdk = await self._post("sdk_token", {
            "applicant_id": applicant_id,
            "referrer": settings.ONFIDO_ALLOWED_REFERRERS,
        })
        token = sdk.get("token")
        if not token:
            raise provider_unavailable("Onfido", httpx.HTTPError("sdk_token response missing token"))

        record.reference_id = applicant_id
        record.provider_name = self.name
        log.info(f"Onfido applicant created for user {record.user_id} ({mask_email(user_data.get('email'))})")

        return SessionHandle(
            session_id=token,
            verification_url=f"{self.sdk_url}?token={token}",
            expires_at=handle_expiry(self.clock()),
            status=KycStatus.IN_PROGRESS.value,
            provider=self.name,
        )

    async def process_callback(
        self, db: AsyncSession, callback: CallbackRequest, *, validity: Optional[timedelta] = None
    ) -> VerificationRecord:
        record = await find_record_by_reference(db, callback.reference_id)
        result = callback.verification_result or {}
        apply_verification_result(
            record,
            provider=self.name,
            vendor_status=callback.status,
            result=result,
            session_id=callback.session_id,
            now=self.clock(),
            rejection_reason=result.get("reason"),
            validity=validity,
        )
        log.info(f"Onfido callback applied for user {record.user_id}: {callback.status} -> {record.status}")
        return record

    async def perform_aml_check(self, db: AsyncSession, record: VerificationRecord) -> None:
        if not record.reference_id:
            raise ValidationError("Verification has not been started with a provider")

        check = await self._post("checks", {
            "applicant_id": record.reference_id,
            "report_names": ["watchlist_standard"],
        })

        watchlist = (check.get("results") or {}).get("watchlist_standard") or {}
        is_high_risk = watchlist.get("result") == "consider"
        is_pep = "pep" in (watchlist.get("tags") or [])
        risk_score = watchlist.get("risk_level") or "low"

        apply_aml_result(
            record,
            provider=self.name,
            is_high_risk=is_high_risk,
            is_politically_exposed=is_pep,
            risk_score=risk_score,
            now=self.clock(),
            indicators=[f"watchlist:{tag}" for tag in watchlist.get("tags") or []] or None,
        )
        log.info(f"Onfido AML check for user {record.user_id}: high_risk={is_high_risk} pep={is_pep}")

    def validate_callback_signature(self, signature: Optional[str], payload: bytes) -> bool:
        """Onfido webhooks carry the shared webhook token."""
        if not self.webhook_token:
            log.error("ONFIDO_WEBHOOK_TOKEN is not configured; rejecting webhook")
            return False
        if not signature:
            return False
        return hmac.compare_digest(signature.encode("utf-8"), self.webhook_token.encode("utf-8"))
