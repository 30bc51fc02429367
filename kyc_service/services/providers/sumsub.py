"""
SumSub Identity Verification adapter

Every API request is signed: ``X-App-Access-Sig`` is the hex HMAC-SHA256 of
``ts + METHOD + path(+query) + body`` keyed with the app secret.

Documentation: https://docs.sumsub.com/reference/authentication
"""
import base64
import hashlib
import hmac
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.config import settings
from kyc_service.core.errors import ConfigurationError, ValidationError
from kyc_service.db.models import VerificationRecord
from kyc_service.db.models.base import utcnow
from kyc_service.schemas.verification import CallbackRequest, SessionHandle, VerificationRequest
from kyc_service.services.kyc_state import KycLevel, KycStatus, parse_level
from kyc_service.services.providers.base import (
    apply_aml_result,
    apply_verification_result,
    find_record_by_reference,
    handle_expiry,
    map_vendor_status,
    provider_unavailable,
)

log = logging.getLogger(__name__)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


class SumSubAdapter:
    name = "sumsub"
    signature_header = "X-Payload-Digest"

    def __init__(
        self,
        api_url: Optional[str] = None,
        app_token: Optional[str] = None,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_url = (api_url or settings.SUMSUB_API_URL).rstrip("/")
        self.app_token = app_token or settings.SUMSUB_APP_TOKEN
        self.secret_key = secret_key or settings.SUMSUB_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.SUMSUB_WEBHOOK_SECRET
        self.timeout = settings.KYC_PROVIDER_TIMEOUT
        self.transport = transport
        self.clock = clock

    def level_name(self, level: Any) -> str:
        return {
            KycLevel.BASIC: settings.SUMSUB_LEVEL_BASIC,
            KycLevel.STANDARD: settings.SUMSUB_LEVEL_STANDARD,
            KycLevel.ADVANCED: settings.SUMSUB_LEVEL_ADVANCED,
            KycLevel.ENHANCED: settings.SUMSUB_LEVEL_ENHANCED,
        }.get(parse_level(level), settings.SUMSUB_LEVEL_BASIC)

    def sign(self, ts: str, method: str, path: str, body: bytes = b"") -> str:
        if not self.secret_key:
            raise ConfigurationError("SUMSUB_SECRET_KEY is not configured")
        message = ts.encode("utf-8") + method.upper().encode("utf-8") + path.encode("utf-8") + body
        return hmac.new(self.secret_key.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def _get_headers(self, method: str, path: str, body: bytes = b"") -> Dict[str, str]:
        if not self.app_token:
            raise ConfigurationError("SUMSUB_APP_TOKEN is not configured")

        ts = str(int(self.clock().timestamp()))
        return {
            "X-App-Token": self.app_token,
            "X-App-Access-Ts": ts,
            "X-App-Access-Sig": self.sign(ts, method, path, body),
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str) -> Dict[str, Any]:
        headers = self._get_headers(method, path)
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, path, headers=headers)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                raise provider_unavailable("SumSub", e) from e

    async def initiate_verification(
        self,
        db: AsyncSession,
        request: VerificationRequest,
        record: VerificationRecord,
    ) -> SessionHandle:
        external_user_id = str(record.user_id)
        level_name = self.level_name(request.verification_level)
        ttl = settings.KYC_PROVIDER_SESSION_TTL_SECONDS
        path = (
            f"/resources/accessTokens?userId={quote(external_user_id, safe='')}"
            f"&levelName={quote(level_name, safe='')}&ttlInSecs={ttl}"
        )

        data = await self._request("POST", path)
        token = data.get("token")
        if not token:
            raise provider_unavailable("SumSub", httpx.HTTPError("access token response missing token"))

        record.reference_id = external_user_id
        record.provider_name = self.name
        log.info(f"SumSub access token issued for user {record.user_id} (level={level_name})")

        return SessionHandle(
            session_id=token,
            verification_url=f"{settings.SUMSUB_WEB_SDK_URL}#{token}",
            expires_at=handle_expiry(self.clock()),
            status=KycStatus.IN_PROGRESS.value,
            provider=self.name,
        )

    async def process_callback(
        self, db: AsyncSession, callback: CallbackRequest, *, validity: Optional[timedelta] = None
    ) -> VerificationRecord:
        record = await find_record_by_reference(db, callback.reference_id)
        result = callback.verification_result or {}
        review_status = result.get("reviewStatus") or callback.status

        flags = {}
        if "isHighRisk" in result:
            flags["high_risk"] = _as_bool(result["isHighRisk"])
        if "isPoliticallyExposed" in result:
            flags["politically_exposed"] = _as_bool(result["isPoliticallyExposed"])
        if flags:
            record.set_flags(**flags)

        apply_verification_result(
            record,
            provider=self.name,
            vendor_status=review_status,
            result=result,
            session_id=callback.session_id,
            now=self.clock(),
            rejection_reason=result.get("reviewRejectType"),
            validity=validity,
        )

        if map_vendor_status(review_status) in (KycStatus.APPROVED, KycStatus.NEEDS_REVIEW):
            await self._apply_risk_info(record)

        log.info(f"SumSub callback applied for user {record.user_id}: {review_status} -> {record.status}")
        return record

    async def _apply_risk_info(self, record: VerificationRecord) -> None:
        """Best effort: risk info only enriches the record."""
        try:
            risk = await self._request("GET", f"/resources/applicants/{record.reference_id}/riskinfo")
        except Exception as e:
            log.warning(f"SumSub riskinfo unavailable for user {record.user_id}: {e}")
            return

        if "restrictedRegion" in risk:
            record.set_flags(restricted_region=_as_bool(risk["restrictedRegion"]))
        if risk.get("riskScore") is not None:
            record.verification_data = {**(record.verification_data or {}), "risk_info": risk}

    async def perform_aml_check(self, db: AsyncSession, record: VerificationRecord) -> None:
        if not record.reference_id:
            raise ValidationError("Verification has not been started with a provider")

        aml = await self._request("GET", f"/resources/applicants/{record.reference_id}/amlInfo")
        is_pep = _as_bool(aml.get("isInPepList", False))
        is_high_risk = _as_bool(aml.get("isInSanctionsList", False))
        risk_score = str(aml.get("riskScore") or "low")

        indicators = []
        if is_high_risk:
            indicators.append("sanctions list match")
        if is_pep:
            indicators.append("politically exposed person")

        apply_aml_result(
            record,
            provider=self.name,
            is_high_risk=is_high_risk,
            is_politically_exposed=is_pep,
            risk_score=risk_score,
            now=self.clock(),
            indicators=indicators or None,
        )
        log.info(f"SumSub AML check for user {record.user_id}: high_risk={is_high_risk} pep={is_pep}")

    def validate_callback_signature(self, signature: Optional[str], payload: bytes) -> bool:
        if not self.webhook_secret:
            raise ConfigurationError("SUMSUB_WEBHOOK_SECRET is not configured")
        if not signature:
            return False

        expected = base64.b64encode(
            hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).digest()
        ).decode("ascii")
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))
