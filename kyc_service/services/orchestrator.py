"""
Verification orchestration.

Drives a user's KYC record through the state machine in ``kyc_state``:
session handling, provider routing, vendor callbacks, AML screening, admin
overrides and the expiry sweep. Every mutation lands in one commit together
with its audit event; notifications go out after the commit and never roll
anything back.
"""
import hashlib
import json
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import select, desc, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from kyc_service.core.config import settings
from kyc_service.core.context import RequestContext
from kyc_service.core.errors import DatabaseError, KycError, NotFound, SecurityError, ValidationError
from kyc_service.db.models import ProcessedCallback, VerificationRecord
from kyc_service.db.models.base import as_utc, utcnow
from kyc_service.schemas.verification import (
    CallbackRequest,
    PaginatedResult,
    SessionHandle,
    VerificationRecordResponse,
    VerificationRequest,
)
from kyc_service.services.audit import AuditTrail, audit_trail
from kyc_service.services.encryption import PURPOSE_PERSONAL_DATA, EnvelopeProtector, get_protector
from kyc_service.services.kyc_state import (
    KycLevel,
    KycStatus,
    level_value,
    parse_requested_level,
    parse_status,
    transition,
)
from kyc_service.services.notifications import (
    INITIATION_FAILED_MESSAGE,
    NotificationSink,
    get_notification_sink,
    status_message,
)
from kyc_service.services.providers.base import ProviderAdapter, find_record_by_reference
from kyc_service.services.providers.router import ProviderRouter, build_router
from kyc_service.services.sessions import SessionManager

log = logging.getLogger(__name__)

# Statuses that trigger AML screening after a vendor result
AML_TRIGGER_STATUSES = (KycStatus.APPROVED.value, KycStatus.NEEDS_REVIEW.value)

NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-']+$")
DOCUMENT_NUMBER_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")


def callback_idempotency_key(callback: CallbackRequest, raw_payload: bytes) -> str:
    if callback.event_id:
        return callback.event_id
    return hashlib.sha256(raw_payload).hexdigest()


class VerificationOrchestrator:
    def __init__(
        self,
        router: ProviderRouter,
        sessions: Optional[SessionManager] = None,
        audit: Optional[AuditTrail] = None,
        notifier: Optional[NotificationSink] = None,
        protector: Optional[EnvelopeProtector] = None,
        clock: Callable[[], datetime] = utcnow,
        validity_days: Optional[int] = None,
    ):
        self.router = router
        self.clock = clock
        self.sessions = sessions or SessionManager(clock=clock)
        self.audit = audit or audit_trail
        self.notifier = notifier or get_notification_sink()
        self._protector = protector
        self.validity = timedelta(days=validity_days or settings.KYC_VERIFICATION_VALIDITY_DAYS)

    @property
    def protector(self) -> EnvelopeProtector:
        if self._protector is None:
            self._protector = get_protector(PURPOSE_PERSONAL_DATA)
        return self._protector

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_record(self, db: AsyncSession, user_id: str) -> Optional[VerificationRecord]:
        # One logical record per user; if duplicates exist the latest update wins.
        try:
            result = await db.execute(
                select(VerificationRecord)
                .where(VerificationRecord.user_id == str(user_id))
                .order_by(desc(VerificationRecord.updated_at), desc(VerificationRecord.id))
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            log.error(f"Failed to load KYC record for user {user_id}: {e}")
            raise DatabaseError("Failed to load verification record") from e

    async def _require_record(self, db: AsyncSession, user_id: str) -> VerificationRecord:
        record = await self._load_record(db, user_id)
        if record is None:
            raise NotFound("KYC record not found")
        return record

    async def _commit(self, db: AsyncSession, action: str) -> None:
        try:
            await db.commit()
        except StaleDataError as e:
            await db.rollback()
            log.warning(f"Concurrent update detected while {action}")
            raise DatabaseError(
                f"Concurrent update while {action}",
                public_message="The verification record changed while saving. Please retry.",
            ) from e
        except SQLAlchemyError as e:
            await db.rollback()
            log.error(f"Database error while {action}: {e}")
            raise DatabaseError(f"Database error while {action}") from e

    async def _audit_failure(
        self,
        db: AsyncSession,
        user_id: str,
        action: str,
        error: KycError,
        context: Optional[RequestContext],
    ) -> None:
        try:
            await self.audit.record(db, user_id, action, {"code": error.code, "error": error.public_message}, context)
            await db.commit()
        except (DatabaseError, SQLAlchemyError) as e:
            await db.rollback()
            log.error(f"Failed to record {action} audit event for user {user_id}: {e}")

    async def _notify(self, user_id: str, status: str, previous_status: Optional[str] = None) -> None:
        await self._send(user_id, status_message(status, previous_status))

    async def _send(self, user_id: str, message: str) -> None:
        try:
            await self.notifier.send(user_id, message)
        except Exception as e:
            log.warning(f"KYC notification for user {user_id} failed: {e}")

    def _is_expired(self, record: VerificationRecord) -> bool:
        expires_at = as_utc(record.expires_at)
        return expires_at is not None and expires_at <= self.clock()

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    async def get_status(self, db: AsyncSession, user_id: str) -> VerificationRecord:
        """Current record, created lazily in NOT_STARTED / NONE."""
        record = await self._load_record(db, user_id)
        if record is not None:
            return record

        now = self.clock()
        record = VerificationRecord(
            user_id=str(user_id),
            status=KycStatus.NOT_STARTED.value,
            verification_level=KycLevel.NONE.value,
            history=[],
            created_at=now,
            updated_at=now,
        )
        db.add(record)
        await self._commit(db, "creating KYC record")
        log.info(f"Created KYC record for user {user_id}")
        return record

    async def get_record(self, db: AsyncSession, user_id: str) -> VerificationRecord:
        """Full record for admins; never creates one."""
        return await self._require_record(db, user_id)

    async def is_verified(self, db: AsyncSession, user_id: str, required_level: Any = KycLevel.STANDARD) -> bool:
        record = await self._load_record(db, user_id)
        if record is None:
            return False
        return (
            record.status == KycStatus.APPROVED.value
            and level_value(record.verification_level) >= level_value(required_level)
            and not self._is_expired(record)
        )

    async def is_eligible_for_trading(self, db: AsyncSession, user_id: str) -> bool:
        if not await self.is_verified(db, user_id, KycLevel.STANDARD):
            return False

        record = await self._require_record(db, user_id)
        return (
            not record.flags.get("requires_review")
            and record.aml_status != "BLOCKED"
            and not self._is_expired(record)
        )

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_verification(
        self,
        db: AsyncSession,
        request: VerificationRequest,
        context: Optional[RequestContext] = None,
    ) -> SessionHandle:
        if not request.user_id:
            raise ValidationError("User id is required")
        level = parse_requested_level(request.verification_level)
        user_id = request.user_id

        record = await self.get_status(db, user_id)
        current = parse_status(record.status)

        if current in (KycStatus.IN_PROGRESS, KycStatus.PENDING):
            raise ValidationError("Verification is already in progress")

        if current == KycStatus.APPROVED and not self._is_expired(record):
            if level_value(record.verification_level) >= level_value(level):
                raise ValidationError(f"Already verified at {record.verification_level} level or higher")

        if current in (KycStatus.NEEDS_REVIEW, KycStatus.REJECTED, KycStatus.EXPIRED):
            if level_value(level) < level_value(record.verification_level):
                raise ValidationError(
                    f"Verification must be restarted at {record.verification_level} level or higher"
                )

        adapter = self.router.route(user_id, request.provider)
        session = await self.sessions.get_or_create_session(
            db, user_id, level.value, context, request.device_fingerprint
        )

        previous_level = record.verification_level
        record.verification_level = level.value
        transition(
            record,
            KycStatus.IN_PROGRESS,
            "Verification Started",
            details={"level": level.value, "previous_level": previous_level, "provider": adapter.name},
            session_id=session.session_id,
            now=self.clock(),
        )

        try:
            handle = await adapter.initiate_verification(db, request, record)
        except KycError as e:
            await db.rollback()
            log.error(f"Provider {adapter.name} failed to initiate verification for user {user_id}: {e}")
            await self._audit_failure(db, user_id, "VerificationInitiationFailed", e, context)
            await self._send(user_id, INITIATION_FAILED_MESSAGE)
            raise

        await self.audit.record(
            db,
            user_id,
            "VerificationStarted",
            {"level": level.value, "provider": adapter.name},
            context,
        )
        await self._commit(db, "starting verification")

        log.info(f"Verification started for user {user_id} at {level.value} via {adapter.name}")
        return handle.model_copy(update={"kyc_session_id": session.session_id})

    # ------------------------------------------------------------------
    # Vendor callbacks
    # ------------------------------------------------------------------

    async def process_callback(
        self,
        db: AsyncSession,
        provider: str,
        callback: CallbackRequest,
        *,
        signature: Optional[str],
        raw_payload: bytes,
        context: Optional[RequestContext] = None,
    ) -> VerificationRecord:
        adapter = self.router.select_adapter(provider)
        if not adapter.validate_callback_signature(signature, raw_payload):
            log.warning(f"Rejected {adapter.name} callback with invalid signature")
            raise SecurityError(f"Invalid {adapter.name} callback signature")

        event_id = callback_idempotency_key(callback, raw_payload)
        try:
            seen = await db.scalar(
                select(ProcessedCallback.id).where(
                    ProcessedCallback.provider == adapter.name,
                    ProcessedCallback.event_id == event_id,
                )
            )
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to check callback ledger") from e

        if seen is not None:
            log.info(f"Duplicate {adapter.name} callback {event_id} ignored")
            return await find_record_by_reference(db, callback.reference_id)

        db.add(ProcessedCallback(
            provider=adapter.name,
            event_id=event_id,
            reference_id=callback.reference_id,
            vendor_status=callback.status,
            received_at=self.clock(),
        ))

        try:
            record = await adapter.process_callback(db, callback, validity=self.validity)
        except KycError:
            await db.rollback()
            raise

        user_id = record.user_id
        new_status = record.status
        previous_status = (record.history or [{}])[-1].get("previous_status")

        await self.audit.record(
            db,
            user_id,
            "VerificationCallbackProcessed",
            {"provider": adapter.name, "vendor_status": callback.status, "status": new_status, "event_id": event_id},
            context,
        )
        try:
            await db.commit()
        except IntegrityError:
            # Another worker recorded the same delivery first.
            await db.rollback()
            log.info(f"Duplicate {adapter.name} callback {event_id} lost the race; ignored")
            return await find_record_by_reference(db, callback.reference_id)
        except StaleDataError as e:
            await db.rollback()
            raise DatabaseError("Concurrent update while applying callback") from e
        except SQLAlchemyError as e:
            await db.rollback()
            raise DatabaseError("Database error while applying callback") from e

        if new_status in AML_TRIGGER_STATUSES:
            try:
                await self._screen(db, adapter, record, context)
            except KycError as e:
                log.warning(f"AML screening after callback failed for user {user_id}: {e}")
                await db.refresh(record)

        await self._notify(user_id, record.status, previous_status)
        return record

    # ------------------------------------------------------------------
    # AML
    # ------------------------------------------------------------------

    async def _screen(
        self,
        db: AsyncSession,
        adapter: ProviderAdapter,
        record: VerificationRecord,
        context: Optional[RequestContext],
    ) -> None:
        user_id = record.user_id
        try:
            await adapter.perform_aml_check(db, record)
            await self.audit.record(
                db,
                user_id,
                "AmlCheckCompleted",
                {"provider": adapter.name, "aml_status": record.aml_status, "risk_score": record.aml_risk_score},
                context,
            )
            await self._commit(db, "saving AML result")
        except KycError as e:
            await db.rollback()
            await self._audit_failure(db, user_id, "AmlCheckError", e, context)
            raise

    async def perform_aml_check(
        self,
        db: AsyncSession,
        user_id: str,
        context: Optional[RequestContext] = None,
    ) -> VerificationRecord:
        record = await self._require_record(db, user_id)
        adapter = (
            self.router.select_adapter(record.provider_name)
            if record.provider_name
            else self.router.route(user_id)
        )
        previous_status = record.status

        await self._screen(db, adapter, record, context)

        if record.status != previous_status:
            await self._notify(record.user_id, record.status, previous_status)
        return record

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def update_status(
        self,
        db: AsyncSession,
        user_id: str,
        status: str,
        performed_by: Optional[str] = None,
        reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> VerificationRecord:
        target = parse_status(status)
        record = await self._require_record(db, user_id)
        previous_status = record.status
        actor = performed_by or "SYSTEM"
        now = self.clock()

        transition(
            record,
            target,
            "StatusUpdate",
            performed_by=actor,
            reason=reason or "Status updated",
            details={"updated_by": actor},
            now=now,
        )

        if target == KycStatus.APPROVED:
            record.verified_at = now
            record.expires_at = now + self.validity
            record.rejection_reason = None
            record.set_flags(requires_review=False)
        elif target == KycStatus.REJECTED:
            record.rejection_reason = reason

        await self.audit.record(
            db,
            user_id,
            "StatusUpdated",
            {"previous_status": previous_status, "status": target.value, "performed_by": actor},
            context,
        )
        await self._commit(db, "updating KYC status")

        log.info(f"KYC status for user {user_id} changed {previous_status} -> {target.value} by {actor}")
        await self._notify(record.user_id, record.status, previous_status)
        return record

    async def get_pending_verifications(
        self,
        db: AsyncSession,
        page: int = 1,
        page_size: int = 20,
    ) -> PaginatedResult[VerificationRecordResponse]:
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if page_size < 1 or page_size > 100:
            raise ValidationError("page_size must be between 1 and 100")

        pending = VerificationRecord.status.in_([KycStatus.PENDING.value, KycStatus.NEEDS_REVIEW.value])
        try:
            total = await db.scalar(select(func.count(VerificationRecord.id)).where(pending))
            result = await db.execute(
                select(VerificationRecord)
                .where(pending)
                .order_by(desc(VerificationRecord.updated_at), desc(VerificationRecord.id))
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
        except SQLAlchemyError as e:
            log.error(f"Failed to list pending verifications: {e}")
            raise DatabaseError("Failed to list pending verifications") from e

        return PaginatedResult[VerificationRecordResponse](
            items=[VerificationRecordResponse.model_validate(r) for r in result.scalars().all()],
            page=page,
            page_size=page_size,
            total_count=total or 0,
        )

    async def expire_verifications(self, db: AsyncSession) -> int:
        """Move APPROVED records past their validity window to EXPIRED."""
        now = self.clock()
        try:
            result = await db.execute(
                select(VerificationRecord).where(
                    VerificationRecord.status == KycStatus.APPROVED.value,
                    VerificationRecord.expires_at.is_not(None),
                    VerificationRecord.expires_at <= now,
                )
            )
            records = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to load expired verifications") from e

        for record in records:
            transition(record, KycStatus.EXPIRED, "VerificationExpired", reason="Verification validity ended", now=now)
            await self.audit.record(db, record.user_id, "VerificationExpired", {"expired_at": now.isoformat()})

        if not records:
            return 0

        await self._commit(db, "expiring verifications")
        for record in records:
            await self._notify(record.user_id, KycStatus.EXPIRED.value, KycStatus.APPROVED.value)

        log.info(f"Expired {len(records)} KYC verifications")
        return len(records)

    # ------------------------------------------------------------------
    # Personal data
    # ------------------------------------------------------------------

    def validate_personal_data(self, personal_info: dict[str, Any]) -> list[str]:
        errors = []

        for key, label in (("firstName", "first name"), ("lastName", "last name")):
            if key in personal_info:
                name = str(personal_info[key] or "").strip()
                if not NAME_PATTERN.match(name) or not 2 <= len(name) <= 50:
                    errors.append(f"Invalid {label}")

        if "dateOfBirth" in personal_info:
            try:
                dob = date.fromisoformat(str(personal_info["dateOfBirth"])[:10])
            except ValueError:
                errors.append("Invalid date of birth")
            else:
                today = self.clock().date()
                age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
                if not 18 <= age <= 120:
                    errors.append("Invalid date of birth")

        if "documentNumber" in personal_info:
            number = str(personal_info["documentNumber"] or "").strip()
            if not DOCUMENT_NUMBER_PATTERN.match(number) or not 5 <= len(number) <= 20:
                errors.append("Invalid document number")

        return errors

    def _decrypt_personal_data(self, record: VerificationRecord) -> dict[str, Any]:
        if not record.encrypted_personal_data:
            return {}
        try:
            return json.loads(self.protector.unprotect_text(record.encrypted_personal_data))
        except ValueError as e:
            raise SecurityError("Stored personal data is not valid JSON") from e

    async def submit_personal_data(
        self,
        db: AsyncSession,
        user_id: str,
        personal_info: dict[str, Any],
        context: Optional[RequestContext] = None,
    ) -> VerificationRecord:
        personal_info = {k: v for k, v in personal_info.items() if v is not None}
        if not personal_info:
            raise ValidationError("No personal data provided")

        errors = self.validate_personal_data(personal_info)
        if errors:
            raise ValidationError("; ".join(errors), details={"issues": errors})

        record = await self.get_status(db, user_id)
        merged = {**self._decrypt_personal_data(record), **personal_info}
        record.encrypted_personal_data = self.protector.protect_text(json.dumps(merged, default=str))

        await self.audit.record(db, user_id, "PersonalDataSubmitted", {"fields": sorted(personal_info)}, context)
        await self._commit(db, "saving personal data")
        log.info(f"Personal data updated for user {user_id} ({len(personal_info)} fields)")
        return record

    async def get_personal_data(
        self,
        db: AsyncSession,
        user_id: str,
        context: Optional[RequestContext] = None,
    ) -> dict[str, Any]:
        record = await self._require_record(db, user_id)
        data = self._decrypt_personal_data(record)

        await self.audit.record(db, user_id, "PersonalDataViewed", {}, context)
        await self._commit(db, "recording personal data access")
        return data


verification_orchestrator = VerificationOrchestrator(build_router())
