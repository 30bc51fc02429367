"""
Document custody for KYC evidence.

Handles:
- Validated, encrypted uploads of supporting documents
- Live camera captures of identity documents (front and optional back side)
- Integrity-checked downloads for owners and admins
- Soft deletion and the retention purge of soft-deleted blobs

The SHA-256 of the plaintext is taken before encryption and re-checked after
every decryption. A mismatch is an integrity event (warning log plus audit
event); the data is still returned.
"""
import asyncio
import base64
import binascii
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import PurePath
from typing import Callable, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.config import settings
from kyc_service.core.context import RequestContext
from kyc_service.core.errors import DatabaseError, KycError, NotFound, SecurityError, ValidationError
from kyc_service.db.models import Document, LiveCapture
from kyc_service.db.models.base import utcnow
from kyc_service.schemas.documents import DocumentMetadata, DocumentStatistics, LiveCaptureRequest
from kyc_service.services.audit import AuditTrail, audit_trail
from kyc_service.services.encryption import (
    ENCRYPTION_METHOD,
    PURPOSE_DOCUMENTS,
    EnvelopeProtector,
    content_hash,
    get_protector,
)
from kyc_service.services.storage import DocumentStore, get_document_store, storage_failure

log = logging.getLogger(__name__)

PASSPORT = "passport"
DRIVERS_LICENSE = "drivers_license"
NATIONAL_ID = "national_id"
UTILITY_BILL = "utility_bill"
BANK_STATEMENT = "bank_statement"
TAX_DOCUMENT = "tax_document"
INCOME_PROOF = "income_proof"

LIVE_CAPTURE_REQUIRED = frozenset({PASSPORT, DRIVERS_LICENSE, NATIONAL_ID})
DUPLEX_CAPTURE_REQUIRED = frozenset({DRIVERS_LICENSE, NATIONAL_ID})
UPLOAD_ALLOWED = frozenset({UTILITY_BILL, BANK_STATEMENT, TAX_DOCUMENT, INCOME_PROOF})

STATUS_UPLOADED = "UPLOADED"
STATUS_CAPTURED = "CAPTURED"
STATUS_DELETED = "DELETED"
STATUS_PURGED = "PURGED"

SUSPICIOUS_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rb"<script",
        rb"javascript:",
        rb"vbscript:",
        rb"<\?php",
        rb"<%[=@\s]",
        rb"exec\(",
        rb"eval\(",
        rb"system\(",
        rb"shell_exec",
    )
]


@dataclass
class DownloadedFile:
    data: bytes
    content_type: str
    file_name: str


def requires_live_capture(document_type: str) -> bool:
    return document_type in LIVE_CAPTURE_REQUIRED


def requires_duplex_capture(document_type: str) -> bool:
    return document_type in DUPLEX_CAPTURE_REQUIRED


def contains_suspicious_content(data: bytes) -> bool:
    return any(pattern.search(data) for pattern in SUSPICIOUS_PATTERNS)


def decode_image(image_data: str) -> bytes:
    """Accepts raw base64 or a ``data:image/...;base64,`` URL."""
    encoded = image_data.split(",", 1)[1] if "," in image_data else image_data
    return base64.b64decode(encoded.strip(), validate=True)


class DocumentCustodian:
    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        audit: Optional[AuditTrail] = None,
        protector: Optional[EnvelopeProtector] = None,
        clock: Callable[[], datetime] = utcnow,
        max_upload_bytes: Optional[int] = None,
        retention_days: Optional[int] = None,
    ):
        self._store = store
        self._protector = protector
        self.audit = audit or audit_trail
        self.clock = clock
        self.max_upload_bytes = max_upload_bytes or settings.MAX_UPLOAD_BYTES
        self.retention = timedelta(days=retention_days or settings.DOCUMENT_RETENTION_DAYS)
        self.allowed_extensions = [ext.lower() for ext in settings.ALLOWED_UPLOAD_EXTENSIONS]

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            self._store = get_document_store()
        return self._store

    @property
    def protector(self) -> EnvelopeProtector:
        if self._protector is None:
            self._protector = get_protector(PURPOSE_DOCUMENTS)
        return self._protector

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def validate_upload(self, file_bytes: bytes, metadata: DocumentMetadata) -> None:
        errors = []
        if not file_bytes:
            errors.append("No file uploaded")
        else:
            if len(file_bytes) > self.max_upload_bytes:
                errors.append(
                    f"File size exceeds maximum limit of {self.max_upload_bytes // 1024 // 1024}MB"
                )

            extension = PurePath(metadata.original_file_name or "").suffix.lower()
            if extension not in self.allowed_extensions:
                errors.append(f"File type not allowed. Supported types: {', '.join(self.allowed_extensions)}")

            if requires_live_capture(metadata.document_type):
                errors.append(f"Document type '{metadata.document_type}' requires live capture, not file upload")
            elif metadata.document_type not in UPLOAD_ALLOWED:
                errors.append(f"Unknown document type '{metadata.document_type}'")

            # Oversized files are already rejected; skip scanning them.
            if len(file_bytes) <= self.max_upload_bytes and contains_suspicious_content(file_bytes):
                errors.append("File contains potentially malicious content")

        if errors:
            raise ValidationError("; ".join(errors), details={"issues": errors})

    async def upload(
        self,
        db: AsyncSession,
        user_id: str,
        session_id: str,
        file_bytes: bytes,
        metadata: DocumentMetadata,
        context: Optional[RequestContext] = None,
    ) -> Document:
        self.validate_upload(file_bytes, metadata)

        plaintext_hash = content_hash(file_bytes)
        encrypted = self.protector.protect(file_bytes)
        secure_file_name = f"documents/{secrets.token_hex(16)}"

        await self._write_blob(secure_file_name, encrypted)

        document = Document(
            user_id=str(user_id),
            session_id=session_id,
            document_type=metadata.document_type,
            original_file_name=metadata.original_file_name,
            secure_file_name=secure_file_name,
            content_type=metadata.content_type,
            file_size=len(file_bytes),
            content_hash=plaintext_hash,
            is_encrypted=True,
            encryption_method=ENCRYPTION_METHOD,
            status=STATUS_UPLOADED,
            created_at=self.clock(),
        )
        try:
            db.add(document)
            await db.flush()
            await self.audit.record(
                db,
                user_id,
                "DocumentUploaded",
                {"document_id": document.id, "document_type": metadata.document_type, "file_size": len(file_bytes)},
                context,
            )
            await db.commit()
        except (SQLAlchemyError, DatabaseError) as e:
            await db.rollback()
            log.error(f"Failed to save document record for user {user_id}: {e}")
            await self._discard_blobs(secure_file_name)
            raise DatabaseError("Failed to save document record") from e

        log.info(f"Document {document.id} uploaded for user {user_id} ({metadata.document_type}, {len(file_bytes)} bytes)")
        return document

    # ------------------------------------------------------------------
    # Live captures
    # ------------------------------------------------------------------

    def _decode_live_capture(self, request: LiveCaptureRequest) -> tuple[bytes, Optional[bytes]]:
        errors = []

        if not request.session_id:
            errors.append("Invalid session ID")

        if not request.is_live and requires_live_capture(request.document_type):
            errors.append("Document does not appear to be captured live")

        if not request.capture_metadata.device_fingerprint:
            errors.append("Missing device fingerprint")

        capture_time = datetime.fromtimestamp(request.capture_metadata.timestamp / 1000, tz=timezone.utc)
        if self.clock() - capture_time > timedelta(seconds=settings.LIVE_CAPTURE_MAX_AGE_SECONDS):
            errors.append("Capture timestamp too old")

        if requires_duplex_capture(request.document_type) and not request.is_duplex:
            errors.append("This document type requires duplex capture (front and back sides)")

        images = {}
        if not request.image_data:
            errors.append("No image data provided")
        else:
            sides = {image.side.lower(): image for image in request.image_data}
            front = sides.get("front") or request.image_data[0]
            back = None
            if request.is_duplex:
                back = sides.get("back") or (request.image_data[1] if len(request.image_data) > 1 else None)
                if back is None or back is front:
                    errors.append("Duplex capture requires front and back images")
                    back = None

            try:
                images["front"] = decode_image(front.image_data)
                if back is not None:
                    images["back"] = decode_image(back.image_data)
            except (binascii.Error, ValueError):
                errors.append("Invalid image data format")
            else:
                if any(len(data) < settings.LIVE_CAPTURE_MIN_BYTES for data in images.values()):
                    errors.append("Image data too small")

        if errors:
            raise ValidationError("; ".join(errors), details={"issues": errors})
        return images["front"], images.get("back")

    async def process_live_capture(
        self,
        db: AsyncSession,
        user_id: str,
        request: LiveCaptureRequest,
        context: Optional[RequestContext] = None,
    ) -> LiveCapture:
        front, back = self._decode_live_capture(request)

        front_key = f"live-captures/{secrets.token_hex(16)}"
        back_key = f"live-captures/{secrets.token_hex(16)}" if back is not None else None
        written = []

        try:
            await self._write_blob(front_key, self.protector.protect(front))
            written.append(front_key)
            if back is not None:
                await self._write_blob(back_key, self.protector.protect(back))
                written.append(back_key)

            capture = LiveCapture(
                user_id=str(user_id),
                session_id=request.session_id,
                document_type=request.document_type,
                is_duplex=back is not None,
                secure_file_name=front_key,
                content_hash=content_hash(front),
                file_size=len(front),
                back_secure_file_name=back_key,
                back_content_hash=content_hash(back) if back is not None else None,
                back_file_size=len(back) if back is not None else None,
                device_fingerprint=request.capture_metadata.device_fingerprint,
                capture_timestamp=datetime.fromtimestamp(request.capture_metadata.timestamp / 1000, tz=timezone.utc),
                is_encrypted=True,
                encryption_method=ENCRYPTION_METHOD,
                status=STATUS_CAPTURED,
                created_at=self.clock(),
            )
            db.add(capture)
            await db.flush()
            await self.audit.record(
                db,
                user_id,
                "LiveCaptureProcessed",
                {"capture_id": capture.id, "document_type": request.document_type, "is_duplex": capture.is_duplex},
                context,
            )
            await db.commit()
        except (SQLAlchemyError, KycError, OSError) as e:
            await db.rollback()
            log.error(f"Failed to process live capture for user {user_id}: {e}")
            await self._discard_blobs(*written)
            if isinstance(e, KycError) and not isinstance(e, DatabaseError):
                raise
            raise DatabaseError("Failed to save live capture record") from e

        log.info(f"Live capture {capture.id} processed for user {user_id} (duplex={capture.is_duplex})")
        return capture

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    async def _get(self, db: AsyncSession, model, record_id: str, user_id: Optional[str] = None):
        try:
            record = await db.get(model, record_id)
        except SQLAlchemyError as e:
            log.error(f"Failed to load {model.__tablename__} {record_id}: {e}")
            raise DatabaseError("Failed to load document record") from e

        if record is None or record.status in (STATUS_DELETED, STATUS_PURGED):
            raise NotFound("Document not found")
        if user_id is not None and record.user_id != str(user_id):
            raise NotFound("Document not found")
        return record

    async def _open(
        self,
        db: AsyncSession,
        *,
        kind: str,
        record_id: str,
        owner_id: str,
        key: str,
        expected_hash: str,
        is_encrypted: bool,
        context: Optional[RequestContext],
    ) -> bytes:
        data = await self._read_blob(key)
        if not is_encrypted:
            return data

        try:
            data = self.protector.unprotect(data)
        except SecurityError as e:
            log.error(f"Failed to decrypt {kind} {record_id}")
            raise SecurityError(f"Failed to decrypt {kind} {record_id}", public_message="Failed to decrypt document") from e

        if content_hash(data) != expected_hash:
            log.warning(f"{kind.capitalize()} integrity check failed for {record_id}. Hash mismatch.")
            await self.audit.record(
                db,
                owner_id,
                "DocumentIntegrityMismatch",
                {"kind": kind, "record_id": record_id, "storage_key": key},
                context,
            )
        return data

    def _check_access(self, owner_id: str, requesting_user_id: str, is_admin: bool, record_id: str) -> None:
        if not is_admin and owner_id != str(requesting_user_id):
            log.warning(f"User {requesting_user_id} denied access to document {record_id}")
            raise SecurityError("Unauthorized document access")

    async def _commit_access(self, db: AsyncSession) -> None:
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise DatabaseError("Failed to record document access") from e

    async def download(
        self,
        db: AsyncSession,
        document_id: str,
        requesting_user_id: str,
        is_admin: bool = False,
        context: Optional[RequestContext] = None,
    ) -> DownloadedFile:
        document = await self._get(db, Document, document_id)
        self._check_access(document.user_id, requesting_user_id, is_admin, document_id)

        data = await self._open(
            db,
            kind="document",
            record_id=document.id,
            owner_id=document.user_id,
            key=document.secure_file_name,
            expected_hash=document.content_hash,
            is_encrypted=document.is_encrypted,
            context=context,
        )
        await self.audit.record(
            db,
            document.user_id,
            "DocumentDownloaded",
            {"document_id": document.id, "requested_by": str(requesting_user_id), "admin": is_admin},
            context,
        )
        await self._commit_access(db)

        return DownloadedFile(
            data=data,
            content_type=document.content_type or "application/octet-stream",
            file_name=document.original_file_name,
        )

    async def download_live_capture(
        self,
        db: AsyncSession,
        capture_id: str,
        requesting_user_id: str,
        is_admin: bool = False,
        context: Optional[RequestContext] = None,
    ) -> list[DownloadedFile]:
        capture = await self._get(db, LiveCapture, capture_id)
        self._check_access(capture.user_id, requesting_user_id, is_admin, capture_id)

        sides = [("front", capture.secure_file_name, capture.content_hash)]
        if capture.is_duplex and capture.back_secure_file_name:
            sides.append(("back", capture.back_secure_file_name, capture.back_content_hash))

        files = []
        for side, key, expected_hash in sides:
            data = await self._open(
                db,
                kind="live capture",
                record_id=capture.id,
                owner_id=capture.user_id,
                key=key,
                expected_hash=expected_hash,
                is_encrypted=capture.is_encrypted,
                context=context,
            )
            files.append(DownloadedFile(data=data, content_type="image/jpeg", file_name=f"live-capture-{capture.id}_{side}.jpg"))

        await self.audit.record(
            db,
            capture.user_id,
            "LiveCaptureDownloaded",
            {"capture_id": capture.id, "requested_by": str(requesting_user_id), "admin": is_admin},
            context,
        )
        await self._commit_access(db)
        return files

    # ------------------------------------------------------------------
    # Deletion and retention
    # ------------------------------------------------------------------

    async def _soft_delete(self, db, model, record_id, reason, user_id, context, action):
        record = await self._get(db, model, record_id, user_id)
        record.status = STATUS_DELETED
        record.deletion_reason = reason
        record.deleted_at = self.clock()
        try:
            await self.audit.record(db, record.user_id, action, {"record_id": record.id, "reason": reason}, context)
            await db.commit()
        except (SQLAlchemyError, DatabaseError) as e:
            await db.rollback()
            log.error(f"Failed to soft delete {model.__tablename__} {record_id}: {e}")
            raise DatabaseError("Failed to delete document record") from e

        log.info(f"Soft deleted {model.__tablename__} {record_id}, reason: {reason}")
        return record

    async def soft_delete(
        self,
        db: AsyncSession,
        document_id: str,
        reason: str = "User requested deletion",
        user_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Document:
        return await self._soft_delete(db, Document, document_id, reason, user_id, context, "DocumentDeleted")

    async def soft_delete_live_capture(
        self,
        db: AsyncSession,
        capture_id: str,
        reason: str = "User requested deletion",
        user_id: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> LiveCapture:
        return await self._soft_delete(db, LiveCapture, capture_id, reason, user_id, context, "LiveCaptureDeleted")

    async def _write_blob(self, key: str, data: bytes) -> None:
        try:
            await self.store.write(key, data)
        except OSError as e:
            raise storage_failure("write", key, e) from e

    async def _read_blob(self, key: str) -> bytes:
        try:
            return await self.store.read(key)
        except OSError as e:
            raise storage_failure("read", key, e) from e

    async def _discard_blobs(self, *keys: Optional[str]) -> None:
        for key in keys:
            if not key:
                continue
            try:
                await self.store.delete(key)
            except Exception as e:
                log.error(f"Failed to remove orphaned blob {key}: {e}")

    async def _purge_record(self, record) -> None:
        keys = [record.secure_file_name]
        back = getattr(record, "back_secure_file_name", None)
        if back:
            keys.append(back)
        for key in keys:
            await self.store.delete(key)

    async def purge_expired(self, db: AsyncSession) -> int:
        """
        Physically delete blobs of records soft-deleted longer than the
        retention window. Deletions run concurrently; a failing deletion is
        logged and the record stays DELETED for the next sweep.
        """
        cutoff = self.clock() - self.retention
        try:
            documents = (await db.execute(
                select(Document).where(Document.status == STATUS_DELETED, Document.deleted_at < cutoff)
            )).scalars().all()
            captures = (await db.execute(
                select(LiveCapture).where(LiveCapture.status == STATUS_DELETED, LiveCapture.deleted_at < cutoff)
            )).scalars().all()
        except SQLAlchemyError as e:
            log.error(f"Failed to load expired documents: {e}")
            raise DatabaseError("Failed to load expired documents") from e

        records = [*documents, *captures]
        if not records:
            return 0

        results = await asyncio.gather(
            *(self._purge_record(record) for record in records),
            return_exceptions=True,
        )

        purged = 0
        for record, result in zip(records, results):
            if isinstance(result, BaseException):
                log.error(f"Failed to purge blob for {record.__tablename__} {record.id}: {result}")
                continue
            record.status = STATUS_PURGED
            purged += 1

        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise DatabaseError("Failed to mark purged documents") from e

        log.info(f"Purged {purged} of {len(records)} expired document blobs (cutoff={cutoff.isoformat()})")
        return purged

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_session_documents(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
    ) -> tuple[list[Document], list[LiveCapture]]:
        try:
            documents = (await db.execute(
                select(Document)
                .where(Document.session_id == session_id, Document.user_id == str(user_id))
                .where(Document.status == STATUS_UPLOADED)
                .order_by(Document.created_at)
            )).scalars().all()
            captures = (await db.execute(
                select(LiveCapture)
                .where(LiveCapture.session_id == session_id, LiveCapture.user_id == str(user_id))
                .where(LiveCapture.status == STATUS_CAPTURED)
                .order_by(LiveCapture.created_at)
            )).scalars().all()
        except SQLAlchemyError as e:
            log.error(f"Failed to list session documents: {e}")
            raise DatabaseError("Failed to list session documents") from e
        return list(documents), list(captures)

    async def document_statistics(self, db: AsyncSession) -> DocumentStatistics:
        now = self.clock()
        today = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
        try:
            total_documents = await db.scalar(select(func.count(Document.id)))
            total_captures = await db.scalar(select(func.count(LiveCapture.id)))
            documents_today = await db.scalar(select(func.count(Document.id)).where(Document.created_at >= today))
            captures_today = await db.scalar(select(func.count(LiveCapture.id)).where(LiveCapture.created_at >= today))
            storage_used = await db.scalar(select(func.coalesce(func.sum(Document.file_size), 0)))
            by_type = (await db.execute(
                select(Document.document_type, func.count(Document.id)).group_by(Document.document_type)
            )).all()
            by_status = (await db.execute(
                select(Document.status, func.count(Document.id)).group_by(Document.status)
            )).all()
        except SQLAlchemyError as e:
            log.error(f"Failed to compute document statistics: {e}")
            raise DatabaseError("Failed to compute document statistics") from e

        return DocumentStatistics(
            total_documents=total_documents or 0,
            total_live_captures=total_captures or 0,
            documents_today=documents_today or 0,
            live_captures_today=captures_today or 0,
            total_storage_used=storage_used or 0,
            document_type_breakdown={doc_type: count for doc_type, count in by_type},
            status_breakdown={status: count for status, count in by_status},
        )


document_custodian = DocumentCustodian()
