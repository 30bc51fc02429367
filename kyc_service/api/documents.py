"""
KYC document endpoints: uploads, live captures, downloads and deletion.

Uploads and captures must belong to an ACTIVE verification session of the
caller. Admins may download any document.
"""
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.config import settings
from kyc_service.core.context import RequestContext
from kyc_service.core.errors import NotFound, ValidationError
from kyc_service.db.session import get_db
from kyc_service.schemas.documents import (
    DeleteDocumentRequest,
    DocumentMetadata,
    DocumentSummary,
    DocumentUploadResponse,
    LiveCaptureRequest,
    LiveCaptureResponse,
    LiveCaptureSummary,
    SessionDocumentsResponse,
)
from kyc_service.services.documents import DownloadedFile, document_custodian
from kyc_service.services.orchestrator import verification_orchestrator
from kyc_service.utils.deps import CurrentUser, get_current_user, get_request_context

log = logging.getLogger(__name__)

router = APIRouter(prefix="/kyc/documents", tags=["kyc-documents"])


def _file_response(file: DownloadedFile) -> Response:
    return Response(
        content=file.data,
        media_type=file.content_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file.file_name)}"},
    )


@router.post("/upload", response_model=DocumentUploadResponse)
async def upload_document(
    session_id: str = Form(...),
    document_type: str = Form(...),
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    await verification_orchestrator.sessions.validate_session(db, session_id, user.user_id, context)

    # Read one byte past the limit so oversized uploads are rejected without buffering them whole.
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    metadata = DocumentMetadata(
        document_type=document_type,
        original_file_name=file.filename or "",
        content_type=file.content_type,
    )
    document = await document_custodian.upload(db, user.user_id, session_id, data, metadata, context)
    return DocumentUploadResponse(document_id=document.id, status=document.status, uploaded_at=document.created_at)


@router.post("/live-capture", response_model=LiveCaptureResponse)
async def live_capture(
    body: LiveCaptureRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    await verification_orchestrator.sessions.validate_session(db, body.session_id, user.user_id, context)
    capture = await document_custodian.process_live_capture(db, user.user_id, body, context)
    return LiveCaptureResponse(
        capture_id=capture.id,
        status=capture.status,
        is_duplex=capture.is_duplex,
        processed_at=capture.created_at,
    )


@router.get("/session/{session_id}", response_model=SessionDocumentsResponse)
async def list_session_documents(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    documents, captures = await document_custodian.list_session_documents(db, session_id, user.user_id)
    return SessionDocumentsResponse(
        session_id=session_id,
        documents=[DocumentSummary.model_validate(d) for d in documents],
        live_captures=[LiveCaptureSummary.model_validate(c) for c in captures],
    )


@router.get("/live-captures/{capture_id}")
async def download_live_capture(
    capture_id: str,
    side: str = Query(default="front", pattern="^(front|back)$"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    files = await document_custodian.download_live_capture(db, capture_id, user.user_id, user.is_admin, context)
    if side == "back":
        if len(files) < 2:
            raise NotFound("Live capture has no back side")
        return _file_response(files[1])
    return _file_response(files[0])


@router.delete("/live-captures/{capture_id}")
async def delete_live_capture(
    capture_id: str,
    body: DeleteDocumentRequest = DeleteDocumentRequest(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    owner = None if user.is_admin else user.user_id
    await document_custodian.soft_delete_live_capture(db, capture_id, body.reason, owner, context)
    return {"ok": True}


@router.get("/{document_id}")
async def download_document(
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    file = await document_custodian.download(db, document_id, user.user_id, user.is_admin, context)
    return _file_response(file)


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    body: DeleteDocumentRequest = DeleteDocumentRequest(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    if not body.reason.strip():
        raise ValidationError("A deletion reason is required")
    owner = None if user.is_admin else user.user_id
    await document_custodian.soft_delete(db, document_id, body.reason, owner, context)
    return {"ok": True}
