"""
Pydantic schemas for KYC document custody
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentMetadata(BaseModel):
    """Describes an uploaded file; the bytes travel separately"""
    document_type: str = Field(description="utility_bill, bank_statement, tax_document or income_proof")
    original_file_name: str = Field(description="File name as supplied by the client")
    content_type: Optional[str] = Field(default=None, description="MIME type as supplied by the client")


class CaptureMetadata(BaseModel):
    """Metadata about the capture session"""
    model_config = ConfigDict(populate_by_name=True)

    device_fingerprint: str = Field(default="", alias="deviceFingerprint")
    timestamp: int = Field(description="Capture time, Unix milliseconds")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    screen_resolution: Optional[str] = Field(default=None, alias="screenResolution")
    camera_info: Optional[Dict[str, Any]] = Field(default=None, alias="cameraInfo")
    environment_data: Optional[Dict[str, Any]] = Field(default=None, alias="environmentData")


class ImageCapture(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    side: str = Field(default="front", description="front or back")
    image_data: str = Field(alias="imageData", description="Base64 image, optionally a data: URL")
    is_live: bool = Field(default=False, alias="isLive")
    confidence_score: float = Field(default=0.0, ge=0, le=1, alias="confidenceScore")
    quality_score: int = Field(default=0, ge=0, le=100, alias="qualityScore")


class LiveCaptureRequest(BaseModel):
    """Live camera capture of an identity document"""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    document_type: str = Field(alias="documentType")
    image_data: List[ImageCapture] = Field(default_factory=list, alias="imageData")
    is_live: bool = Field(default=False, alias="isLive")
    is_duplex: bool = Field(default=False, alias="isDuplex")
    capture_metadata: CaptureMetadata = Field(alias="captureMetadata")


class DocumentUploadResponse(BaseModel):
    document_id: str
    status: str
    uploaded_at: datetime


class LiveCaptureResponse(BaseModel):
    capture_id: str
    status: str
    is_duplex: bool
    processed_at: datetime


class DocumentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    document_type: str
    original_file_name: str
    content_type: Optional[str] = None
    file_size: int
    status: str
    created_at: datetime


class LiveCaptureSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    document_type: str
    is_duplex: bool
    status: str
    capture_timestamp: datetime
    created_at: datetime


class SessionDocumentsResponse(BaseModel):
    session_id: str
    documents: List[DocumentSummary]
    live_captures: List[LiveCaptureSummary]


class DocumentStatistics(BaseModel):
    total_documents: int = 0
    total_live_captures: int = 0
    documents_today: int = 0
    live_captures_today: int = 0
    total_storage_used: int = 0
    document_type_breakdown: Dict[str, int] = Field(default_factory=dict)
    status_breakdown: Dict[str, int] = Field(default_factory=dict)


class DeleteDocumentRequest(BaseModel):
    reason: str = Field(default="User requested deletion", max_length=500)


class PurgeResponse(BaseModel):
    purged: int
