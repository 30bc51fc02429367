"""
Pydantic schemas for KYC verification
"""
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class VerificationRequest(BaseModel):
    """Request to start verification at a given level"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(default="", alias="userId", description="Filled from the authenticated user")
    verification_level: str = Field(
        default="STANDARD",
        alias="verificationLevel",
        description="BASIC, STANDARD, ADVANCED or ENHANCED",
    )
    user_data: Dict[str, Any] = Field(
        default_factory=dict,
        alias="userData",
        description="Applicant details forwarded to the provider (firstName, lastName, email, address)",
    )
    provider: Optional[str] = Field(default=None, description="Force a provider instead of routing")
    device_fingerprint: Optional[str] = Field(default=None, alias="deviceFingerprint")


class SessionHandle(BaseModel):
    """Where the client continues the provider flow"""
    session_id: str = Field(description="Provider SDK/access token")
    verification_url: str = Field(description="URL to redirect user for verification")
    expires_at: datetime
    status: str = "IN_PROGRESS"
    provider: str
    kyc_session_id: Optional[str] = Field(default=None, description="Our verification session token")


class CallbackRequest(BaseModel):
    """Normalised vendor callback"""
    model_config = ConfigDict(populate_by_name=True)

    reference_id: str = Field(alias="referenceId")
    status: str = Field(default="", description="Vendor status string")
    verification_result: Dict[str, Any] = Field(default_factory=dict, alias="verificationResult")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    event_id: Optional[str] = Field(default=None, alias="eventId", description="Vendor delivery id, idempotency key")


class PaginatedResult(BaseModel, Generic[T]):
    items: List[T]
    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        return (self.total_count + self.page_size - 1) // self.page_size if self.page_size else 0


class VerificationRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    status: str
    verification_level: str
    provider_name: Optional[str] = None
    reference_id: Optional[str] = None
    history: List[Dict[str, Any]] = Field(default_factory=list)
    security_flags: Dict[str, Any] = Field(default_factory=dict)
    aml_status: Optional[str] = None
    aml_risk_score: Optional[str] = None
    rejection_reason: Optional[str] = None
    verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class KycStatusResponse(BaseModel):
    """Limited public view of a user's verification state"""
    status: str
    verification_level: str
    verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    requires_review: bool = False
    rejection_reason: Optional[str] = None


class PersonalInfoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")
    document_number: Optional[str] = Field(default=None, alias="documentNumber")
    nationality: Optional[str] = None
    address: Optional[Dict[str, Any]] = None


class StatusUpdateRequest(BaseModel):
    status: str
    reason: Optional[str] = Field(default=None, max_length=1000)


class ProgressUpdateRequest(BaseModel):
    current_step: int = Field(ge=1)
    total_steps: Optional[int] = Field(default=None, ge=1)


class SessionInvalidateRequest(BaseModel):
    reason: str = Field(default="Manual invalidation", max_length=500)


class KycSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    status: str
    verification_level: str
    expires_at: datetime
    progress: Dict[str, Any] = Field(default_factory=dict)


class EligibilityResponse(BaseModel):
    user_id: str
    eligible: bool


class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None
