"""
SQLAlchemy database models.

- base: Base declarative class
- verification: KYC records and the callback idempotency ledger
- session: verification sessions
- document: uploaded documents and live captures
- audit: audit trail

Import any model from this module:
    from kyc_service.db.models import VerificationRecord, KycSession
"""

# Base class (must be imported first)
from .base import Base

# Verification models
from .verification import VerificationRecord, ProcessedCallback

# Sessions
from .session import KycSession

# Document custody
from .document import Document, LiveCapture

# Audit trail
from .audit import AuditEvent

__all__ = [
    "Base",
    "VerificationRecord",
    "ProcessedCallback",
    "KycSession",
    "Document",
    "LiveCapture",
    "AuditEvent",
]
