"""Custodied identity documents and live captures."""

import uuid
from datetime import datetime

from sqlalchemy import Integer, String, Boolean, Text, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class Document(Base):
    """Uploaded supporting document (utility bill, bank statement, ...)."""

    __tablename__ = "kyc_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    document_type: Mapped[str] = mapped_column(String, nullable=False)
    original_file_name: Mapped[str] = mapped_column(String, nullable=False)
    # Random storage key, never derived from user input
    secure_file_name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    content_type: Mapped[str | None] = mapped_column(String, nullable=True)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)

    # SHA-256 of the plaintext, base64
    content_hash: Mapped[str] = mapped_column(String, nullable=False)
    is_encrypted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    encryption_method: Mapped[str | None] = mapped_column(String, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="UPLOADED")  # "UPLOADED", "DELETED", "PURGED"
    deletion_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_kyc_documents_status_deleted", "status", "deleted_at"),
    )


class LiveCapture(Base):
    """Camera capture of an identity document, front and optional back side."""

    __tablename__ = "kyc_live_captures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    document_type: Mapped[str] = mapped_column(String, nullable=False)
    is_duplex: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    secure_file_name: Mapped[str] = mapped_column(String, nullable=False)
    content_hash: Mapped[str] = mapped_column(String, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)

    back_secure_file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    back_content_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    back_file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    device_fingerprint: Mapped[str] = mapped_column(String, nullable=False)
    capture_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_encrypted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    encryption_method: Mapped[str | None] = mapped_column(String, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="CAPTURED")  # "CAPTURED", "DELETED", "PURGED"
    deletion_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_kyc_live_captures_status_deleted", "status", "deleted_at"),
    )
