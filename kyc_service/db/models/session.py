"""Verification session model."""

from datetime import datetime

from sqlalchemy import Integer, String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class KycSession(Base):
    """Time-boxed verification session. At most one ACTIVE per user (best effort)."""

    __tablename__ = "kyc_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Random 32-byte token, urlsafe base64
    session_id: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")  # "ACTIVE", "EXPIRED"
    verification_level: Mapped[str] = mapped_column(String, nullable=False, default="BASIC")

    # ip_address, user_agent, device_fingerprint, created_at, last_accessed_at
    security_context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    # current_step, total_steps, completed_steps
    progress: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    invalidation_reason: Mapped[str | None] = mapped_column(String, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_kyc_sessions_user_status", "user_id", "status"),
    )
