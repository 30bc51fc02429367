"""Identity verification models."""

from datetime import datetime

from sqlalchemy import Integer, String, Text, DateTime, JSON, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


def default_security_flags() -> dict:
    return {
        "requires_review": False,
        "high_risk": False,
        "restricted_region": False,
        "politically_exposed": False,
        "failure_reasons": [],
        "high_risk_indicators": [],
    }


class VerificationRecord(Base):
    """One logical KYC record per user, driven through the verification state machine."""

    __tablename__ = "kyc_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="NOT_STARTED")
    verification_level: Mapped[str] = mapped_column(String, nullable=False, default="NONE")

    # Vendor correlation
    provider_name: Mapped[str | None] = mapped_column(String, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    # Opaque ciphertext (purpose "personal-data"), base64 text
    encrypted_personal_data: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Append-only transition log
    history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    security_flags: Mapped[dict] = mapped_column(JSON, nullable=False, default=default_security_flags)

    # Latest vendor result payload
    verification_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # AML / watchlist screening
    aml_status: Mapped[str | None] = mapped_column(String, nullable=True)
    aml_risk_score: Mapped[str | None] = mapped_column(String, nullable=True)
    aml_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

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

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_kyc_records_user_updated", "user_id", "updated_at"),
        Index("ix_kyc_records_status_updated", "status", "updated_at"),
    )

    @property
    def flags(self) -> dict:
        return {**default_security_flags(), **(self.security_flags or {})}

    def set_flags(self, **changes) -> None:
        # Reassign the whole dict so the JSON column is flagged dirty.
        self.security_flags = {**self.flags, **changes}


class ProcessedCallback(Base):
    """Idempotency ledger for vendor webhook deliveries."""

    __tablename__ = "kyc_callback_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    event_id: Mapped[str] = mapped_column(String, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True)
    vendor_status: Mapped[str | None] = mapped_column(String, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_kyc_callback_provider_event"),
    )
