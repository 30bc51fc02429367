"""
KYC status vocabulary, verification level ordering and the record state machine.

Levels are compared through ``level_value`` only; two levels are never compared
as strings.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from kyc_service.core.errors import ValidationError

log = logging.getLogger(__name__)


class KycStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    EXPIRED = "EXPIRED"


class KycLevel(str, Enum):
    NONE = "NONE"
    BASIC = "BASIC"
    STANDARD = "STANDARD"
    ADVANCED = "ADVANCED"
    ENHANCED = "ENHANCED"


_LEVEL_ORDER = {
    KycLevel.NONE: 0,
    KycLevel.BASIC: 1,
    KycLevel.STANDARD: 2,
    KycLevel.ADVANCED: 3,
    KycLevel.ENHANCED: 4,
}

# Levels a user may request; NONE is only ever a starting point.
REQUESTABLE_LEVELS = (KycLevel.BASIC, KycLevel.STANDARD, KycLevel.ADVANCED, KycLevel.ENHANCED)

ALLOWED_TRANSITIONS: dict[KycStatus, frozenset[KycStatus]] = {
    KycStatus.NOT_STARTED: frozenset({KycStatus.IN_PROGRESS}),
    KycStatus.IN_PROGRESS: frozenset({
        KycStatus.PENDING,
        KycStatus.APPROVED,
        KycStatus.REJECTED,
        KycStatus.NEEDS_REVIEW,
    }),
    KycStatus.PENDING: frozenset({
        KycStatus.PENDING,
        KycStatus.APPROVED,
        KycStatus.REJECTED,
        KycStatus.NEEDS_REVIEW,
    }),
    KycStatus.NEEDS_REVIEW: frozenset({
        KycStatus.NEEDS_REVIEW,
        KycStatus.IN_PROGRESS,
        KycStatus.APPROVED,
        KycStatus.REJECTED,
    }),
    KycStatus.REJECTED: frozenset({KycStatus.IN_PROGRESS}),
    # IN_PROGRESS from APPROVED is a level upgrade; the orchestrator checks the level.
    KycStatus.APPROVED: frozenset({
        KycStatus.APPROVED,
        KycStatus.IN_PROGRESS,
        KycStatus.EXPIRED,
        KycStatus.NEEDS_REVIEW,
        KycStatus.REJECTED,
    }),
    KycStatus.EXPIRED: frozenset({KycStatus.IN_PROGRESS}),
}


def _normalize(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value or "").strip().upper().replace(" ", "_").replace("-", "_")


def level_value(level: Any) -> int:
    """Numeric rank of a verification level. Unknown input ranks as NONE."""
    try:
        return _LEVEL_ORDER[KycLevel(_normalize(level))]
    except ValueError:
        return _LEVEL_ORDER[KycLevel.NONE]


def parse_level(level: Any) -> KycLevel:
    try:
        return KycLevel(_normalize(level))
    except ValueError:
        raise ValidationError(f"Invalid verification level: {level!r}") from None


def parse_requested_level(level: Any) -> KycLevel:
    parsed = parse_level(level)
    if parsed not in REQUESTABLE_LEVELS:
        raise ValidationError(f"Verification level {parsed.value} cannot be requested")
    return parsed


def parse_status(status: Any) -> KycStatus:
    try:
        return KycStatus(_normalize(status))
    except ValueError:
        raise ValidationError(f"Invalid KYC status: {status!r}") from None


def can_transition(current: Any, new: Any) -> bool:
    return parse_status(new) in ALLOWED_TRANSITIONS[parse_status(current)]


def make_history_entry(
    action: str,
    *,
    previous_status: Optional[str],
    new_status: Optional[str],
    performed_by: str = "SYSTEM",
    reason: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    session_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    return {
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
        "action": action,
        "previous_status": previous_status,
        "new_status": new_status,
        "performed_by": performed_by,
        "reason": reason,
        "session_id": session_id,
        "details": details or {},
    }


def transition(
    record,
    new_status: Any,
    action: str,
    *,
    performed_by: str = "SYSTEM",
    reason: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    session_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Move ``record`` to ``new_status`` and append exactly one history entry.

    Raises ValidationError when the state machine does not allow the move; the
    record is left untouched in that case.
    """
    target = parse_status(new_status)
    current = parse_status(record.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise ValidationError(
            f"Cannot move verification from {current.value} to {target.value}"
        )

    entry = make_history_entry(
        action,
        previous_status=current.value,
        new_status=target.value,
        performed_by=performed_by,
        reason=reason,
        details=details,
        session_id=session_id,
        now=now,
    )
    record.status = target.value
    append_history(record, entry)
    log.debug(f"KYC record for user {record.user_id}: {current.value} -> {target.value} ({action})")
    return entry


def append_history(record, entry: dict[str, Any]) -> None:
    # Reassign so SQLAlchemy sees the JSON column change; never drop entries.
    record.history = [*(record.history or []), entry]
