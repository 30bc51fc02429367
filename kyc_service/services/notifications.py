"""
User notifications for verification status changes.

Delivery is best effort: a failing sink is logged and never rolls back the
state change that triggered it.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Protocol

from kyc_service.core.config import settings
from kyc_service.utils.redis_pool import publish

log = logging.getLogger(__name__)

CHANNEL_TEMPLATE = "kyc:notifications:{user_id}"

STATUS_MESSAGES = {
    "APPROVED": "Your identity verification has been approved.",
    "REJECTED": "Your identity verification was not approved. Please contact support.",
    "NEEDS_REVIEW": "Your identity verification is under review. We'll notify you once completed.",
    "EXPIRED": "Your identity verification has expired. Please verify again to keep full access.",
}

INITIATION_FAILED_MESSAGE = "We could not start your identity verification. Please try again later."


def status_message(status: str, previous_status: str | None = None) -> str:
    if status in STATUS_MESSAGES:
        return STATUS_MESSAGES[status]
    if previous_status:
        return f"Your verification status has been updated from {previous_status} to {status}."
    return "Your identity verification status has been updated."


class NotificationSink(Protocol):
    async def send(self, user_id: str, message: str) -> None: ...


class RedisNotificationSink:
    async def send(self, user_id: str, message: str) -> None:
        payload = json.dumps({
            "type": "kyc_status",
            "user_id": str(user_id),
            "message": message,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        })
        try:
            await publish(CHANNEL_TEMPLATE.format(user_id=user_id), payload)
        except Exception as e:
            log.warning(f"Failed to publish KYC notification for user {user_id}: {e}")


class LoggingNotificationSink:
    async def send(self, user_id: str, message: str) -> None:
        log.info(f"[NOTIFY] user={user_id}: {message}")


def get_notification_sink() -> NotificationSink:
    if settings.KYC_NOTIFICATION_SINK.lower() == "log":
        return LoggingNotificationSink()
    return RedisNotificationSink()
