"""
Tests for user notifications
"""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from kyc_service.services import notifications
from kyc_service.services.notifications import (
    LoggingNotificationSink,
    RedisNotificationSink,
    get_notification_sink,
    status_message,
)


def test_status_messages():
    assert status_message("APPROVED") == "Your identity verification has been approved."
    assert status_message("PENDING", "IN_PROGRESS") == (
        "Your verification status has been updated from IN_PROGRESS to PENDING."
    )
    assert status_message("PENDING") == "Your identity verification status has been updated."


def test_sink_selection(monkeypatch):
    monkeypatch.setattr(notifications.settings, "KYC_NOTIFICATION_SINK", "log")
    assert isinstance(get_notification_sink(), LoggingNotificationSink)

    monkeypatch.setattr(notifications.settings, "KYC_NOTIFICATION_SINK", "redis")
    assert isinstance(get_notification_sink(), RedisNotificationSink)


@pytest.mark.asyncio
async def test_redis_sink_publishes_to_user_channel(monkeypatch):
    publish = AsyncMock(return_value=1)
    monkeypatch.setattr(notifications, "publish", publish)

    await RedisNotificationSink().send("user-1", "Your identity verification has been approved.")

    channel, payload = publish.call_args.args
    assert channel == "kyc:notifications:user-1"
    assert json.loads(payload)["message"] == "Your identity verification has been approved."
    assert json.loads(payload)["type"] == "kyc_status"


@pytest.mark.asyncio
async def test_redis_outage_is_logged_not_raised(monkeypatch, caplog):
    monkeypatch.setattr(notifications, "publish", AsyncMock(side_effect=ConnectionError("redis down")))
    caplog.set_level(logging.WARNING, logger="kyc_service.services.notifications")

    await RedisNotificationSink().send("user-1", "hello")

    assert "Failed to publish KYC notification" in caplog.text
