"""Tests for delivery result loggers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest

from hookrelay.delivery_log import LoggingDeliveryResultLogger, NullDeliveryResultLogger
from hookrelay.results import WebhookDeliveryResult
from hookrelay.webhook import Webhook, WebhookDestination


def _result(*codes: int) -> WebhookDeliveryResult:
    webhook = Webhook(
        id="evt-1", event_type="order.created", timestamp=datetime.now(timezone.utc), data={"n": 1}
    )
    result = WebhookDeliveryResult(webhook, WebhookDestination(url="https://h.example.com/hook?token=secret"))
    for code in codes:
        result.start_attempt().complete(code)
    return result


@pytest.mark.asyncio
async def test_logging_logger_reports_success(caplog, make_subscription) -> None:
    with caplog.at_level(logging.DEBUG, logger="hookrelay.delivery_log"):
        await LoggingDeliveryResultLogger().log(make_subscription(), _result(200))
    assert "Delivered webhook evt-1 to https://h.example.com/hook" in caplog.text
    assert "token=secret" not in caplog.text
    assert "Attempt 1" in caplog.text


@pytest.mark.asyncio
async def test_logging_logger_reports_failure(caplog, make_subscription) -> None:
    target = logging.getLogger("tests.deliveries")
    with caplog.at_level(logging.WARNING, logger="tests.deliveries"):
        await LoggingDeliveryResultLogger(target).log(make_subscription(), _result(500, 502))
    assert [r.levelno for r in caplog.records] == [logging.WARNING]
    assert "after 2 attempt(s)" in caplog.text


@pytest.mark.asyncio
async def test_null_logger_does_nothing(make_subscription) -> None:
    assert await NullDeliveryResultLogger().log(make_subscription(), _result(200)) is None
