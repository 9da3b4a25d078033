"""Tests for the delivery client: signing, headers, retries and timeouts."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timezone

import httpx
import pytest

from hookrelay.config import SenderConfig
from hookrelay.exceptions import SerializerNotFoundError, SignerNotFoundError
from hookrelay.registry import SerializerRegistry
from hookrelay.sender import WebhookSender
from hookrelay.serializers import JsonWebhookSerializer
from hookrelay.webhook import (
    RetryOptions,
    SignatureLocation,
    SignatureOptions,
    Webhook,
    WebhookDestination,
    WebhookFormat,
    backoff_delay,
)

URL = "https://subscriber.example.com/hook"


def _webhook(**kwargs) -> Webhook:
    kwargs.setdefault("headers", {})
    return Webhook(
        id="evt-1",
        event_type="order.created",
        timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
        subscription_id="sub-1",
        name="orders",
        data={"amount": 150},
        **kwargs,
    )


def _destination(**kwargs) -> WebhookDestination:
    return WebhookDestination(url=kwargs.pop("url", URL), **kwargs)


# ---------------------------------------------------------------------------
# 1. Backoff arithmetic
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("index, delay", [(0, 0.0), (1, 2.0), (2, 6.0), (3, 12.0), (10, 110.0)])
def test_backoff_delay(index: int, delay: float) -> None:
    assert backoff_delay(index) == delay


def test_backoff_rejects_negative_index() -> None:
    with pytest.raises(ValueError):
        backoff_delay(-1)


# ---------------------------------------------------------------------------
# 2. Request construction
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_successful_delivery_posts_json(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)

    result = await sender.send(_destination(), _webhook())

    assert result.successful
    assert result.attempt_count == 1
    assert result.last_attempt.response_code == 200
    request = handler.requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content)["data"] == {"amount": 150}
    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_signature_header(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)

    await sender.send(_destination(secret="s3cr3t"), _webhook())

    request = handler.requests[0]
    expected = hmac.new(b"s3cr3t", request.content, hashlib.sha256).hexdigest()
    assert request.headers["X-Webhook-Signature"] == f"sha256={expected}"


@pytest.mark.asyncio
async def test_signature_in_query_string(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)
    destination = _destination(
        url=URL + "?existing=1",
        secret="s3cr3t",
        signature=SignatureOptions(location=SignatureLocation.QUERY_STRING, algorithm="sha-1"),
    )

    await sender.send(destination, _webhook())

    request = handler.requests[0]
    expected = hmac.new(b"s3cr3t", request.content, hashlib.sha1).hexdigest()
    assert request.url.params["signature"] == expected
    assert request.url.params["sig_alg"] == "sha1"
    assert request.url.params["existing"] == "1"
    assert "X-Webhook-Signature" not in request.headers


@pytest.mark.asyncio
async def test_no_signature_without_secret_or_when_disabled(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)

    await sender.send(_destination(), _webhook())
    await sender.send(_destination(secret="k", sign=False), _webhook())

    assert all("X-Webhook-Signature" not in r.headers for r in handler.requests)


@pytest.mark.asyncio
async def test_webhook_secret_used_when_destination_has_none(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)

    await sender.send(_destination(), _webhook(secret="from-subscription"))

    assert handler.requests[0].headers["X-Webhook-Signature"].startswith("sha256=")


@pytest.mark.asyncio
async def test_header_precedence(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    config = SenderConfig(default_headers={"X-A": "sender", "X-B": "sender", "X-C": "sender"})
    sender = WebhookSender(config, http_client=mock_client(handler), sleep=sleeps)

    await sender.send(
        _destination(headers={"X-A": "destination"}),
        _webhook(headers={"X-A": "subscription", "X-B": "subscription"}),
    )

    headers = handler.requests[0].headers
    assert (headers["X-A"], headers["X-B"], headers["X-C"]) == ("destination", "subscription", "sender")


@pytest.mark.asyncio
async def test_trace_headers(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(500, 200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)

    result = await sender.send(_destination(), _webhook())

    assert [r.headers["X-Webhook-Attempt"] for r in handler.requests] == ["1", "2"]
    assert {r.headers["X-Webhook-TraceId"] for r in handler.requests} == {result.operation_id}


@pytest.mark.asyncio
async def test_trace_headers_can_be_disabled(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(SenderConfig(trace_headers=False), http_client=mock_client(handler), sleep=sleeps)
    await sender.send(_destination(), _webhook())
    assert "X-Webhook-Attempt" not in handler.requests[0].headers


@pytest.mark.asyncio
async def test_xml_format(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)
    await sender.send(_destination(format=WebhookFormat.XML), _webhook())
    assert handler.requests[0].headers["content-type"] == "text/xml"
    assert handler.requests[0].content.startswith(b"<webhook>")


@pytest.mark.asyncio
async def test_missing_serializer_fails_without_attempt(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(
        serializers=SerializerRegistry([JsonWebhookSerializer()]),
        http_client=mock_client(handler),
        sleep=sleeps,
    )
    with pytest.raises(SerializerNotFoundError):
        await sender.send(_destination(format=WebhookFormat.XML), _webhook())
    assert handler.requests == []


@pytest.mark.asyncio
async def test_missing_signer_fails_without_attempt(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)
    destination = _destination(secret="k", signature=SignatureOptions(algorithm="sha512"))
    with pytest.raises(SignerNotFoundError):
        await sender.send(destination, _webhook())
    assert handler.requests == []


# ---------------------------------------------------------------------------
# 3. Retry policy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("max_retries", [0, 1, 3])
async def test_transport_failures_exhaust_budget(mock_client, sleeps, max_retries: int) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    sender = WebhookSender(http_client=mock_client(refuse), sleep=sleeps)
    result = await sender.send(_destination(retry=RetryOptions(max_retries=max_retries)), _webhook())

    assert [a.number for a in result.attempts] == list(range(1, max_retries + 2))
    assert all(a.failed and not a.has_response for a in result.attempts)
    assert result.attempts[0].response_message == "connection refused"
    assert result.successful is False
    assert sleeps.delays == [backoff_delay(i) for i in range(max_retries)]


@pytest.mark.asyncio
async def test_default_budget_is_three_retries(mock_client, sleeps) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    sender = WebhookSender(http_client=mock_client(refuse), sleep=sleeps)
    result = await sender.send(_destination(), _webhook())
    assert result.attempt_count == 4
    assert sleeps.delays == [0.0, 2.0, 6.0]


@pytest.mark.asyncio
async def test_recovers_after_transient_failure(mock_client, sleeps) -> None:
    calls = {"n": 0}

    def flaky(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadError("reset", request=request)
        return httpx.Response(202)

    sender = WebhookSender(http_client=mock_client(flaky), sleep=sleeps)
    result = await sender.send(_destination(), _webhook())

    assert result.attempt_count == 2
    assert result.last_attempt.response_code == 202
    # the first attempt stays failed, so the result as a whole is not successful
    assert result.attempts[0].failed
    assert result.successful is False


@pytest.mark.asyncio
async def test_error_status_retried_by_default(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(500)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)
    result = await sender.send(_destination(retry=RetryOptions(max_retries=1)), _webhook())
    assert [a.response_code for a in result.attempts] == [500, 500]
    assert result.successful is False


@pytest.mark.asyncio
async def test_error_status_not_retried_when_disabled(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(503)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)
    result = await sender.send(
        _destination(retry=RetryOptions(max_retries=3, retry_on_status=False)), _webhook()
    )
    assert result.attempt_count == 1
    assert result.last_attempt.response_code == 503
    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_408_always_retried_as_timeout(mock_client, recording_handler, sleeps) -> None:
    handler = recording_handler(408, 200)
    sender = WebhookSender(http_client=mock_client(handler), sleep=sleeps)
    result = await sender.send(
        _destination(retry=RetryOptions(max_retries=2, retry_on_status=False)), _webhook()
    )
    assert [a.response_code for a in result.attempts] == [408, 200]
    assert result.attempts[0].timed_out


@pytest.mark.asyncio
async def test_unexpected_request_errors_are_failed_attempts(mock_client, sleeps) -> None:
    calls = {"n": 0}

    def unstable(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503)
        raise ConnectionResetError("peer reset")

    sender = WebhookSender(http_client=mock_client(unstable), sleep=sleeps)
    result = await sender.send(_destination(retry=RetryOptions(max_retries=2)), _webhook())

    assert result.attempt_count == 3
    assert result.attempts[0].response_code == 503
    assert [a.response_message for a in result.attempts[1:]] == ["peer reset", "peer reset"]
    assert all(a.has_completed and a.failed for a in result.attempts)
    assert result.successful is False
    assert sleeps.delays == [0.0, 2.0]


@pytest.mark.asyncio
async def test_closed_client_yields_failed_attempts(mock_client, recording_handler, sleeps) -> None:
    client = mock_client(recording_handler(200))
    await client.aclose()
    sender = WebhookSender(http_client=client, sleep=sleeps)

    result = await sender.send(_destination(retry=RetryOptions(max_retries=1)), _webhook())

    assert result.attempt_count == 2
    assert all(a.failed and not a.has_response for a in result.attempts)


@pytest.mark.asyncio
async def test_attempt_timeout_is_a_failed_attempt(sleeps) -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(slow))
    sender = WebhookSender(http_client=client, sleep=sleeps)
    result = await sender.send(_destination(retry=RetryOptions(max_retries=1, timeout=0.01)), _webhook())

    assert result.attempt_count == 2
    assert all(a.timed_out and a.response_code == 408 for a in result.attempts)
    assert result.successful is False


@pytest.mark.asyncio
async def test_delivery_timeout_stops_retrying(mock_client) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    async def no_sleep(delay: float) -> None:
        return None

    sender = WebhookSender(SenderConfig(delivery_timeout=1.0), http_client=mock_client(refuse), sleep=no_sleep)
    result = await sender.send(_destination(retry=RetryOptions(max_retries=5)), _webhook())

    # the wait before the third attempt (2s) does not fit the 1s budget
    assert result.attempt_count == 2
    assert result.successful is False


@pytest.mark.asyncio
async def test_cancellation_closes_in_flight_attempt() -> None:
    started = asyncio.Event()

    async def hang(request: httpx.Request) -> httpx.Response:
        started.set()
        await asyncio.sleep(60)
        return httpx.Response(200)

    sender = WebhookSender(http_client=httpx.AsyncClient(transport=httpx.MockTransport(hang)))
    results = []

    async def run() -> None:
        results.append(await sender.send(_destination(), _webhook()))

    task = asyncio.create_task(run())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert results == []


# ---------------------------------------------------------------------------
# 4. Client ownership
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_injected_client_is_not_closed(mock_client, recording_handler) -> None:
    client = mock_client(recording_handler(200))
    async with WebhookSender(http_client=client):
        pass
    assert not client.is_closed


@pytest.mark.asyncio
async def test_owned_client_is_created_lazily_and_closed() -> None:
    sender = WebhookSender()
    client = sender.client
    assert sender.client is client
    await sender.aclose()
    assert client.is_closed
