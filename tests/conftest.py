"""Shared fixtures for the hookrelay test-suite."""

from __future__ import annotations

from typing import Any, Callable, Dict, List

import httpx
import pytest

from hookrelay.events import EventInfo
from hookrelay.subscriptions import WebhookSubscription


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records the requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_event() -> Callable[..., EventInfo]:
    def _make(event_type: str = "order.created", data: Any = None, **kwargs: Any) -> EventInfo:
        if data is None:
            data = {"orderId": "o-1", "amount": 150}
        return EventInfo(event_type, data, **kwargs)

    return _make


@pytest.fixture
def make_subscription() -> Callable[..., WebhookSubscription]:
    counter = {"n": 0}

    def _make(url: str = "https://subscriber.example.com/hook", **kwargs: Any) -> WebhookSubscription:
        counter["n"] += 1
        kwargs.setdefault("subscription_id", f"sub-{counter['n']}")
        kwargs.setdefault("tenant_id", "tenant-1")
        kwargs.setdefault("name", f"subscription {counter['n']}")
        kwargs.setdefault("event_types", ["order.created"])
        return WebhookSubscription(destination_url=url, **kwargs)

    return _make


class RecordingHandler:
    """MockTransport handler answering from a status script and keeping requests."""

    def __init__(self, *statuses: int, by_host: Dict[str, int] | None = None) -> None:
        self.statuses = list(statuses) or [200]
        self.by_host = by_host or {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.by_host:
            return httpx.Response(self.by_host[request.url.host])
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status)


@pytest.fixture
def recording_handler() -> Callable[..., RecordingHandler]:
    return RecordingHandler


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], Any]], httpx.AsyncClient]:
    def _make(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
