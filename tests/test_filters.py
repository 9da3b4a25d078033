"""Tests for filter requests, the expression evaluator and the bounded cache."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from hookrelay.cache import BoundedCache
from hookrelay.exceptions import (
    FilterEvaluationError,
    FilterEvaluatorNotFoundError,
    MixedFilterFormatsError,
)
from hookrelay.filters import (
    ExpressionFilterEvaluator,
    WebhookFilter,
    WebhookFilterEvaluator,
    WebhookFilterRequest,
    default_filter_registry,
    evaluate_filter,
)
from hookrelay.registry import FilterEvaluatorRegistry
from hookrelay.webhook import Webhook


def _webhook(data=None, webhook_id: str = "evt-1") -> Webhook:
    return Webhook(
        id=webhook_id,
        event_type="order.created",
        timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
        subscription_id="sub-1",
        name="orders",
        data=data if data is not None else {"amount": 150, "customer": {"country": "IT"}, "tags": ["vip"]},
    )


class _ExplodingEvaluator(WebhookFilterEvaluator):
    format = "linq"

    async def matches(self, request, webhook) -> bool:
        raise AssertionError("must not be called")


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# 1. Filter requests
# ---------------------------------------------------------------------------


def test_request_from_no_filters_is_empty() -> None:
    request = WebhookFilterRequest.from_filters([])
    assert request.is_empty
    assert not request.is_wildcard


def test_request_single_wildcard() -> None:
    request = WebhookFilterRequest.from_filters([WebhookFilter("*")])
    assert request.is_wildcard


def test_request_rejects_mixed_formats() -> None:
    with pytest.raises(MixedFilterFormatsError) as info:
        WebhookFilterRequest.from_filters(
            [WebhookFilter("data.amount > 1", "expr"), WebhookFilter("x => true", "linq")], "sub-9"
        )
    assert info.value.subscription_id == "sub-9"
    assert info.value.formats == ["expr", "linq"]


def test_request_ignores_blank_filters() -> None:
    request = WebhookFilterRequest("expr", ["", "  ", "data.amount > 1"])
    assert request.filters == ("data.amount > 1",)


# ---------------------------------------------------------------------------
# 2. Default-accept policy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "request_",
    [None, WebhookFilterRequest.empty(), WebhookFilterRequest.wildcard(), WebhookFilterRequest("linq", ["*"])],
)
async def test_empty_or_wildcard_matches_without_evaluator(request_) -> None:
    registry = FilterEvaluatorRegistry([_ExplodingEvaluator()])
    assert await evaluate_filter(request_, _webhook({"anything": None}), registry) is True


@pytest.mark.asyncio
async def test_unregistered_format_raises() -> None:
    with pytest.raises(FilterEvaluatorNotFoundError, match="Unknown filter format 'jsonpath'"):
        await evaluate_filter(
            WebhookFilterRequest("jsonpath", ["$.data"]), _webhook(), default_filter_registry()
        )


# ---------------------------------------------------------------------------
# 3. Expression evaluator
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "expression, expected",
    [
        ('eventType == "order.created"', True),
        ("data.amount > 100", True),
        ("data.amount > 100 and data.amount < 120", False),
        ('data.customer.country in ["IT", "FR"]', True),
        ('data["customer"]["country"] != "IT"', False),
        ('"vip" in data.tags', True),
        ("data.tags[0] == 'vip'", True),
        ("data.missing == null", True),
        ("data.missing > 5", False),
        ("not data.missing", True),
        ("name == 'orders' or false", True),
        ("subscriptionId == 'sub-1'", True),
        ("-data.amount < 0", True),
        ("100 < data.amount <= 150", True),
    ],
)
async def test_expression_matches(expression: str, expected: bool) -> None:
    evaluator = ExpressionFilterEvaluator()
    request = WebhookFilterRequest("expr", [expression])
    assert await evaluator.matches(request, _webhook()) is expected


@pytest.mark.asyncio
async def test_all_filters_must_hold() -> None:
    evaluator = ExpressionFilterEvaluator()
    webhook = _webhook()
    assert await evaluator.matches(WebhookFilterRequest("expr", ["data.amount > 1", "data.amount < 200"]), webhook)
    assert not await evaluator.matches(WebhookFilterRequest("expr", ["data.amount > 1", "data.amount > 200"]), webhook)


@pytest.mark.parametrize(
    "expression",
    ["__import__('os').system('true')", "data.amount + 1 > 2", "[x for x in data.tags]", "lambda: 1", "data.amount >"],
)
def test_unsafe_or_invalid_expressions_rejected(expression: str) -> None:
    with pytest.raises(FilterEvaluationError):
        ExpressionFilterEvaluator().compile(expression)


@pytest.mark.asyncio
async def test_type_errors_surface_as_evaluation_errors() -> None:
    evaluator = ExpressionFilterEvaluator()
    with pytest.raises(FilterEvaluationError):
        await evaluator.matches(WebhookFilterRequest("expr", ["data.customer > 3"]), _webhook())


@pytest.mark.asyncio
async def test_expression_cache_is_bounded() -> None:
    evaluator = ExpressionFilterEvaluator(expression_cache_size=2)
    for i in range(5):
        await evaluator.matches(WebhookFilterRequest("expr", [f"data.amount > {i}"]), _webhook(webhook_id=f"evt-{i}"))
    assert evaluator.cached_expressions == 2


@pytest.mark.asyncio
async def test_webhooks_sharing_an_id_are_matched_on_their_own_data() -> None:
    evaluator = ExpressionFilterEvaluator()
    request = WebhookFilterRequest("expr", ["data.amount > 100"])
    for _ in range(50):
        small = _webhook({"amount": 50})
        assert await evaluator.matches(request, small) is False
        del small
        large = _webhook({"amount": 500})
        assert await evaluator.matches(request, large) is True
        del large


def test_expression_cache_expires() -> None:
    clock = _Clock()
    evaluator = ExpressionFilterEvaluator(expression_ttl=60, clock=clock)
    first = evaluator.compile("data.amount > 1")
    clock.now = 61
    assert evaluator.compile("data.amount > 1") is not first


def test_compiled_expression_is_reused() -> None:
    evaluator = ExpressionFilterEvaluator()
    assert evaluator.compile("data.amount > 1") is evaluator.compile(" data.amount > 1 ")


# ---------------------------------------------------------------------------
# 4. Bounded cache
# ---------------------------------------------------------------------------


def test_cache_evicts_least_recently_used() -> None:
    cache: BoundedCache[int] = BoundedCache(2)
    cache.put("a", 1)
    cache.put("b", 2)
    assert cache.get("a") == 1
    cache.put("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_cache_expires_entries() -> None:
    clock = _Clock()
    cache: BoundedCache[int] = BoundedCache(10, ttl=300, clock=clock)
    cache.put("a", 1)
    clock.now = 299
    assert cache.get("a") == 1
    clock.now = 300
    assert cache.get("a") is None
    assert len(cache) == 0


def test_cache_rejects_invalid_bounds() -> None:
    with pytest.raises(ValueError):
        BoundedCache(0)
    with pytest.raises(ValueError):
        BoundedCache(1, ttl=0)
