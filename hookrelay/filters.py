"""Subscription filters and the evaluators that match webhooks against them.

A subscription carries zero or more filters, all in one format.  No filter
(or the single ``"*"`` filter) matches everything without consulting any
evaluator; otherwise the evaluator registered for the format decides.

The built-in ``expr`` format accepts boolean Python-like expressions over
the webhook payload::

    eventType == "order.created" and data.amount > 100
    data.customer.country in ["IT", "FR"]

Only names, attribute/subscript access, comparisons, boolean operators,
``not``, unary minus and literals are allowed.
"""

from __future__ import annotations

import ast
import logging
import operator
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from hookrelay.cache import BoundedCache
from hookrelay.exceptions import FilterEvaluationError, MixedFilterFormatsError
from hookrelay.registry import FilterEvaluatorRegistry
from hookrelay.webhook import TimestampFormat, Webhook

logger = logging.getLogger(__name__)

WILDCARD = "*"
EXPRESSION_FORMAT = "expr"

EXPRESSION_CACHE_SIZE = 256


@dataclass(frozen=True)
class WebhookFilter:
    expression: str
    format: str = EXPRESSION_FORMAT

    @property
    def is_wildcard(self) -> bool:
        return self.expression.strip() == WILDCARD


class WebhookFilterRequest:
    """The filters of one subscription, all sharing a single format."""

    def __init__(self, format: Optional[str] = None, filters: Optional[Iterable[str]] = None) -> None:
        self.filters: Tuple[str, ...] = tuple(f for f in (filters or ()) if f and f.strip())
        self.format = format

    @classmethod
    def empty(cls) -> "WebhookFilterRequest":
        return cls()

    @classmethod
    def wildcard(cls) -> "WebhookFilterRequest":
        return cls(None, [WILDCARD])

    @classmethod
    def from_filters(
        cls, filters: Iterable[WebhookFilter], subscription_id: str = ""
    ) -> "WebhookFilterRequest":
        """Build a request, rejecting filters of more than one format."""
        items = [f for f in filters if f.expression and f.expression.strip()]
        if not items:
            return cls.empty()
        formats = {f.format.lower() for f in items if not f.is_wildcard}
        if len(formats) > 1:
            raise MixedFilterFormatsError(subscription_id, formats)
        fmt = formats.pop() if formats else items[0].format
        return cls(fmt, [f.expression for f in items])

    @property
    def is_empty(self) -> bool:
        return not self.filters

    @property
    def is_wildcard(self) -> bool:
        return len(self.filters) == 1 and self.filters[0].strip() == WILDCARD

    def __repr__(self) -> str:
        return f"WebhookFilterRequest(format={self.format!r}, filters={list(self.filters)!r})"


class WebhookFilterEvaluator(ABC):
    """Matches a webhook against the filters of a request in one format."""

    format: str = ""

    @abstractmethod
    async def matches(self, request: WebhookFilterRequest, webhook: Webhook) -> bool:
        ...


async def evaluate_filter(
    request: Optional[WebhookFilterRequest],
    webhook: Webhook,
    registry: FilterEvaluatorRegistry,
) -> bool:
    """Apply the default-accept policy, then dispatch by format.

    Raises :class:`~hookrelay.exceptions.FilterEvaluatorNotFoundError` when no
    evaluator is registered for the request's format.
    """
    if request is None or request.is_empty or request.is_wildcard:
        return True
    evaluator = registry.get(request.format or "")
    logger.debug("Evaluating %s with %s", request, type(evaluator).__name__)
    return await evaluator.matches(request, webhook)


# ---------------------------------------------------------------------------
# Expression evaluator
# ---------------------------------------------------------------------------

_COMPARATORS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_LITERAL_NAMES = {"true": True, "false": False, "null": None}


class _Missing:
    """Value of a path that does not exist in the payload; compares equal to None."""

    def __eq__(self, other: object) -> bool:
        return other is None or isinstance(other, _Missing)

    def __hash__(self) -> int:
        return hash(None)

    def __bool__(self) -> bool:
        return False


class CompiledExpression:
    """A validated expression tree, evaluated against a payload dict."""

    def __init__(self, source: str) -> None:
        self.source = source
        try:
            tree = ast.parse(source.strip(), mode="eval")
        except SyntaxError as exc:
            raise FilterEvaluationError(f"Invalid filter expression '{source}': {exc.msg}") from exc
        self._check(tree.body)
        self._body = tree.body

    def _check(self, node: ast.AST) -> None:
        if isinstance(node, ast.BoolOp):
            for value in node.values:
                self._check(value)
        elif isinstance(node, ast.UnaryOp):
            if not isinstance(node.op, (ast.Not, ast.USub)):
                raise self._unsupported(node)
            self._check(node.operand)
        elif isinstance(node, ast.Compare):
            for op in node.ops:
                if type(op) not in _COMPARATORS:
                    raise self._unsupported(op)
            self._check(node.left)
            for comparator in node.comparators:
                self._check(comparator)
        elif isinstance(node, ast.Attribute):
            self._check(node.value)
        elif isinstance(node, ast.Subscript):
            self._check(node.value)
            self._check(node.slice)
        elif isinstance(node, (ast.List, ast.Tuple)):
            for element in node.elts:
                self._check(element)
        elif not isinstance(node, (ast.Name, ast.Constant)):
            raise self._unsupported(node)

    def _unsupported(self, node: ast.AST) -> FilterEvaluationError:
        return FilterEvaluationError(
            f"Unsupported construct '{type(node).__name__}' in filter expression '{self.source}'"
        )

    def evaluate(self, payload: Dict[str, Any]) -> bool:
        try:
            return bool(self._eval(self._body, payload))
        except FilterEvaluationError:
            raise
        except Exception as exc:
            raise FilterEvaluationError(
                f"Unable to evaluate filter expression '{self.source}': {exc}"
            ) from exc

    def _eval(self, node: ast.AST, payload: Dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in payload:
                return payload[node.id]
            if node.id in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id]
            return _Missing()
        if isinstance(node, ast.Attribute):
            return _lookup(self._eval(node.value, payload), node.attr)
        if isinstance(node, ast.Subscript):
            return _lookup(self._eval(node.value, payload), self._eval(node.slice, payload))
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(self._eval(v, payload) for v in node.values)
            return any(self._eval(v, payload) for v in node.values)
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, payload)
            if isinstance(node.op, ast.Not):
                return not operand
            return -operand
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, payload)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, payload)
                if isinstance(left, _Missing) or isinstance(right, _Missing):
                    if type(op) not in (ast.Eq, ast.NotEq):
                        return False
                if not _COMPARATORS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval(e, payload) for e in node.elts]
        raise self._unsupported(node)


def _lookup(container: Any, key: Any) -> Any:
    if isinstance(container, dict):
        return container[key] if key in container else _Missing()
    if isinstance(container, list) and isinstance(key, int) and not isinstance(key, bool):
        return container[key] if -len(container) <= key < len(container) else _Missing()
    return _Missing()


class ExpressionFilterEvaluator(WebhookFilterEvaluator):
    """Evaluates ``expr`` filters over the JSON shape of a webhook.

    Every filter of a request must hold.  Compiled expressions are kept in a
    bounded LRU cache owned by the evaluator.  The webhook payload is rebuilt
    on every call.
    """

    format = EXPRESSION_FORMAT

    def __init__(
        self,
        expression_cache_size: int = EXPRESSION_CACHE_SIZE,
        expression_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._expressions: BoundedCache[CompiledExpression] = BoundedCache(
            expression_cache_size, expression_ttl, clock
        )

    def compile(self, expression: str) -> CompiledExpression:
        key = expression.strip()
        return self._expressions.get_or_create(key, lambda: CompiledExpression(key))

    def shape_of(self, webhook: Webhook) -> Dict[str, Any]:
        return _shape(webhook)

    async def matches(self, request: WebhookFilterRequest, webhook: Webhook) -> bool:
        compiled: List[CompiledExpression] = [
            self.compile(f) for f in request.filters if f.strip() != WILDCARD
        ]
        payload = self.shape_of(webhook)
        return all(expression.evaluate(payload) for expression in compiled)

    @property
    def cached_expressions(self) -> int:
        return len(self._expressions)


def _shape(webhook: Webhook) -> Dict[str, Any]:
    payload = webhook.to_payload(timestamp_format=TimestampFormat.UNIX)
    payload["subscriptionId"] = webhook.subscription_id
    return payload


def default_filter_evaluators() -> List[WebhookFilterEvaluator]:
    return [ExpressionFilterEvaluator()]


def default_filter_registry() -> FilterEvaluatorRegistry:
    return FilterEvaluatorRegistry(default_filter_evaluators())
