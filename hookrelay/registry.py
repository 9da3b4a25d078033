"""Keyed registries for pluggable delivery strategies.

Signers, serializers and filter evaluators are looked up by a string key
(an algorithm name, a payload format, a filter format).  Each concern gets
its own registry subclass so that a missing key raises the matching
:class:`~hookrelay.exceptions.ConfigurationError`.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Generic, Iterable, List, Optional, Type, TypeVar

from hookrelay.exceptions import (
    ComponentNotFoundError,
    FilterEvaluatorNotFoundError,
    SerializerNotFoundError,
    SignerNotFoundError,
)

if TYPE_CHECKING:
    from hookrelay.filters import WebhookFilterEvaluator
    from hookrelay.serializers import WebhookSerializer
    from hookrelay.signing import WebhookSigner

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _normalize(key: str) -> str:
    return key.lower().strip()


class StrategyRegistry(ABC, Generic[T]):
    """Thread-safe, case-insensitive map of keys to strategy instances.

    A strategy may answer to several keys (e.g. ``sha256`` and ``sha-256``);
    every key it declares is registered.  Later registrations win.
    """

    not_found_error: Type[ComponentNotFoundError] = ComponentNotFoundError

    def __init__(self, items: Optional[Iterable[T]] = None) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, T] = {}
        for item in items or ():
            self.register(item)

    @abstractmethod
    def keys_of(self, item: T) -> List[str]:
        """Return the keys *item* should be registered under."""

    def register(self, item: T) -> None:
        keys = [_normalize(k) for k in self.keys_of(item) if k and k.strip()]
        if not keys:
            raise ValueError(f"{type(item).__name__} must declare at least one non-empty key")
        with self._lock:
            for key in keys:
                self._items[key] = item
        logger.debug("Registered %s under %s", type(item).__name__, keys)

    def get(self, key: str) -> T:
        """Look up a strategy by key. Raises the registry's not-found error if missing."""
        with self._lock:
            item = self._items.get(_normalize(key))
            if item is None:
                raise self.not_found_error(key, self._items.keys())
            return item

    def find(self, key: str) -> Optional[T]:
        with self._lock:
            return self._items.get(_normalize(key))

    def get_with_fallback(self, key: str, fallback: Optional[str] = None) -> T:
        """Try ``key`` first; fall back to ``fallback`` if unavailable."""
        item = self.find(key)
        if item is not None:
            return item
        if fallback:
            item = self.find(fallback)
            if item is not None:
                return item
        with self._lock:
            raise self.not_found_error(key, self._items.keys())

    def unregister(self, key: str) -> bool:
        """Remove a key. Returns True if it existed, False otherwise."""
        with self._lock:
            return self._items.pop(_normalize(key), None) is not None

    def has(self, key: str) -> bool:
        with self._lock:
            return _normalize(key) in self._items

    def list_keys(self) -> List[str]:
        """Return the sorted list of registered keys."""
        with self._lock:
            return sorted(self._items.keys())

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class SignerRegistry(StrategyRegistry["WebhookSigner"]):
    not_found_error = SignerNotFoundError

    def keys_of(self, item: "WebhookSigner") -> List[str]:
        return list(item.algorithms)


class SerializerRegistry(StrategyRegistry["WebhookSerializer"]):
    not_found_error = SerializerNotFoundError

    def keys_of(self, item: "WebhookSerializer") -> List[str]:
        return [item.format]


class FilterEvaluatorRegistry(StrategyRegistry["WebhookFilterEvaluator"]):
    not_found_error = FilterEvaluatorNotFoundError

    def keys_of(self, item: "WebhookFilterEvaluator") -> List[str]:
        return [item.format]

