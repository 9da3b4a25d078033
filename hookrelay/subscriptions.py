"""Subscriptions and the resolvers that select them for an event."""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from hookrelay.filters import WebhookFilter, WebhookFilterRequest
from hookrelay.webhook import RetryOptions, SignatureOptions, WebhookDestination, WebhookFormat

logger = logging.getLogger(__name__)

ALL_EVENTS = "*"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class WebhookSubscription(BaseModel):
    """A tenant's interest in a set of event types, delivered to one URL."""

    subscription_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: Optional[str] = None
    name: Optional[str] = None
    destination_url: str = Field(..., min_length=1)
    secret: Optional[str] = Field(default=None, repr=False)
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    event_types: List[str] = Field(default_factory=list)
    filters: List[WebhookFilter] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)
    retry: Optional[RetryOptions] = None
    sign: Optional[bool] = None
    signature: Optional[SignatureOptions] = None
    format: Optional[WebhookFormat] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("event_types")
    @classmethod
    def _normalize_event_types(cls, value: List[str]) -> List[str]:
        return sorted({v.strip() for v in value if v and v.strip()})

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def handles(self, event_type: str) -> bool:
        """True if *event_type* matches one of the subscribed patterns.

        Patterns are exact names (case-insensitive), ``prefix.*`` or ``*``.
        """
        wanted = event_type.lower()
        for pattern in self.event_types:
            pattern = pattern.lower()
            if pattern == ALL_EVENTS or pattern == wanted:
                return True
            if pattern.endswith(".*") and wanted.startswith(pattern[:-1]):
                return True
        return False

    def as_destination(self) -> WebhookDestination:
        return WebhookDestination(
            url=self.destination_url,
            name=self.name,
            secret=self.secret,
            sign=self.sign,
            signature=self.signature,
            retry=self.retry,
            headers=dict(self.headers),
            format=self.format,
        )

    def as_filter(self) -> WebhookFilterRequest:
        """Raises :class:`~hookrelay.exceptions.MixedFilterFormatsError` on mixed formats."""
        return WebhookFilterRequest.from_filters(self.filters, self.subscription_id)


class WebhookSubscriptionResolver(ABC):
    """Supplies the subscriptions interested in an event type for a tenant."""

    @abstractmethod
    async def resolve(
        self, tenant_id: Optional[str], event_type: str, active_only: bool = True
    ) -> List[WebhookSubscription]:
        ...


class InMemorySubscriptionResolver(WebhookSubscriptionResolver):
    """Thread-safe in-memory subscription registry."""

    def __init__(self, subscriptions: Optional[List[WebhookSubscription]] = None) -> None:
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, WebhookSubscription] = {}
        for subscription in subscriptions or []:
            self.register(subscription)

    # -- CRUD -------------------------------------------------------------

    def register(self, subscription: WebhookSubscription) -> WebhookSubscription:
        with self._lock:
            self._subscriptions[subscription.subscription_id] = subscription
        logger.debug(
            "Registered subscription %s for %s", subscription.subscription_id, subscription.event_types
        )
        return subscription

    def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        with self._lock:
            return self._subscriptions.get(subscription_id)

    def list_subscriptions(self, tenant_id: Optional[str] = None) -> List[WebhookSubscription]:
        with self._lock:
            return [
                s for s in self._subscriptions.values()
                if tenant_id is None or s.tenant_id == tenant_id
            ]

    def delete(self, subscription_id: str) -> bool:
        """Delete a subscription. Returns True if it existed."""
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def set_status(self, subscription_id: str, status: SubscriptionStatus) -> bool:
        """Change the status of a subscription. Returns True if found."""
        with self._lock:
            current = self._subscriptions.get(subscription_id)
            if current is None:
                return False
            self._subscriptions[subscription_id] = current.model_copy(update={"status": status})
            return True

    def reset(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    # -- Query ------------------------------------------------------------

    async def resolve(
        self, tenant_id: Optional[str], event_type: str, active_only: bool = True
    ) -> List[WebhookSubscription]:
        with self._lock:
            return [
                s for s in self._subscriptions.values()
                if (tenant_id is None or s.tenant_id == tenant_id)
                and (not active_only or s.is_active)
                and s.handles(event_type)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)
