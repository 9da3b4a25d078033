"""Events, notifications and the event-data transformer pipeline."""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from hookrelay.exceptions import WebhookCreationError

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EventInfo:
    """A fact that occurred in the owning system.

    Instances are immutable: use :meth:`with_data` to obtain a copy carrying
    a different payload.
    """

    event_type: str
    data: Any
    subject: Optional[str] = None
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=_utcnow)
    data_version: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.event_type or not self.event_type.strip():
            raise ValueError("event_type cannot be empty")
        if self.data is None:
            raise ValueError("data cannot be None")
        if not self.id:
            object.__setattr__(self, "id", _new_id())

    def with_data(self, data: Any) -> "EventInfo":
        """Return a new event identical to this one but carrying *data*."""
        if data is None:
            raise ValueError("data cannot be None")
        return replace(self, data=data)

    def get_value(self, path: str, default: Any = None) -> Any:
        """Walk a dotted *path* through nested mappings and attributes of the data."""
        current: Any = self.data
        for part in path.split("."):
            if isinstance(current, Mapping):
                if part not in current:
                    return default
                current = current[part]
            elif isinstance(current, Sequence) and not isinstance(current, str) and part.isdigit():
                index = int(part)
                if index >= len(current):
                    return default
                current = current[index]
            elif hasattr(current, part):
                current = getattr(current, part)
            else:
                return default
        return current


class EventNotification:
    """An ordered, non-empty batch of events sharing one event type."""

    def __init__(
        self,
        event_type: str,
        events: Iterable[EventInfo],
        *,
        notification_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not event_type:
            raise ValueError("The event type cannot be empty")
        items: Tuple[EventInfo, ...] = tuple(events)
        if not items:
            raise ValueError("The list of events cannot be empty")
        for event in items:
            if event.event_type.lower() != event_type.lower():
                raise ValueError(f"The event {event.event_type} is not of the type {event_type}")
        self.event_type = event_type
        self.events = items
        self.notification_id = notification_id or str(uuid.uuid4())
        self.timestamp = timestamp or _utcnow()
        self.properties: Dict[str, Any] = dict(properties or {})

    @classmethod
    def from_event(cls, event: EventInfo) -> "EventNotification":
        """Wrap a single event; the notification takes the event's id and timestamp."""
        return cls(event.event_type, [event], notification_id=event.id, timestamp=event.timestamp)

    @classmethod
    def of(cls, events: Union[EventInfo, "EventNotification", Sequence[EventInfo]]) -> "EventNotification":
        """Coerce a single event, a list of same-typed events or a notification."""
        if isinstance(events, EventNotification):
            return events
        if isinstance(events, EventInfo):
            return cls.from_event(events)
        items = list(events)
        if not items:
            raise ValueError("The list of events cannot be empty")
        return cls(items[0].event_type, items)

    @property
    def has_single_event(self) -> bool:
        return len(self.events) == 1

    @property
    def single_event(self) -> EventInfo:
        if not self.has_single_event:
            raise ValueError("The notification has more than one event")
        return self.events[0]

    def with_events(self, events: Iterable[EventInfo]) -> "EventNotification":
        """Return a copy with the same identity and properties but other events."""
        return EventNotification(
            self.event_type,
            events,
            notification_id=self.notification_id,
            timestamp=self.timestamp,
            properties=self.properties,
        )

    def __iter__(self) -> Iterator[EventInfo]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)

    def __repr__(self) -> str:
        return (
            f"EventNotification(event_type={self.event_type!r}, "
            f"notification_id={self.notification_id!r}, events={len(self.events)})"
        )


# ---------------------------------------------------------------------------
# Transformers
# ---------------------------------------------------------------------------


class EventDataTransformer(ABC):
    """Replaces the data of the events it handles before webhooks are built."""

    @abstractmethod
    def handles(self, event: EventInfo) -> bool:
        """Return True if this transformer applies to *event*."""

    @abstractmethod
    async def create_data(self, event: EventInfo) -> Any:
        """Return the data that replaces ``event.data``."""


class EventTransformerPipeline:
    """Runs every matching transformer, in order, over each event.

    Transformers are chained: each one sees the event as left by the
    previous matching transformer.
    """

    def __init__(self, transformers: Optional[Iterable[EventDataTransformer]] = None) -> None:
        self._transformers: List[EventDataTransformer] = list(transformers or [])

    def add(self, transformer: EventDataTransformer) -> None:
        self._transformers.append(transformer)

    def __len__(self) -> int:
        return len(self._transformers)

    async def transform(self, event: EventInfo) -> EventInfo:
        for transformer in self._transformers:
            try:
                if not transformer.handles(event):
                    continue
                data = await transformer.create_data(event)
                event = event.with_data(data)
            except Exception as exc:
                raise WebhookCreationError(
                    f"Unable to transform the data of event '{event.id}' with {type(transformer).__name__}"
                ) from exc
            logger.debug("Transformed event %s with %s", event.id, type(transformer).__name__)
        return event

    async def transform_notification(self, notification: EventNotification) -> EventNotification:
        if not self._transformers:
            return notification
        events = [await self.transform(event) for event in notification]
        return notification.with_events(events)
