"""Construction of webhooks from subscriptions and events."""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

from hookrelay.events import EventInfo, EventNotification
from hookrelay.exceptions import WebhookCreationError
from hookrelay.subscriptions import WebhookSubscription
from hookrelay.webhook import Webhook

logger = logging.getLogger(__name__)

#: Builds the data of the webhook sent to a subscription for one event.
DataBuilder = Callable[[WebhookSubscription, EventInfo], Union[Any, Awaitable[Any]]]


class WebhookCreateStrategy(str, Enum):
    ONE_PER_EVENT = "one_per_event"
    ONE_PER_NOTIFICATION = "one_per_notification"


class WebhookFactory(ABC):
    """Builds the webhooks sent to one subscription for one notification."""

    @abstractmethod
    async def create(
        self, subscription: WebhookSubscription, notification: EventNotification
    ) -> List[Webhook]:
        ...


class DefaultWebhookFactory(WebhookFactory):
    """Copies identity and data from the events, routing from the subscription.

    With ``ONE_PER_EVENT`` each event yields its own webhook.  With
    ``ONE_PER_NOTIFICATION`` a single webhook is built: its data is the data
    of the only event, or the list of per-event data when there are several.
    A ``data_builder``, sync or async, replaces the data of each event;
    without one the event data is used as is.
    """

    def __init__(
        self,
        strategy: WebhookCreateStrategy = WebhookCreateStrategy.ONE_PER_EVENT,
        data_builder: Optional[DataBuilder] = None,
    ) -> None:
        self.strategy = WebhookCreateStrategy(strategy)
        self.data_builder = data_builder

    async def create_data(self, subscription: WebhookSubscription, event: EventInfo) -> Any:
        if self.data_builder is None:
            return event.data
        data = self.data_builder(subscription, event)
        if inspect.isawaitable(data):
            data = await data
        return data

    def build(
        self, subscription: WebhookSubscription, event: EventInfo, data: Any
    ) -> Webhook:
        return Webhook(
            id=event.id,
            event_type=event.event_type,
            timestamp=event.timestamp,
            data=data,
            subscription_id=subscription.subscription_id,
            name=subscription.name,
            destination_url=subscription.destination_url,
            secret=subscription.secret,
            headers=dict(subscription.headers),
        )

    async def create(
        self, subscription: WebhookSubscription, notification: EventNotification
    ) -> List[Webhook]:
        try:
            if self.strategy is WebhookCreateStrategy.ONE_PER_EVENT:
                return [
                    self.build(subscription, event, await self.create_data(subscription, event))
                    for event in notification
                ]
            if notification.has_single_event:
                event = notification.single_event
                return [self.build(subscription, event, await self.create_data(subscription, event))]
            data = [await self.create_data(subscription, event) for event in notification]
            webhook = Webhook(
                id=notification.notification_id,
                event_type=notification.event_type,
                timestamp=notification.timestamp,
                data=data,
                subscription_id=subscription.subscription_id,
                name=subscription.name,
                destination_url=subscription.destination_url,
                secret=subscription.secret,
                headers=dict(subscription.headers),
            )
            return [webhook]
        except WebhookCreationError:
            raise
        except Exception as exc:
            raise WebhookCreationError(
                f"Unable to create a webhook for subscription '{subscription.subscription_id}'"
            ) from exc
