"""The notifier: resolve subscriptions, then build, filter and send per subscription."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from hookrelay.config import NotifierConfig
from hookrelay.delivery_log import DeliveryResultLogger, NullDeliveryResultLogger
from hookrelay.events import EventInfo, EventNotification, EventTransformerPipeline
from hookrelay.exceptions import SubscriptionResolutionError, WebhookCreationError
from hookrelay.factory import DefaultWebhookFactory, WebhookFactory
from hookrelay.filters import default_filter_registry, evaluate_filter
from hookrelay.registry import FilterEvaluatorRegistry
from hookrelay.results import WebhookDeliveryResult, WebhookNotificationResult
from hookrelay.sender import WebhookSender
from hookrelay.subscriptions import WebhookSubscription, WebhookSubscriptionResolver
from hookrelay.webhook import Webhook

logger = logging.getLogger(__name__)

DeliveryResultHook = Callable[
    [WebhookSubscription, Webhook, WebhookDeliveryResult], Union[None, Awaitable[None]]
]
DeliveryErrorHook = Callable[
    [WebhookSubscription, Optional[Webhook], BaseException], Union[None, Awaitable[None]]
]

Notifiable = Union[EventInfo, EventNotification, Sequence[EventInfo]]


async def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
    if hook is None:
        return
    value = hook(*args)
    if inspect.isawaitable(value):
        await value


class WebhookNotifier:
    """Delivers one notification to every subscription interested in it.

    Subscriptions are processed concurrently, at most ``max_parallelism`` at
    a time.  A failure while handling one subscription is recorded in the
    result as a failed delivery and reported to ``on_delivery_error``; it
    never affects the others.  Only a failure to resolve the subscriptions
    is raised to the caller.
    """

    def __init__(
        self,
        resolver: WebhookSubscriptionResolver,
        sender: WebhookSender,
        factory: Optional[WebhookFactory] = None,
        filters: Optional[FilterEvaluatorRegistry] = None,
        transformers: Optional[EventTransformerPipeline] = None,
        result_logger: Optional[DeliveryResultLogger] = None,
        config: Optional[NotifierConfig] = None,
        on_delivery_result: Optional[DeliveryResultHook] = None,
        on_delivery_error: Optional[DeliveryErrorHook] = None,
    ) -> None:
        self.config = config or NotifierConfig()
        self.resolver = resolver
        self.sender = sender
        self.factory = factory or DefaultWebhookFactory(self.config.webhook_strategy)
        self.filters = filters if filters is not None else default_filter_registry()
        self.transformers = transformers or EventTransformerPipeline()
        self.result_logger = result_logger or NullDeliveryResultLogger()
        self.on_delivery_result = on_delivery_result
        self.on_delivery_error = on_delivery_error

    async def aclose(self) -> None:
        await self.sender.aclose()

    async def __aenter__(self) -> "WebhookNotifier":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- Entry point ------------------------------------------------------

    async def notify(self, tenant_id: Optional[str], event: Notifiable) -> WebhookNotificationResult:
        """Notify the subscribers of *tenant_id* about *event*.

        *event* is a single event, a list of events of one type or an
        :class:`EventNotification`.
        """
        notification = EventNotification.of(event)
        subscriptions = await self._resolve(tenant_id, notification.event_type)
        result = WebhookNotificationResult(notification)
        if not subscriptions:
            logger.info(
                "No subscriptions for %s of tenant %s", notification.event_type, tenant_id
            )
            return result

        semaphore = asyncio.Semaphore(self.config.max_parallelism)

        async def run(subscription: WebhookSubscription) -> None:
            async with semaphore:
                await self._notify_subscription(result, notification, subscription)

        await asyncio.gather(*(run(s) for s in subscriptions))

        logger.info(
            "Notification %s (%s) processed for %d subscription(s): %d delivered, %d failed",
            notification.notification_id,
            notification.event_type,
            len(subscriptions),
            sum(len(v) for v in result.successful.values()),
            sum(len(v) for v in result.failed.values()),
        )
        return result

    async def _resolve(self, tenant_id: Optional[str], event_type: str):
        try:
            return list(await self.resolver.resolve(tenant_id, event_type, True))
        except Exception as exc:
            logger.error(
                "Unable to resolve subscriptions for %s of tenant %s", event_type, tenant_id, exc_info=True
            )
            raise SubscriptionResolutionError(
                f"Unable to resolve the subscriptions to '{event_type}' for tenant '{tenant_id}'"
            ) from exc

    # -- Per subscription -------------------------------------------------

    async def _notify_subscription(
        self,
        result: WebhookNotificationResult,
        notification: EventNotification,
        subscription: WebhookSubscription,
    ) -> None:
        subscription_id = subscription.subscription_id
        logger.debug("Evaluating subscription %s for %s", subscription_id, notification.event_type)
        try:
            transformed = await self.transformers.transform_notification(notification)
            webhooks = await self.factory.create(subscription, transformed)
        except WebhookCreationError as exc:
            await self._fail(result, subscription, None, exc)
            return
        except Exception as exc:
            error = WebhookCreationError(f"Unable to create a webhook for subscription '{subscription_id}'")
            error.__cause__ = exc
            await self._fail(result, subscription, None, error)
            return

        webhooks = [w for w in webhooks or [] if w is not None and w.data is not None]
        if not webhooks:
            logger.warning(
                "No webhook created for subscription %s and %s", subscription_id, notification.event_type
            )
            return

        for webhook in webhooks:
            await self._deliver(result, subscription, webhook)

    async def _deliver(
        self,
        result: WebhookNotificationResult,
        subscription: WebhookSubscription,
        webhook: Webhook,
    ) -> None:
        subscription_id = subscription.subscription_id
        try:
            request = subscription.as_filter()
            if not await evaluate_filter(request, webhook, self.filters):
                logger.debug("Webhook %s not matched by subscription %s", webhook.id, subscription_id)
                return
            logger.debug("Webhook %s matched by subscription %s", webhook.id, subscription_id)
            delivery = await self.sender.send(subscription.as_destination(), webhook)
        except Exception as exc:
            await self._fail(result, subscription, webhook, exc)
            return

        result.add_delivery(subscription_id, delivery)
        await self._log_result(subscription, delivery)
        try:
            await _call_hook(self.on_delivery_result, subscription, webhook, delivery)
        except Exception:
            logger.exception("Delivery result hook failed for subscription %s", subscription_id)

    async def _fail(
        self,
        result: WebhookNotificationResult,
        subscription: WebhookSubscription,
        webhook: Optional[Webhook],
        error: BaseException,
    ) -> None:
        subscription_id = subscription.subscription_id
        logger.error(
            "Error while notifying subscription %s: %s", subscription_id, error, exc_info=error
        )
        result.add_delivery(subscription_id, WebhookDeliveryResult.fail(webhook, None, error))
        try:
            await _call_hook(self.on_delivery_error, subscription, webhook, error)
        except Exception:
            logger.exception("Delivery error hook failed for subscription %s", subscription_id)

    async def _log_result(self, subscription: WebhookSubscription, delivery: WebhookDeliveryResult) -> None:
        try:
            await self.result_logger.log(subscription, delivery)
        except Exception:
            logger.warning(
                "Unable to log the delivery result %s of subscription %s",
                delivery.operation_id,
                subscription.subscription_id,
                exc_info=True,
            )
