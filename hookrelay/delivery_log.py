"""Sinks for delivery results."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from hookrelay.results import WebhookDeliveryResult
from hookrelay.subscriptions import WebhookSubscription

logger = logging.getLogger(__name__)


class DeliveryResultLogger(ABC):
    """Receives every delivery result produced by the notifier.

    Failures raised here are logged by the notifier and otherwise ignored.
    """

    @abstractmethod
    async def log(self, subscription: WebhookSubscription, result: WebhookDeliveryResult) -> None:
        ...


class NullDeliveryResultLogger(DeliveryResultLogger):
    async def log(self, subscription: WebhookSubscription, result: WebhookDeliveryResult) -> None:
        return None


class LoggingDeliveryResultLogger(DeliveryResultLogger):
    """Writes one record per result and one debug record per attempt."""

    def __init__(self, target: Optional[logging.Logger] = None) -> None:
        self._logger = target or logger

    async def log(self, subscription: WebhookSubscription, result: WebhookDeliveryResult) -> None:
        destination = result.destination.display_url if result.destination else "-"
        if result.successful:
            self._logger.info(
                "Delivered webhook %s to %s for subscription %s in %d attempt(s)",
                result.webhook.id if result.webhook else "-",
                destination,
                subscription.subscription_id,
                result.attempt_count,
            )
        else:
            last = result.last_attempt
            self._logger.warning(
                "Failed to deliver webhook %s to %s for subscription %s after %d attempt(s): %s",
                result.webhook.id if result.webhook else "-",
                destination,
                subscription.subscription_id,
                result.attempt_count,
                result.error or (last.response_message if last else "no attempt"),
            )
        for attempt in result.attempts:
            self._logger.debug(
                "Attempt %d of %s: status=%s message=%s elapsed=%s",
                attempt.number,
                result.operation_id,
                attempt.response_code,
                attempt.response_message,
                attempt.elapsed,
            )


class InMemoryDeliveryResultLogger(DeliveryResultLogger):
    """Keeps every logged result in a list."""

    def __init__(self) -> None:
        self.entries: List[Tuple[WebhookSubscription, WebhookDeliveryResult]] = []

    async def log(self, subscription: WebhookSubscription, result: WebhookDeliveryResult) -> None:
        self.entries.append((subscription, result))

    def results_for(self, subscription_id: str) -> List[WebhookDeliveryResult]:
        return [r for s, r in self.entries if s.subscription_id == subscription_id]
