"""Explicit composition root for a :class:`WebhookNotifier`."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

import httpx

from hookrelay.config import HookRelaySettings, NotifierConfig, SenderConfig
from hookrelay.delivery_log import DeliveryResultLogger
from hookrelay.events import EventDataTransformer, EventTransformerPipeline
from hookrelay.exceptions import ConfigurationError
from hookrelay.factory import DefaultWebhookFactory, WebhookFactory
from hookrelay.filters import WebhookFilterEvaluator, default_filter_evaluators
from hookrelay.notifier import DeliveryErrorHook, DeliveryResultHook, WebhookNotifier
from hookrelay.registry import FilterEvaluatorRegistry, SerializerRegistry, SignerRegistry
from hookrelay.sender import Sleep, WebhookSender
from hookrelay.serializers import WebhookSerializer, default_serializers
from hookrelay.signing import WebhookSigner, default_signers
from hookrelay.subscriptions import (
    InMemorySubscriptionResolver,
    WebhookSubscription,
    WebhookSubscriptionResolver,
)

logger = logging.getLogger(__name__)


class WebhookNotifierBuilder:
    """Collects collaborators, then wires a notifier with defaults filled in once.

    Every ``with_*``/``add_*`` method returns the builder::

        notifier = (
            WebhookNotifierBuilder()
            .with_resolver(resolver)
            .add_filter_evaluator(MyEvaluator())
            .build()
        )
    """

    def __init__(self) -> None:
        self._resolver: Optional[WebhookSubscriptionResolver] = None
        self._sender_config: Optional[SenderConfig] = None
        self._notifier_config: Optional[NotifierConfig] = None
        self._signers: List[WebhookSigner] = []
        self._serializers: List[WebhookSerializer] = []
        self._evaluators: List[WebhookFilterEvaluator] = []
        self._transformers: List[EventDataTransformer] = []
        self._factory: Optional[WebhookFactory] = None
        self._result_logger: Optional[DeliveryResultLogger] = None
        self._http_client: Optional[httpx.AsyncClient] = None
        self._sleep: Optional[Sleep] = None
        self._on_result: Optional[DeliveryResultHook] = None
        self._on_error: Optional[DeliveryErrorHook] = None

    @classmethod
    def from_settings(cls, settings: Optional[HookRelaySettings] = None) -> "WebhookNotifierBuilder":
        settings = settings or HookRelaySettings.from_env()
        return (
            cls()
            .with_sender_config(settings.sender_config())
            .with_notifier_config(settings.notifier_config())
        )

    def with_resolver(self, resolver: WebhookSubscriptionResolver) -> "WebhookNotifierBuilder":
        self._resolver = resolver
        return self

    def with_subscriptions(self, subscriptions: Iterable[WebhookSubscription]) -> "WebhookNotifierBuilder":
        return self.with_resolver(InMemorySubscriptionResolver(list(subscriptions)))

    def with_sender_config(self, config: SenderConfig) -> "WebhookNotifierBuilder":
        self._sender_config = config
        return self

    def with_notifier_config(self, config: NotifierConfig) -> "WebhookNotifierBuilder":
        self._notifier_config = config
        return self

    def add_signer(self, signer: WebhookSigner) -> "WebhookNotifierBuilder":
        self._signers.append(signer)
        return self

    def add_serializer(self, serializer: WebhookSerializer) -> "WebhookNotifierBuilder":
        self._serializers.append(serializer)
        return self

    def add_filter_evaluator(self, evaluator: WebhookFilterEvaluator) -> "WebhookNotifierBuilder":
        self._evaluators.append(evaluator)
        return self

    def add_transformer(self, transformer: EventDataTransformer) -> "WebhookNotifierBuilder":
        self._transformers.append(transformer)
        return self

    def with_factory(self, factory: WebhookFactory) -> "WebhookNotifierBuilder":
        self._factory = factory
        return self

    def with_result_logger(self, result_logger: DeliveryResultLogger) -> "WebhookNotifierBuilder":
        self._result_logger = result_logger
        return self

    def with_http_client(self, client: httpx.AsyncClient) -> "WebhookNotifierBuilder":
        self._http_client = client
        return self

    def with_sleep(self, sleep: Sleep) -> "WebhookNotifierBuilder":
        self._sleep = sleep
        return self

    def on_delivery_result(self, hook: DeliveryResultHook) -> "WebhookNotifierBuilder":
        self._on_result = hook
        return self

    def on_delivery_error(self, hook: DeliveryErrorHook) -> "WebhookNotifierBuilder":
        self._on_error = hook
        return self

    def build(self) -> WebhookNotifier:
        """Raises :class:`ConfigurationError` when no resolver was given."""
        if self._resolver is None:
            raise ConfigurationError("A subscription resolver is required to build a notifier")
        sender_config = self._sender_config or SenderConfig()
        notifier_config = self._notifier_config or NotifierConfig()

        # Built-ins first so that added strategies override them by key.
        signers = SignerRegistry(default_signers() + self._signers)
        serializers = SerializerRegistry(
            default_serializers(notifier_config.fields, notifier_config.timestamp_format) + self._serializers
        )
        evaluators = FilterEvaluatorRegistry(default_filter_evaluators() + self._evaluators)

        sender = WebhookSender(
            sender_config,
            serializers=serializers,
            signers=signers,
            http_client=self._http_client,
            sleep=self._sleep or asyncio.sleep,
        )
        logger.debug(
            "Building notifier with signers=%s serializers=%s filters=%s",
            signers.list_keys(),
            serializers.list_keys(),
            evaluators.list_keys(),
        )
        return WebhookNotifier(
            self._resolver,
            sender,
            factory=self._factory or DefaultWebhookFactory(notifier_config.webhook_strategy),
            filters=evaluators,
            transformers=EventTransformerPipeline(self._transformers),
            result_logger=self._result_logger,
            config=notifier_config,
            on_delivery_result=self._on_result,
            on_delivery_error=self._on_error,
        )
