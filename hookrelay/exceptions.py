"""Exception hierarchy for the notification and delivery engine."""

from __future__ import annotations

from typing import Iterable, Optional


class WebhookError(Exception):
    """Base exception for all hookrelay errors."""


class ConfigurationError(WebhookError):
    """Raised when a component is missing or misconfigured.

    Configuration errors are fatal for the subscription being processed
    and are never retried.
    """


class ComponentNotFoundError(ConfigurationError):
    """Raised when a registry has nothing under the requested key."""

    kind = "component"

    def __init__(self, key: str, available: Optional[Iterable[str]] = None):
        self.key = key
        self.available = sorted(available or [])
        super().__init__(f"Unknown {self.kind} '{key}'. Available: {self.available}")


class SerializerNotFoundError(ComponentNotFoundError):
    """Raised when no serializer is registered for a payload format."""

    kind = "serializer"


class SignerNotFoundError(ComponentNotFoundError):
    """Raised when no signer answers to a signature algorithm."""

    kind = "signer"


class FilterEvaluatorNotFoundError(ComponentNotFoundError):
    """Raised when no evaluator is registered for a filter format."""

    kind = "filter format"


class MixedFilterFormatsError(ConfigurationError):
    """Raised when one subscription carries filters of more than one format."""

    def __init__(self, subscription_id: str, formats: Iterable[str]):
        self.subscription_id = subscription_id
        self.formats = sorted(set(formats))
        super().__init__(
            f"Subscription '{subscription_id}' has filters with multiple formats: {self.formats}"
        )


class WebhookSenderError(WebhookError):
    """Raised when the HTTP request for a webhook cannot be built."""


class WebhookSerializationError(WebhookError):
    """Raised when a webhook cannot be rendered to its wire format."""


class WebhookCreationError(WebhookError):
    """Raised when the transformer pipeline or the factory fails."""


class FilterEvaluationError(WebhookError):
    """Raised when a filter expression cannot be compiled or evaluated."""


class SubscriptionResolutionError(WebhookError):
    """Raised when the subscriptions for an event cannot be resolved."""


class WebhookVerificationError(WebhookError):
    """Raised when a destination cannot be verified."""


class InvalidSignatureError(WebhookError):
    """Raised on the receiving side when a signature does not match."""
