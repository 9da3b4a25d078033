"""hookrelay: signed webhook notification and delivery."""

from hookrelay.builder import WebhookNotifierBuilder
from hookrelay.config import (
    HookRelaySettings,
    NotifierConfig,
    SenderConfig,
    configure_logging,
)
from hookrelay.delivery_log import (
    DeliveryResultLogger,
    InMemoryDeliveryResultLogger,
    LoggingDeliveryResultLogger,
    NullDeliveryResultLogger,
)
from hookrelay.events import (
    EventDataTransformer,
    EventInfo,
    EventNotification,
    EventTransformerPipeline,
)
from hookrelay.exceptions import (
    ConfigurationError,
    FilterEvaluationError,
    FilterEvaluatorNotFoundError,
    InvalidSignatureError,
    MixedFilterFormatsError,
    SerializerNotFoundError,
    SignerNotFoundError,
    SubscriptionResolutionError,
    WebhookCreationError,
    WebhookError,
    WebhookSenderError,
    WebhookSerializationError,
    WebhookVerificationError,
)
from hookrelay.factory import DefaultWebhookFactory, WebhookCreateStrategy, WebhookFactory
from hookrelay.filters import (
    ExpressionFilterEvaluator,
    WebhookFilter,
    WebhookFilterEvaluator,
    WebhookFilterRequest,
)
from hookrelay.notifier import WebhookNotifier
from hookrelay.receiver import ReceivedWebhook, ensure_signature, parse_webhook, verify_signature
from hookrelay.results import (
    WebhookDeliveryAttempt,
    WebhookDeliveryResult,
    WebhookNotificationResult,
)
from hookrelay.sender import WebhookSender
from hookrelay.serializers import JsonWebhookSerializer, WebhookSerializer, XmlWebhookSerializer
from hookrelay.signing import (
    Sha1WebhookSigner,
    Sha256WebhookSigner,
    WebhookSigner,
    create_signature,
)
from hookrelay.subscriptions import (
    InMemorySubscriptionResolver,
    SubscriptionStatus,
    WebhookSubscription,
    WebhookSubscriptionResolver,
)
from hookrelay.verifier import (
    DestinationVerificationResult,
    VerificationOptions,
    VerificationTokenLocation,
    WebhookDestinationVerifier,
)
from hookrelay.webhook import (
    RetryOptions,
    SignatureLocation,
    SignatureOptions,
    TimestampFormat,
    Webhook,
    WebhookDestination,
    WebhookFormat,
)

__all__ = [
    "WebhookNotifierBuilder",
    "HookRelaySettings",
    "NotifierConfig",
    "SenderConfig",
    "configure_logging",
    "DeliveryResultLogger",
    "InMemoryDeliveryResultLogger",
    "LoggingDeliveryResultLogger",
    "NullDeliveryResultLogger",
    "EventDataTransformer",
    "EventInfo",
    "EventNotification",
    "EventTransformerPipeline",
    "ConfigurationError",
    "FilterEvaluationError",
    "FilterEvaluatorNotFoundError",
    "InvalidSignatureError",
    "MixedFilterFormatsError",
    "SerializerNotFoundError",
    "SignerNotFoundError",
    "SubscriptionResolutionError",
    "WebhookCreationError",
    "WebhookError",
    "WebhookSenderError",
    "WebhookSerializationError",
    "WebhookVerificationError",
    "DefaultWebhookFactory",
    "WebhookCreateStrategy",
    "WebhookFactory",
    "ExpressionFilterEvaluator",
    "WebhookFilter",
    "WebhookFilterEvaluator",
    "WebhookFilterRequest",
    "WebhookNotifier",
    "ReceivedWebhook",
    "ensure_signature",
    "parse_webhook",
    "verify_signature",
    "WebhookDeliveryAttempt",
    "WebhookDeliveryResult",
    "WebhookNotificationResult",
    "WebhookSender",
    "JsonWebhookSerializer",
    "WebhookSerializer",
    "XmlWebhookSerializer",
    "Sha1WebhookSigner",
    "Sha256WebhookSigner",
    "WebhookSigner",
    "create_signature",
    "InMemorySubscriptionResolver",
    "SubscriptionStatus",
    "WebhookSubscription",
    "WebhookSubscriptionResolver",
    "DestinationVerificationResult",
    "VerificationOptions",
    "VerificationTokenLocation",
    "WebhookDestinationVerifier",
    "RetryOptions",
    "SignatureLocation",
    "SignatureOptions",
    "TimestampFormat",
    "Webhook",
    "WebhookDestination",
    "WebhookFormat",
]

__version__ = "0.1.0"
