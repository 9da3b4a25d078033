"""Webhook payload, destination and delivery-option models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from hookrelay.config import SenderConfig

# -----------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------

DEFAULT_MAX_RETRIES = 3
DEFAULT_SIGNATURE_ALGORITHM = "sha256"
DEFAULT_SIGNATURE_HEADER = "X-Webhook-Signature"
DEFAULT_SIGNATURE_QUERY_PARAMETER = "signature"
DEFAULT_ALGORITHM_QUERY_PARAMETER = "sig_alg"
JSON_CONTENT_TYPE = "application/json"
XML_CONTENT_TYPE = "text/xml"

# Fields a serializer may render; ``data`` is always rendered.
WEBHOOK_FIELDS: FrozenSet[str] = frozenset({"id", "eventType", "timestamp", "name"})


class WebhookFormat(str, Enum):
    JSON = "json"
    XML = "xml"


class SignatureLocation(str, Enum):
    HEADER = "header"
    QUERY_STRING = "query_string"


class TimestampFormat(str, Enum):
    UNIX = "unix"
    ISO = "iso"


def backoff_delay(attempt_index: int) -> float:
    """Seconds to wait after the 0-based attempt *attempt_index* before the next one."""
    if attempt_index < 0:
        raise ValueError("attempt_index must be >= 0")
    return float(attempt_index * (attempt_index + 1))


# -----------------------------------------------------------------------
# Options
# -----------------------------------------------------------------------


class RetryOptions(BaseModel):
    """Retry policy of a destination.

    Unset fields are inherited from the sender-wide options on merge.
    """

    max_retries: Optional[int] = Field(default=None, ge=0)
    timeout: Optional[float] = Field(default=None, gt=0)
    retry_on_status: Optional[bool] = None

    @classmethod
    def defaults(cls) -> "RetryOptions":
        return cls(max_retries=DEFAULT_MAX_RETRIES, timeout=None, retry_on_status=True)

    def merge(self, defaults: Optional["RetryOptions"]) -> "RetryOptions":
        base = defaults or RetryOptions.defaults()
        return RetryOptions(
            max_retries=self.max_retries if self.max_retries is not None else base.max_retries,
            timeout=self.timeout if self.timeout is not None else base.timeout,
            retry_on_status=(
                self.retry_on_status if self.retry_on_status is not None else base.retry_on_status
            ),
        )

    @property
    def max_attempts(self) -> int:
        retries = self.max_retries if self.max_retries is not None else DEFAULT_MAX_RETRIES
        return retries + 1


class SignatureOptions(BaseModel):
    """Where and how the signature of a request is carried."""

    location: Optional[SignatureLocation] = None
    algorithm: Optional[str] = None
    header_name: Optional[str] = None
    query_parameter: Optional[str] = None
    algorithm_query_parameter: Optional[str] = None

    @classmethod
    def defaults(cls) -> "SignatureOptions":
        return cls(
            location=SignatureLocation.HEADER,
            algorithm=DEFAULT_SIGNATURE_ALGORITHM,
            header_name=DEFAULT_SIGNATURE_HEADER,
            query_parameter=DEFAULT_SIGNATURE_QUERY_PARAMETER,
            algorithm_query_parameter=DEFAULT_ALGORITHM_QUERY_PARAMETER,
        )

    def merge(self, defaults: Optional["SignatureOptions"]) -> "SignatureOptions":
        base = defaults or SignatureOptions.defaults()
        return SignatureOptions(
            location=self.location or base.location,
            algorithm=self.algorithm or base.algorithm,
            header_name=self.header_name or base.header_name,
            query_parameter=self.query_parameter or base.query_parameter,
            algorithm_query_parameter=(
                self.algorithm_query_parameter or base.algorithm_query_parameter
            ),
        )


# -----------------------------------------------------------------------
# Destination
# -----------------------------------------------------------------------


class WebhookDestination(BaseModel):
    """An endpoint a webhook is delivered to, with per-destination overrides."""

    url: str
    name: Optional[str] = None
    secret: Optional[str] = Field(default=None, repr=False)
    sign: Optional[bool] = None
    signature: Optional[SignatureOptions] = None
    retry: Optional[RetryOptions] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    format: Optional[WebhookFormat] = None
    verification_url: Optional[str] = None

    @field_validator("url", "verification_url")
    @classmethod
    def _absolute_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not value or not value.strip():
            raise ValueError("The URL must be a non-empty string")
        url = httpx.URL(value)
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"The URL '{value}' must be an absolute http(s) URL")
        return value

    @property
    def display_url(self) -> str:
        """The URL without its query string, safe to log."""
        return strip_query(self.url)

    def with_headers(self, headers: Optional[Dict[str, str]]) -> "WebhookDestination":
        """Return a copy whose headers are overlaid by *headers*."""
        merged = dict(self.headers)
        merged.update(headers or {})
        return self.model_copy(update={"headers": merged})

    def merge(self, config: "SenderConfig") -> "WebhookDestination":
        """Overlay this destination onto the sender-wide defaults.

        Destination values win; headers are merged key by key.
        """
        headers = dict(config.default_headers)
        headers.update(self.headers)
        return WebhookDestination(
            url=self.url,
            name=self.name,
            secret=self.secret,
            sign=self.sign if self.sign is not None else config.sign_webhooks,
            signature=(self.signature or SignatureOptions()).merge(config.signature),
            retry=(self.retry or RetryOptions()).merge(config.retry),
            headers=headers,
            format=self.format or config.default_format,
            verification_url=self.verification_url,
        )


# -----------------------------------------------------------------------
# Webhook
# -----------------------------------------------------------------------


class Webhook(BaseModel):
    """The object delivered to a subscriber for one (subscription, event) pairing."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    event_type: str
    timestamp: datetime
    data: Any = None
    subscription_id: Optional[str] = None
    name: Optional[str] = None
    destination_url: Optional[str] = None
    secret: Optional[str] = Field(default=None, repr=False)
    headers: Dict[str, str] = Field(default_factory=dict)

    def to_payload(
        self,
        fields: Optional[Iterable[str]] = None,
        timestamp_format: TimestampFormat = TimestampFormat.UNIX,
    ) -> Dict[str, Any]:
        """Return the wire representation of this webhook as a plain dict."""
        selected = WEBHOOK_FIELDS if fields is None else frozenset(fields)
        payload: Dict[str, Any] = {}
        if "id" in selected:
            payload["id"] = self.id
        if "eventType" in selected:
            payload["eventType"] = self.event_type
        if "timestamp" in selected:
            payload["timestamp"] = format_timestamp(self.timestamp, timestamp_format)
        if "name" in selected:
            payload["name"] = self.name
        payload["data"] = _plain(self.data)
        return payload


def format_timestamp(value: datetime, timestamp_format: TimestampFormat) -> Any:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if TimestampFormat(timestamp_format) is TimestampFormat.ISO:
        return value.isoformat()
    return int(value.timestamp())


def parse_timestamp(value: Any) -> datetime:
    """Inverse of :func:`format_timestamp` for both unix seconds and ISO-8601."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return datetime.fromtimestamp(int(text), tz=timezone.utc)
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def _plain(value: Any) -> Any:
    """Convert models and containers into JSON-compatible structures."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def strip_query(url: str) -> str:
    return url.split("#", 1)[0].split("?", 1)[0]
