"""Configuration objects and environment-driven settings.

Each component takes one configuration object whose fields are defaulted
once.  :class:`HookRelaySettings` builds them from ``HOOKRELAY_*``
environment variables, optionally loaded from a dotenv file first.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional, Union

from dotenv import load_dotenv

from hookrelay.exceptions import ConfigurationError
from hookrelay.factory import WebhookCreateStrategy
from hookrelay.webhook import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_SIGNATURE_ALGORITHM,
    DEFAULT_SIGNATURE_HEADER,
    RetryOptions,
    SignatureLocation,
    SignatureOptions,
    TimestampFormat,
    WebhookFormat,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "HOOKRELAY_"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

TRACE_ID_HEADER = "X-Webhook-TraceId"
ATTEMPT_HEADER = "X-Webhook-Attempt"


def default_parallelism() -> int:
    """Available processors minus one, never below one."""
    return max(1, (os.cpu_count() or 1) - 1)


@dataclass
class SenderConfig:
    default_headers: Dict[str, str] = field(default_factory=dict)
    default_format: WebhookFormat = WebhookFormat.JSON
    sign_webhooks: bool = True
    signature: SignatureOptions = field(default_factory=SignatureOptions.defaults)
    retry: RetryOptions = field(default_factory=RetryOptions.defaults)
    # Bounds a whole delivery, backoff waits included.
    delivery_timeout: Optional[float] = None
    trace_headers: bool = True
    trace_id_header: str = TRACE_ID_HEADER
    attempt_header: str = ATTEMPT_HEADER

    def __post_init__(self) -> None:
        if self.delivery_timeout is not None and self.delivery_timeout <= 0:
            raise ConfigurationError("delivery_timeout must be > 0")
        self.default_format = WebhookFormat(self.default_format)
        self.signature = self.signature.merge(SignatureOptions.defaults())
        self.retry = self.retry.merge(RetryOptions.defaults())


@dataclass
class NotifierConfig:
    max_parallelism: int = field(default_factory=default_parallelism)
    webhook_strategy: WebhookCreateStrategy = WebhookCreateStrategy.ONE_PER_EVENT
    timestamp_format: TimestampFormat = TimestampFormat.UNIX
    # None renders every webhook field.
    fields: Optional[FrozenSet[str]] = None

    def __post_init__(self) -> None:
        if self.max_parallelism < 1:
            raise ConfigurationError("max_parallelism must be >= 1")
        self.webhook_strategy = WebhookCreateStrategy(self.webhook_strategy)
        self.timestamp_format = TimestampFormat(self.timestamp_format)


# ---------------------------------------------------------------------------
# Environment settings
# ---------------------------------------------------------------------------

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = _get(env, name)
    if value is None:
        return default
    if value.lower() in _TRUE:
        return True
    if value.lower() in _FALSE:
        return False
    raise ConfigurationError(f"{ENV_PREFIX}{name} must be a boolean, got '{value}'")


def _env_number(env: Mapping[str, str], name: str, cast, default):
    value = _get(env, name)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got '{value}'") from exc


def _env_choice(env: Mapping[str, str], name: str, enum_type, default):
    value = _get(env, name)
    if value is None:
        return default
    try:
        return enum_type(value.lower())
    except ValueError as exc:
        choices = [member.value for member in enum_type]
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be one of {choices}, got '{value}'") from exc


@dataclass
class HookRelaySettings:
    max_retries: int = DEFAULT_MAX_RETRIES
    attempt_timeout: Optional[float] = None
    delivery_timeout: Optional[float] = None
    max_parallelism: int = field(default_factory=default_parallelism)
    sign_webhooks: bool = True
    signature_algorithm: str = DEFAULT_SIGNATURE_ALGORITHM
    signature_location: SignatureLocation = SignatureLocation.HEADER
    signature_header: str = DEFAULT_SIGNATURE_HEADER
    default_format: WebhookFormat = WebhookFormat.JSON
    timestamp_format: TimestampFormat = TimestampFormat.UNIX
    webhook_strategy: WebhookCreateStrategy = WebhookCreateStrategy.ONE_PER_EVENT
    trace_headers: bool = True
    log_level: str = "info"

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Union[str, Path]] = None,
    ) -> "HookRelaySettings":
        """Read ``HOOKRELAY_*`` variables from *env* (``os.environ`` by default).

        When *dotenv_path* is given, the file is loaded into the process
        environment first without overriding variables already set.
        """
        if dotenv_path is not None:
            load_dotenv(dotenv_path=dotenv_path, override=False)
        source = os.environ if env is None else env
        settings = cls(
            max_retries=_env_number(source, "MAX_RETRIES", int, DEFAULT_MAX_RETRIES),
            attempt_timeout=_env_number(source, "ATTEMPT_TIMEOUT", float, None),
            delivery_timeout=_env_number(source, "DELIVERY_TIMEOUT", float, None),
            max_parallelism=_env_number(source, "MAX_PARALLELISM", int, default_parallelism()),
            sign_webhooks=_env_bool(source, "SIGN_WEBHOOKS", True),
            signature_algorithm=_get(source, "SIGNATURE_ALGORITHM") or DEFAULT_SIGNATURE_ALGORITHM,
            signature_location=_env_choice(
                source, "SIGNATURE_LOCATION", SignatureLocation, SignatureLocation.HEADER
            ),
            signature_header=_get(source, "SIGNATURE_HEADER") or DEFAULT_SIGNATURE_HEADER,
            default_format=_env_choice(source, "DEFAULT_FORMAT", WebhookFormat, WebhookFormat.JSON),
            timestamp_format=_env_choice(
                source, "TIMESTAMP_FORMAT", TimestampFormat, TimestampFormat.UNIX
            ),
            webhook_strategy=_env_choice(
                source, "WEBHOOK_STRATEGY", WebhookCreateStrategy, WebhookCreateStrategy.ONE_PER_EVENT
            ),
            trace_headers=_env_bool(source, "TRACE_HEADERS", True),
            log_level=(_get(source, "LOG_LEVEL") or "info").lower(),
        )
        if settings.max_retries < 0:
            raise ConfigurationError(f"{ENV_PREFIX}MAX_RETRIES must be >= 0")
        return settings

    def sender_config(self) -> SenderConfig:
        return SenderConfig(
            default_format=self.default_format,
            sign_webhooks=self.sign_webhooks,
            signature=SignatureOptions(
                location=self.signature_location,
                algorithm=self.signature_algorithm,
                header_name=self.signature_header,
            ),
            retry=RetryOptions(max_retries=self.max_retries, timeout=self.attempt_timeout),
            delivery_timeout=self.delivery_timeout,
            trace_headers=self.trace_headers,
        )

    def notifier_config(self) -> NotifierConfig:
        return NotifierConfig(
            max_parallelism=self.max_parallelism,
            webhook_strategy=self.webhook_strategy,
            timestamp_format=self.timestamp_format,
        )


def configure_logging(level: Union[str, int] = "info") -> None:
    """Install a root handler with the project's log format."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ConfigurationError(f"Unknown log level '{level}'")
        level = resolved
    logging.basicConfig(level=level, format=LOG_FORMAT)
