"""Delivery attempts, per-destination results and per-notification results."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

if TYPE_CHECKING:
    from hookrelay.events import EventNotification
    from hookrelay.webhook import Webhook, WebhookDestination

REQUEST_TIMEOUT_STATUS = 408


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDeliveryAttempt:
    """One HTTP try toward a destination."""

    def __init__(self, number: int, started_at: Optional[datetime] = None) -> None:
        if number < 1:
            raise ValueError("The number of the attempt must be greater than zero")
        self.number = number
        self.started_at = started_at or _utcnow()
        self.completed_at: Optional[datetime] = None
        self.response_code: Optional[int] = None
        self.response_message: Optional[str] = None
        self.timed_out = False

    @classmethod
    def start(cls, number: int) -> "WebhookDeliveryAttempt":
        return cls(number)

    @property
    def has_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def has_response(self) -> bool:
        return self.response_code is not None

    @property
    def failed(self) -> bool:
        """Completed without a response code, or with a code >= 400."""
        if self.response_code is not None:
            return self.response_code >= 400
        return self.has_completed

    @property
    def succeeded(self) -> bool:
        return self.has_completed and self.response_code is not None and self.response_code < 400

    @property
    def elapsed(self) -> Optional[timedelta]:
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    def complete(self, response_code: int, response_message: Optional[str] = None) -> None:
        self.response_code = response_code
        self.response_message = response_message
        self.completed_at = _utcnow()

    def local_fail(self, message: Optional[str] = None) -> None:
        self.response_code = None
        self.response_message = message
        self.completed_at = _utcnow()

    def time_out(self, message: str = "Request Timeout") -> None:
        self.timed_out = True
        self.complete(REQUEST_TIMEOUT_STATUS, message)

    def to_dict(self) -> Dict[str, Any]:
        elapsed = self.elapsed
        return {
            "number": self.number,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "response_code": self.response_code,
            "response_message": self.response_message,
            "elapsed_ms": round(elapsed.total_seconds() * 1000, 3) if elapsed is not None else None,
            "failed": self.failed,
        }

    def __repr__(self) -> str:
        return (
            f"WebhookDeliveryAttempt(number={self.number}, "
            f"response_code={self.response_code}, failed={self.failed})"
        )


class WebhookDeliveryResult:
    """The ordered attempts made to deliver one webhook to one destination.

    The attempt list is append-only and guarded by a lock so that observers
    can read it while the retry loop is still appending.
    """

    def __init__(
        self,
        webhook: Optional["Webhook"] = None,
        destination: Optional["WebhookDestination"] = None,
        *,
        operation_id: Optional[str] = None,
        failed: bool = False,
        error: Optional[BaseException] = None,
    ) -> None:
        self.webhook = webhook
        self.destination = destination
        self.operation_id = operation_id or uuid.uuid4().hex
        self.error = error
        self._failed = failed or error is not None
        self._lock = threading.Lock()
        self._attempts: List[WebhookDeliveryAttempt] = []

    @classmethod
    def fail(
        cls,
        webhook: Optional["Webhook"] = None,
        destination: Optional["WebhookDestination"] = None,
        error: Optional[BaseException] = None,
    ) -> "WebhookDeliveryResult":
        """Build a result that failed before any attempt could be made."""
        return cls(webhook, destination, failed=True, error=error)

    def start_attempt(self) -> WebhookDeliveryAttempt:
        with self._lock:
            attempt = WebhookDeliveryAttempt.start(len(self._attempts) + 1)
            self._attempts.append(attempt)
            return attempt

    def mark_failed(self, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self._failed = True
            if error is not None:
                self.error = error

    @property
    def attempts(self) -> List[WebhookDeliveryAttempt]:
        with self._lock:
            return sorted(self._attempts, key=lambda a: a.number)

    @property
    def attempt_count(self) -> int:
        with self._lock:
            return len(self._attempts)

    @property
    def has_attempted(self) -> bool:
        return self.attempt_count > 0

    @property
    def last_attempt(self) -> Optional[WebhookDeliveryAttempt]:
        attempts = self.attempts
        return attempts[-1] if attempts else None

    @property
    def is_pre_failed(self) -> bool:
        return self._failed

    @property
    def successful(self) -> bool:
        """Not pre-failed, attempted at least once, and no attempt failed."""
        with self._lock:
            if self._failed or not self._attempts:
                return False
            return all(not a.failed for a in self._attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "destination": self.destination.display_url if self.destination else None,
            "webhook_id": self.webhook.id if self.webhook else None,
            "event_type": self.webhook.event_type if self.webhook else None,
            "successful": self.successful,
            "error": str(self.error) if self.error else None,
            "attempts": [a.to_dict() for a in self.attempts],
        }

    def __repr__(self) -> str:
        return (
            f"WebhookDeliveryResult(operation_id={self.operation_id!r}, "
            f"attempts={self.attempt_count}, successful={self.successful})"
        )


class WebhookNotificationResult(Mapping):
    """Delivery results of one notification, keyed by subscription id."""

    def __init__(self, notification: Optional["EventNotification"] = None) -> None:
        self.notification = notification
        self._lock = threading.Lock()
        self._results: Dict[str, List[WebhookDeliveryResult]] = {}

    def add_delivery(self, subscription_id: str, result: WebhookDeliveryResult) -> None:
        with self._lock:
            self._results.setdefault(subscription_id, []).append(result)

    def __getitem__(self, subscription_id: str) -> List[WebhookDeliveryResult]:
        with self._lock:
            return list(self._results[subscription_id])

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._results.keys()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    @property
    def deliveries(self) -> List[WebhookDeliveryResult]:
        with self._lock:
            return [r for results in self._results.values() for r in results]

    @property
    def successful(self) -> Dict[str, List[WebhookDeliveryResult]]:
        with self._lock:
            snapshot = {k: list(v) for k, v in self._results.items()}
        partition = {k: [r for r in v if r.successful] for k, v in snapshot.items()}
        return {k: v for k, v in partition.items() if v}

    @property
    def failed(self) -> Dict[str, List[WebhookDeliveryResult]]:
        with self._lock:
            snapshot = {k: list(v) for k, v in self._results.items()}
        partition = {k: [r for r in v if not r.successful] for k, v in snapshot.items()}
        return {k: v for k, v in partition.items() if v}

    @property
    def has_successful(self) -> bool:
        return any(r.successful for r in self.deliveries)

    @property
    def has_failed(self) -> bool:
        return any(not r.successful for r in self.deliveries)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def __repr__(self) -> str:
        return (
            f"WebhookNotificationResult(subscriptions={len(self)}, "
            f"deliveries={len(self.deliveries)})"
        )
