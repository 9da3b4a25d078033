"""HTTP delivery of webhooks with signing, trace headers and bounded retries.

Each try is recorded as a :class:`WebhookDeliveryAttempt`.  Transport
failures and timeouts are retried up to ``max_retries`` times, as are
HTTP error statuses when ``retry_on_status`` is set (408 always is).  The
wait after the 0-based attempt ``i`` is ``i * (i + 1)`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

import httpx

from hookrelay.config import SenderConfig
from hookrelay.exceptions import WebhookSenderError
from hookrelay.registry import SerializerRegistry, SignerRegistry
from hookrelay.results import REQUEST_TIMEOUT_STATUS, WebhookDeliveryAttempt, WebhookDeliveryResult
from hookrelay.serializers import default_serializer_registry
from hookrelay.signing import default_signer_registry, format_signature_header
from hookrelay.webhook import (
    SignatureLocation,
    Webhook,
    WebhookDestination,
    backoff_delay,
    strip_query,
)

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0

Sleep = Callable[[float], Awaitable[None]]


class WebhookSender:
    """Signs and POSTs webhooks to their destinations.

    The HTTP client is either injected, and then left open, or created on
    first use and closed by :meth:`aclose`.
    """

    def __init__(
        self,
        config: Optional[SenderConfig] = None,
        serializers: Optional[SerializerRegistry] = None,
        signers: Optional[SignerRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or SenderConfig()
        self.serializers = serializers if serializers is not None else default_serializer_registry()
        self.signers = signers if signers is not None else default_signer_registry()
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    # -- Client lifecycle -------------------------------------------------

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        """Close the client created by this sender once no delivery is running."""
        if not self._owns_client or self._client is None:
            return
        await self._idle.wait()
        await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "WebhookSender":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- Request construction ---------------------------------------------

    def prepare_destination(self, destination: WebhookDestination, webhook: Webhook) -> WebhookDestination:
        """Merge *destination* onto the sender defaults.

        Headers resolve as destination over webhook (subscription) over sender.
        """
        merged = destination.merge(self.config)
        headers: Dict[str, str] = dict(self.config.default_headers)
        headers.update(webhook.headers)
        headers.update(destination.headers)
        return merged.model_copy(update={"headers": headers})

    def build_request(
        self, destination: WebhookDestination, webhook: Webhook
    ) -> Tuple[httpx.URL, Dict[str, str], bytes]:
        """Serialize and sign *webhook* for an already merged *destination*.

        Raises a configuration error for an unknown format or algorithm and
        :class:`WebhookSenderError` when the request cannot be assembled.
        """
        serializer = self.serializers.get(destination.format.value if destination.format else "json")
        body = serializer.serialize(webhook)
        headers = {"Content-Type": serializer.content_type}
        headers.update(destination.headers)
        try:
            url = httpx.URL(destination.url)
        except httpx.InvalidURL as exc:
            raise WebhookSenderError(f"Invalid destination URL '{destination.display_url}'") from exc

        secret = destination.secret or webhook.secret
        if destination.sign and secret:
            options = destination.signature
            signer = self.signers.get(options.algorithm)
            signature = signer.sign(body, secret)
            logger.debug("Signed webhook %s with %s", webhook.id, signer.algorithm)
            if options.location == SignatureLocation.QUERY_STRING:
                if not options.query_parameter:
                    raise WebhookSenderError("No query parameter configured for the signature")
                params = {options.query_parameter: signature}
                if options.algorithm_query_parameter:
                    params[options.algorithm_query_parameter] = signer.algorithm
                url = url.copy_merge_params(params)
            else:
                if not options.header_name:
                    raise WebhookSenderError("No header configured for the signature")
                headers[options.header_name] = format_signature_header(signer.algorithm, signature)
        return url, headers, body.encode("utf-8")

    # -- Delivery ---------------------------------------------------------

    async def send(self, destination: WebhookDestination, webhook: Webhook) -> WebhookDeliveryResult:
        """Deliver *webhook* and return the result holding every attempt.

        Failed deliveries are reported in the result, not raised.  Errors
        building the request are raised before any attempt is made.
        """
        merged = self.prepare_destination(destination, webhook)
        url, headers, body = self.build_request(merged, webhook)
        result = WebhookDeliveryResult(webhook, merged)

        self._in_flight += 1
        self._idle.clear()
        try:
            await self._deliver(result, url, headers, body)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

        if result.successful:
            logger.debug("Webhook %s delivered to %s", webhook.id, merged.display_url)
        else:
            logger.warning(
                "Webhook %s could not be delivered to %s after %d attempt(s)",
                webhook.id,
                merged.display_url,
                result.attempt_count,
            )
        return result

    async def _deliver(
        self, result: WebhookDeliveryResult, url: httpx.URL, headers: Dict[str, str], body: bytes
    ) -> None:
        retry = result.destination.retry
        loop = asyncio.get_running_loop()
        deadline = None
        if self.config.delivery_timeout is not None:
            deadline = loop.time() + self.config.delivery_timeout

        max_attempts = retry.max_attempts
        for index in range(max_attempts):
            timeout = retry.timeout
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.warning("Delivery %s exceeded its overall timeout", result.operation_id)
                    return
                timeout = remaining if timeout is None else min(timeout, remaining)

            attempt = result.start_attempt()
            retryable = await self._attempt(
                attempt, url, self._attempt_headers(headers, result, attempt), body, timeout, retry.retry_on_status
            )
            if not attempt.failed or not retryable or index == max_attempts - 1:
                return

            delay = backoff_delay(index)
            if deadline is not None and loop.time() + delay >= deadline:
                logger.warning("Delivery %s exceeded its overall timeout", result.operation_id)
                return
            logger.debug("Retrying delivery %s in %.0fs", result.operation_id, delay)
            await self._sleep(delay)

    def _attempt_headers(
        self, headers: Dict[str, str], result: WebhookDeliveryResult, attempt: WebhookDeliveryAttempt
    ) -> Dict[str, str]:
        if not self.config.trace_headers:
            return headers
        traced = dict(headers)
        traced[self.config.trace_id_header] = result.operation_id
        traced[self.config.attempt_header] = str(attempt.number)
        return traced

    async def _attempt(
        self,
        attempt: WebhookDeliveryAttempt,
        url: httpx.URL,
        headers: Dict[str, str],
        body: bytes,
        timeout: Optional[float],
        retry_on_status: Optional[bool],
    ) -> bool:
        """Run one try and record its outcome. Returns whether a retry is allowed."""
        logger.debug("Attempt %d to %s", attempt.number, strip_query(str(url)))
        try:
            response = await asyncio.wait_for(
                self.client.post(url, content=body, headers=headers), timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            attempt.time_out()
            logger.warning("Attempt %d timed out", attempt.number)
            return True
        except httpx.HTTPError as exc:
            attempt.local_fail(str(exc) or type(exc).__name__)
            logger.warning("Attempt %d failed: %s", attempt.number, attempt.response_message)
            return True
        except asyncio.CancelledError:
            attempt.local_fail("Delivery cancelled")
            raise
        except Exception as exc:
            attempt.local_fail(str(exc) or type(exc).__name__)
            logger.warning(
                "Attempt %d raised %s: %s", attempt.number, type(exc).__name__, attempt.response_message
            )
            return True

        attempt.complete(response.status_code, response.reason_phrase)
        logger.debug("Attempt %d completed with %d", attempt.number, response.status_code)
        if response.status_code == REQUEST_TIMEOUT_STATUS:
            attempt.timed_out = True
            return True
        if response.status_code >= 400:
            return retry_on_status is not False
        return False
