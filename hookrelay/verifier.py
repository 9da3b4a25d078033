"""Verification that a destination is willing to receive webhooks.

The verifier calls the destination (or its verification URL) with a token
the receiver recognises.  With a challenge, the receiver must also echo a
random numeric code back as ``text/plain``.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from hookrelay.config import SenderConfig
from hookrelay.exceptions import WebhookVerificationError
from hookrelay.results import REQUEST_TIMEOUT_STATUS
from hookrelay.sender import DEFAULT_HTTP_TIMEOUT, Sleep
from hookrelay.webhook import WebhookDestination, backoff_delay

logger = logging.getLogger(__name__)


class VerificationTokenLocation(str, Enum):
    QUERY_STRING = "query_string"
    HEADER = "header"


@dataclass
class VerificationOptions:
    http_method: str = "GET"
    token_location: VerificationTokenLocation = VerificationTokenLocation.QUERY_STRING
    token_query_parameter: str = "token"
    token_header_name: str = "X-Verify-Token"
    challenge: bool = False
    challenge_query_parameter: str = "challenge"
    challenge_length: int = 8


@dataclass(frozen=True)
class DestinationVerificationResult:
    successful: bool
    status_code: int

    @classmethod
    def success(cls, status_code: int = 200) -> "DestinationVerificationResult":
        return cls(True, status_code)

    @classmethod
    def failed(cls, status_code: int = 0) -> "DestinationVerificationResult":
        return cls(False, status_code)


class WebhookDestinationVerifier:
    def __init__(
        self,
        options: Optional[VerificationOptions] = None,
        config: Optional[SenderConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.options = options or VerificationOptions()
        self.config = config or SenderConfig()
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def create_challenge(self) -> str:
        return "".join(str(secrets.randbelow(10)) for _ in range(self.options.challenge_length))

    def build_request(self, destination: WebhookDestination, token: str, challenge: Optional[str]) -> httpx.Request:
        url = httpx.URL(destination.verification_url or destination.url)
        headers = dict(destination.headers)
        params = {}
        if self.options.token_location == VerificationTokenLocation.QUERY_STRING:
            params[self.options.token_query_parameter] = token
        else:
            headers[self.options.token_header_name] = token
        if challenge:
            if not self.options.challenge_query_parameter:
                raise WebhookVerificationError("The challenge query parameter was not set")
            params[self.options.challenge_query_parameter] = challenge
        if params:
            url = url.copy_merge_params(params)
        return self.client.build_request(self.options.http_method.upper(), url, headers=headers)

    async def verify(self, destination: WebhookDestination, token: Optional[str] = None) -> DestinationVerificationResult:
        """Verify *destination* with *token*, retrying transport failures.

        Raises :class:`WebhookVerificationError` when no token is given.
        """
        if not token:
            raise WebhookVerificationError(
                f"No verification token for the destination {destination.display_url}"
            )
        retry = destination.merge(self.config).retry
        challenge = self.create_challenge() if self.options.challenge else None
        status_code = 0
        for index in range(retry.max_attempts):
            request = self.build_request(destination, token, challenge)
            try:
                response = await asyncio.wait_for(self.client.send(request), retry.timeout)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                status_code = REQUEST_TIMEOUT_STATUS
                logger.warning("Verification of %s timed out", destination.display_url)
            except httpx.HTTPError as exc:
                status_code = 0
                logger.warning("Verification of %s failed: %s", destination.display_url, exc)
            else:
                status_code = self._check(response, challenge)
                if status_code < 400:
                    logger.debug("Destination %s verified", destination.display_url)
                    return DestinationVerificationResult.success(status_code)
                return DestinationVerificationResult.failed(status_code)

            if index < retry.max_attempts - 1:
                await self._sleep(backoff_delay(index))
        return DestinationVerificationResult.failed(status_code)

    @staticmethod
    def _check(response: httpx.Response, challenge: Optional[str]) -> int:
        if response.status_code >= 400 or not challenge:
            return response.status_code
        content_type = response.headers.get("content-type", "")
        if content_type.split(";", 1)[0].strip().lower() != "text/plain":
            return 400
        if response.text != challenge:
            return 401
        return 200
