"""HMAC signing of serialized webhook bodies."""

from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Union

from hookrelay.registry import SignerRegistry

Body = Union[str, bytes]


def _to_bytes(value: Body) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class WebhookSigner(ABC):
    """Computes the signature of a payload with a shared secret."""

    #: Algorithm names this signer answers to; the first is the canonical one.
    algorithms: Sequence[str] = ()

    @property
    def algorithm(self) -> str:
        return self.algorithms[0]

    @abstractmethod
    def sign(self, body: Body, secret: str) -> str:
        """Return the lowercase hex signature of *body* keyed by *secret*."""


class HmacSigner(WebhookSigner):
    digest_name = "sha256"

    def sign(self, body: Body, secret: str) -> str:
        if not secret:
            raise ValueError("The secret used to sign a webhook cannot be empty")
        return hmac.new(_to_bytes(secret), _to_bytes(body), self.digest_name).hexdigest()


class Sha256WebhookSigner(HmacSigner):
    algorithms = ("sha256", "sha-256", "hmac-sha256")
    digest_name = "sha256"


class Sha1WebhookSigner(HmacSigner):
    algorithms = ("sha1", "sha-1", "hmac-sha1")
    digest_name = "sha1"


def default_signers() -> List[WebhookSigner]:
    return [Sha256WebhookSigner(), Sha1WebhookSigner()]


def default_signer_registry() -> SignerRegistry:
    return SignerRegistry(default_signers())


_DEFAULT_REGISTRY: Optional[SignerRegistry] = None


def create_signature(algorithm: str, body: Body, secret: str) -> str:
    """Sign *body* with the built-in signer registered for *algorithm*.

    Raises :class:`~hookrelay.exceptions.SignerNotFoundError` for unknown algorithms.
    """
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = default_signer_registry()
    return _DEFAULT_REGISTRY.get(algorithm).sign(body, secret)


def format_signature_header(algorithm: str, signature: str) -> str:
    """Render the ``<algorithm>=<hash>`` value carried in the signature header."""
    return f"{algorithm}={signature}"
