"""Receiving-side helpers: parse a delivered webhook and check its signature."""

from __future__ import annotations

import hmac
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from hookrelay.exceptions import InvalidSignatureError, WebhookSerializationError
from hookrelay.serializers import XML_ITEM_ELEMENT
from hookrelay.signing import create_signature
from hookrelay.webhook import DEFAULT_SIGNATURE_ALGORITHM, parse_timestamp


@dataclass
class ReceivedWebhook:
    id: Optional[str]
    event_type: Optional[str]
    timestamp: Optional[datetime]
    data: Any = None
    name: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def parse_webhook(body: Union[str, bytes], content_type: str = "application/json") -> ReceivedWebhook:
    """Rebuild the webhook rendered by a JSON or XML serializer.

    XML leaves come back as strings.
    """
    text = body.decode("utf-8") if isinstance(body, bytes) else body
    media_type = content_type.split(";", 1)[0].strip().lower()
    try:
        if media_type.endswith("json"):
            payload = json.loads(text)
        elif media_type.endswith("xml"):
            payload = _from_xml(ET.fromstring(text))
        else:
            raise WebhookSerializationError(f"Unsupported content type '{content_type}'")
    except (ValueError, ET.ParseError) as exc:
        raise WebhookSerializationError(f"Unable to parse a {media_type} webhook") from exc
    if not isinstance(payload, dict):
        raise WebhookSerializationError("The webhook body is not an object")

    payload = dict(payload)
    timestamp = payload.pop("timestamp", None)
    return ReceivedWebhook(
        id=payload.pop("id", None),
        event_type=payload.pop("eventType", None),
        timestamp=parse_timestamp(timestamp) if timestamp not in (None, "") else None,
        data=payload.pop("data", None),
        name=payload.pop("name", None),
        extra=payload,
    )


def _from_xml(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return element.text
    if all(child.tag == XML_ITEM_ELEMENT for child in children):
        return [_from_xml(child) for child in children]
    return {child.tag: _from_xml(child) for child in children}


def verify_signature(
    body: Union[str, bytes],
    secret: str,
    signature: Optional[str],
    algorithm: Optional[str] = None,
) -> bool:
    """Check a ``<algorithm>=<hash>`` or bare-hash *signature* of *body*.

    The algorithm named in the signature wins over *algorithm*, which
    defaults to sha256.  Comparison is constant-time.
    """
    if not signature or not secret:
        return False
    value = signature.strip()
    if "=" in value:
        algorithm, value = value.split("=", 1)
    expected = create_signature(algorithm or DEFAULT_SIGNATURE_ALGORITHM, body, secret)
    return hmac.compare_digest(expected, value.lower())


def ensure_signature(
    body: Union[str, bytes],
    secret: str,
    signature: Optional[str],
    algorithm: Optional[str] = None,
) -> None:
    """Like :func:`verify_signature` but raises :class:`InvalidSignatureError`."""
    if not verify_signature(body, secret, signature, algorithm):
        raise InvalidSignatureError("The webhook signature is missing or invalid")
