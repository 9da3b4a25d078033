"""Rendering of webhooks to their wire formats."""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional

from hookrelay.exceptions import WebhookSerializationError
from hookrelay.registry import SerializerRegistry
from hookrelay.webhook import (
    JSON_CONTENT_TYPE,
    XML_CONTENT_TYPE,
    TimestampFormat,
    Webhook,
    WebhookFormat,
)

logger = logging.getLogger(__name__)

XML_ROOT_ELEMENT = "webhook"
XML_ITEM_ELEMENT = "item"

_XML_NAME = re.compile(r"[^\W\d][\w.\-]*")


class WebhookSerializer(ABC):
    """Renders a :class:`Webhook` into a request body."""

    format: str = ""
    content_type: str = ""

    def __init__(
        self,
        fields: Optional[Iterable[str]] = None,
        timestamp_format: TimestampFormat = TimestampFormat.UNIX,
    ) -> None:
        self.fields = None if fields is None else frozenset(fields)
        self.timestamp_format = TimestampFormat(timestamp_format)

    def payload_of(self, webhook: Webhook) -> dict:
        return webhook.to_payload(self.fields, self.timestamp_format)

    def serialize(self, webhook: Webhook) -> str:
        try:
            return self.render(self.payload_of(webhook))
        except WebhookSerializationError:
            raise
        except Exception as exc:
            raise WebhookSerializationError(
                f"Unable to serialize webhook '{webhook.id}' as {self.format}"
            ) from exc

    @abstractmethod
    def render(self, payload: dict) -> str:
        """Render an already-flattened payload dict."""


class JsonWebhookSerializer(WebhookSerializer):
    format = WebhookFormat.JSON.value
    content_type = JSON_CONTENT_TYPE

    def render(self, payload: dict) -> str:
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class XmlWebhookSerializer(WebhookSerializer):
    """Renders the payload as an XML document rooted at ``<webhook>``.

    Mappings become child elements, sequences become repeated ``<item>``
    elements, ``None`` becomes an empty element.
    """

    format = WebhookFormat.XML.value
    content_type = XML_CONTENT_TYPE

    def render(self, payload: dict) -> str:
        root = ET.Element(XML_ROOT_ELEMENT)
        for key, value in payload.items():
            _append(root, key, value)
        return ET.tostring(root, encoding="unicode")


def _append(parent: ET.Element, tag: str, value: Any) -> None:
    if not _XML_NAME.fullmatch(tag):
        raise WebhookSerializationError(f"'{tag}' is not a valid XML element name")
    element = ET.SubElement(parent, tag)
    if value is None:
        return
    if isinstance(value, dict):
        for key, item in value.items():
            _append(element, str(key), item)
    elif isinstance(value, list):
        for item in value:
            _append(element, XML_ITEM_ELEMENT, item)
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    else:
        element.text = str(value)


def default_serializers(
    fields: Optional[Iterable[str]] = None,
    timestamp_format: TimestampFormat = TimestampFormat.UNIX,
) -> List[WebhookSerializer]:
    return [
        JsonWebhookSerializer(fields, timestamp_format),
        XmlWebhookSerializer(fields, timestamp_format),
    ]


def default_serializer_registry(
    fields: Optional[Iterable[str]] = None,
    timestamp_format: TimestampFormat = TimestampFormat.UNIX,
) -> SerializerRegistry:
    return SerializerRegistry(default_serializers(fields, timestamp_format))
