"""Envelope encoding and HMAC signing of outbound webhook bodies."""
from __future__ import annotations

import hmac
import json
import re
from hashlib import sha256
from typing import Any
from urllib.parse import urlencode
from xml.etree import ElementTree

from event_delivery_service.domain.enums import BodyFormat

SIGNATURE_HEADER = "X-Webhook-Signature"

_XML_NAME = re.compile(r"(?![Xx][Mm][Ll])[A-Za-z_][A-Za-z0-9_.-]*")

_CONTENT_TYPES = {
    BodyFormat.JSON: "application/json",
    BodyFormat.FORM: "application/x-www-form-urlencoded",
    BodyFormat.XML: "application/xml",
}


def sign(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()


def canonical_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def _form_body(envelope: dict[str, Any]) -> bytes:
    # Nested values (data) are JSON-encoded inside the form field
    fields = []
    for key, value in envelope.items():
        if isinstance(value, (dict, list)):
            fields.append((key, canonical_json(value).decode("utf-8")))
        elif value is None:
            fields.append((key, ""))
        else:
            fields.append((key, str(value)))
    return urlencode(fields).encode("utf-8")


def _xml_element(tag: str, value: Any) -> ElementTree.Element:
    element = ElementTree.Element(tag)
    if isinstance(value, dict):
        for key, item in value.items():
            key = str(key)
            if _XML_NAME.fullmatch(key):
                element.append(_xml_element(key, item))
            else:
                # keys that are not valid tag names travel as an attribute
                child = _xml_element("item", item)
                child.set("key", key)
                element.append(child)
    elif isinstance(value, list):
        for item in value:
            element.append(_xml_element("item", item))
    elif value is not None:
        element.text = str(value).lower() if isinstance(value, bool) else str(value)
    return element


def _xml_body(envelope: dict[str, Any]) -> bytes:
    root = _xml_element("webhook", envelope)
    return ElementTree.tostring(root, encoding="utf-8", xml_declaration=True)


def encode_body(envelope: dict[str, Any], body_format: BodyFormat) -> tuple[bytes, str]:
    """Render ``envelope`` as the exact bytes to send plus their Content-Type."""
    if body_format == BodyFormat.FORM:
        body = _form_body(envelope)
    elif body_format == BodyFormat.XML:
        body = _xml_body(envelope)
    else:
        body = canonical_json(envelope)
    return body, _CONTENT_TYPES[body_format]
