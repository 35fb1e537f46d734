"""
Inbound topic classification.

Priority order:
  1. */messages/devicebound/*              -> C2D_MESSAGE
  2. $iothub/twin/res/<status>/?$rid=<n>    -> TWIN_RESPONSE
  3. $iothub/twin/PATCH/properties/desired/ -> DESIRED_PROPERTY_PATCH
  4. anything else                          -> UNCLASSIFIED

Payloads are never interpreted, only carried along.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl

from azure_iot_mqtt.errors import ProtocolError
from azure_iot_mqtt.topics import (
    DESIRED_PATCH_PREFIX,
    DEVICEBOUND_MARKER,
    TWIN_RESPONSE_PREFIX,
)


class MessageKind(str, enum.Enum):
    C2D_MESSAGE = "c2d_message"
    TWIN_RESPONSE = "twin_response"
    DESIRED_PROPERTY_PATCH = "desired_property_patch"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True, slots=True)
class InboundMessage:
    topic: str
    payload: bytes
    kind: MessageKind
    status: Optional[int] = None
    request_id: Optional[int] = None
    version: Optional[int] = None
    properties: str = ""  # raw trailing segment of a C2D topic


def _query(topic: str) -> dict[str, str]:
    _, sep, query = topic.partition("?")
    if not sep:
        return {}
    return dict(parse_qsl(query, keep_blank_values=True))


def _parse_int(topic: str, name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ProtocolError(f"Non-integer {name} {raw!r} in topic {topic}") from exc


def _twin_status(topic: str) -> int:
    rest = topic[len(TWIN_RESPONSE_PREFIX):]
    digits = ""
    for ch in rest:
        if ch not in "0123456789":
            break
        digits += ch
    if not digits:
        raise ProtocolError(f"Twin response without status code: {topic}")
    return int(digits)


def classify(topic: str, payload: bytes = b"") -> InboundMessage:
    """
    Classify one inbound publish. Raises ProtocolError when a twin topic
    carries a malformed status, $rid or $version.
    """
    payload = bytes(payload or b"")

    marker = topic.find(DEVICEBOUND_MARKER)
    if marker != -1:
        return InboundMessage(
            topic=topic,
            payload=payload,
            kind=MessageKind.C2D_MESSAGE,
            properties=topic[marker + len(DEVICEBOUND_MARKER):],
        )

    if topic.startswith(TWIN_RESPONSE_PREFIX):
        status = _twin_status(topic)
        rid = _query(topic).get("$rid")
        return InboundMessage(
            topic=topic,
            payload=payload,
            kind=MessageKind.TWIN_RESPONSE,
            status=status,
            request_id=_parse_int(topic, "$rid", rid) if rid is not None else None,
        )

    if topic.startswith(DESIRED_PATCH_PREFIX):
        raw_version = _query(topic).get("$version")
        return InboundMessage(
            topic=topic,
            payload=payload,
            kind=MessageKind.DESIRED_PROPERTY_PATCH,
            version=_parse_int(topic, "$version", raw_version) if raw_version is not None else 0,
        )

    return InboundMessage(topic=topic, payload=payload, kind=MessageKind.UNCLASSIFIED)
