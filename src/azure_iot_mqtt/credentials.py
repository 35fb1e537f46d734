"""
Device connection-string parsing.

Format: ``HostName=<hub>.azure-devices.net;DeviceId=<id>;SharedAccessKey=<base64>``
Fields are ``;``-delimited ``key=value`` pairs in any order. Values are split on
the first ``=`` only because base64 keys end with ``=`` padding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from azure_iot_mqtt.errors import (
    DuplicateField,
    FieldTooLong,
    MalformedSegment,
    MissingField,
)

logger = logging.getLogger(__name__)

HOST_NAME = "HostName"
DEVICE_ID = "DeviceId"
SHARED_ACCESS_KEY = "SharedAccessKey"

# DNS name limit, IoT Hub device id limit, generous bound on a base64 key.
FIELD_LIMITS: dict[str, int] = {
    HOST_NAME: 253,
    DEVICE_ID: 128,
    SHARED_ACCESS_KEY: 128,
}

_REQUIRED = (HOST_NAME, DEVICE_ID, SHARED_ACCESS_KEY)


@dataclass(frozen=True, slots=True)
class Credentials:
    hostname: str
    device_id: str
    key: str  # base64 text, decoded only when signing

    def __repr__(self) -> str:
        return f"Credentials(hostname={self.hostname!r}, device_id={self.device_id!r}, key=<redacted>)"


def _split_pairs(conn_str: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for segment in conn_str.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        name, sep, value = segment.partition("=")
        if not sep or not name:
            raise MalformedSegment(segment)
        name = name.strip()
        if name in fields:
            raise DuplicateField(name)
        fields[name] = value.strip()
    return fields


def parse_connection_string(conn_str: str) -> Credentials:
    """
    Parse a device connection string into immutable Credentials.

    Raises MissingField, FieldTooLong, DuplicateField or MalformedSegment
    (all ParseError). Fields over their limit are rejected, never truncated.
    """
    if not isinstance(conn_str, str):
        raise MalformedSegment(repr(type(conn_str)))

    fields = _split_pairs(conn_str)

    for name in _REQUIRED:
        value = fields.get(name)
        if not value:
            raise MissingField(name)
        limit = FIELD_LIMITS[name]
        if len(value) > limit:
            raise FieldTooLong(name, len(value), limit)

    ignored = sorted(set(fields) - set(_REQUIRED))
    if ignored:
        logger.debug("Ignoring connection string fields: %s", ", ".join(ignored))

    creds = Credentials(
        hostname=fields[HOST_NAME],
        device_id=fields[DEVICE_ID],
        key=fields[SHARED_ACCESS_KEY],
    )
    logger.info("Connection string parsed: hostname=%s device_id=%s", creds.hostname, creds.device_id)
    return creds
