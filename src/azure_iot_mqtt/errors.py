"""
Error kinds raised inside the Azure IoT MQTT client.

Components raise these; the AzureIoTClient facade converts them into
explicit results plus log records so none cross the public API.
"""

from __future__ import annotations


class AzureIoTError(Exception):
    """Base class for all client errors."""


class ParseError(AzureIoTError, ValueError):
    """Malformed or missing connection-string field. Fatal to init."""


class MissingField(ParseError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Connection string is missing required field: {name}")
        self.name = name


class FieldTooLong(ParseError):
    def __init__(self, name: str, length: int, limit: int) -> None:
        super().__init__(f"Connection string field {name} is {length} chars (max {limit})")
        self.name = name
        self.length = length
        self.limit = limit


class DuplicateField(ParseError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Connection string field appears more than once: {name}")
        self.name = name


class MalformedSegment(ParseError):
    def __init__(self, segment: str) -> None:
        # Never echo the segment itself, it may carry key material.
        super().__init__("Connection string segment is not key=value")
        self.segment = segment


class CryptoError(AzureIoTError):
    """Key material could not be used for signing. Fatal to init."""


class InvalidKey(CryptoError):
    """SharedAccessKey is not valid base64."""


class TransportError(AzureIoTError):
    """TLS or socket failure."""


class ProtocolError(AzureIoTError):
    """Inbound topic or status has an unexpected shape. Logged and dropped."""


class TwinBusy(AzureIoTError):
    """A full-twin GET is already outstanding."""

    def __init__(self, request_id: int) -> None:
        super().__init__(f"Twin GET already pending (rid={request_id})")
        self.request_id = request_id
