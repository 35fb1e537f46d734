"""
Shared Access Signature (SAS) token generation for IoT Hub device identities.

token = "SharedAccessSignature sr={uri}&sig={sig}&se={expiry}" where
sig = urlencode(base64(HMAC-SHA256(base64decode(key), "{uri}\\n{expiry}"))).

Pure functions; the caller owns the clock and decides when to regenerate.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from urllib.parse import quote, unquote_to_bytes

from azure_iot_mqtt.credentials import Credentials
from azure_iot_mqtt.errors import InvalidKey


def percent_encode(data: str | bytes) -> str:
    """RFC 3986 percent-encoding: only [A-Za-z0-9-_.~] pass through, uppercase %XX otherwise."""
    return quote(data, safe="")


def percent_decode(text: str) -> bytes:
    return unquote_to_bytes(text)


def resource_uri(creds: Credentials) -> str:
    return f"{creds.hostname}/devices/{creds.device_id}"


def build_signing_string(encoded_uri: str, expiry_epoch: int) -> str:
    return f"{encoded_uri}\n{int(expiry_epoch)}"


def decode_key(key: str) -> bytes:
    try:
        decoded = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKey("SharedAccessKey is not valid base64") from exc
    if not decoded:
        raise InvalidKey("SharedAccessKey decodes to zero bytes")
    return decoded


def sign(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


@dataclass(frozen=True, slots=True)
class SasToken:
    resource_uri: str
    expiry_epoch: int
    signature: str  # base64 HMAC, not percent-encoded
    token: str

    def is_expired(self, now: int, margin_s: int = 0) -> bool:
        """True once now + margin reaches expiry; a token at its expiry second is invalid."""
        return now + margin_s >= self.expiry_epoch

    def __str__(self) -> str:
        return self.token

    def __repr__(self) -> str:
        return f"SasToken(resource_uri={self.resource_uri!r}, expiry_epoch={self.expiry_epoch})"


def generate_sas_token(creds: Credentials, expiry_epoch: int) -> SasToken:
    """
    Build a device SAS token valid until expiry_epoch (seconds since epoch).

    Raises InvalidKey if the SharedAccessKey is not base64. Deterministic for
    fixed inputs.
    """
    expiry_epoch = int(expiry_epoch)
    uri = resource_uri(creds)
    encoded_uri = percent_encode(uri)
    signing_string = build_signing_string(encoded_uri, expiry_epoch)

    digest = sign(decode_key(creds.key), signing_string)
    signature = base64.b64encode(digest).decode("ascii")

    token = (
        f"SharedAccessSignature sr={encoded_uri}"
        f"&sig={percent_encode(signature)}"
        f"&se={expiry_epoch}"
    )
    return SasToken(
        resource_uri=uri,
        expiry_epoch=expiry_epoch,
        signature=signature,
        token=token,
    )
