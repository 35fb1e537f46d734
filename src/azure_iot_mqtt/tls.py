"""
TLS setup for the IoT Hub MQTT endpoint.

The hub chains to DigiCert Global Root G2, pinned below. probe_tls() checks
reachability with full validation first; the unvalidated fallback only runs
when explicitly allowed and exists for diagnostics on devices with a broken
trust setup.
"""

from __future__ import annotations

import enum
import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Optional

from azure_iot_mqtt.errors import TransportError

logger = logging.getLogger(__name__)

# DigiCert Global Root G2, valid until 2038-01-15.
AZURE_IOT_ROOT_CA = """-----BEGIN CERTIFICATE-----
MIIDjjCCAnagAwIBAgIQAzrx5qcRqaC7KGSxHQn65TANBgkqhkiG9w0BAQsFADBh
MQswCQYDVQQGEwJVUzEVMBMGA1UEChMMRGlnaUNlcnQgSW5jMRkwFwYDVQQLExB3
d3cuZGlnaWNlcnQuY29tMSAwHgYDVQQDExdEaWdpQ2VydCBHbG9iYWwgUm9vdCBH
MjAeFw0xMzA4MDExMjAwMDBaFw0zODAxMTUxMjAwMDBaMGExCzAJBgNVBAYTAlVT
MRUwEwYDVQQKEwxEaWdpQ2VydCBJbmMxGTAXBgNVBAsTEHd3dy5kaWdpY2VydC5j
b20xIDAeBgNVBAMTF0RpZ2lDZXJ0IEdsb2JhbCBSb290IEcyMIIBIjANBgkqhkiG
9w0BAQEFAAOCAQ8AMIIBCgKCAQEAuzfNNNx7a8myaJCtSnX/RrohCgiN9RlUyfuI
2/Ou8jqJkTx65qsGGmvPrC3oXgkkRLpimn7Wo6h+4FR1IAWsULecYxpsMNzaHxmx
1x7e/dfgy5SDN67sH0NO3Xss0r0upS/kqbitOtSZpLYl6ZtrAGCSYP9PIUkY92eQ
q2EGnI/yuum06ZIya7XzV+hdG82MHauVBJVJ8zUtluNJbd134/tJS7SsVQepj5Wz
tCO7TG1F8PapspUwtP1MVYwnSlcUfIKdzXOS0xZKBgyMUNGPHgm+F6HmIcr9g+UQ
vIOlCsRnKPZzFBQ9RnbDhxSJITRNrw9FDKZJobq7nMWxM4MphQIDAQABo0IwQDAP
BgNVHRMBAf8EBTADAQH/MA4GA1UdDwEB/wQEAwIBhjAdBgNVHQ4EFgQUTiJUIBiV
5uNu5g/6+rkS7QYXjzkwDQYJKoZIhvcNAQELBQADggEBAGBnKJRvDkhj6zHd6mcY
1Yl9PMCcit652T4Vs5rHh5zhQVrBdPZBp9NOZGerGm5HaDgcqQ3L2jTPNsONq6vL
HOgszJEzY5d2LO7D+VQ8qf9w1fUfx4ztcdL0Y5Bx7ey/ZL/OB0d9m0K5SH5Rp4gf
qyeHeSnYLJwHJG/NPawNl/WPtjplVp2B8l4hy2aVpv8XNNP/9KlIjN8C4yKp9hsj
p+mD9LKuGCBiIIXBu7K2UVT/yWJmM6g9jZJDLf3uXMiPcOq6BNFuPaH7t7bP3MxW
3WF5+VGPYtM8k+8W3dKhpGnlB8KdvO7ItGp4PysVIxbGNfyXFCy4h6PTY7NxJVma
lJM=
-----END CERTIFICATE-----
"""


class TlsMode(str, enum.Enum):
    VERIFIED = "verified"
    INSECURE = "insecure"


@dataclass(frozen=True)
class TlsProbeResult:
    mode: TlsMode
    context: ssl.SSLContext


def verified_context(ca_file: Optional[str] = None) -> ssl.SSLContext:
    if ca_file:
        return ssl.create_default_context(cafile=ca_file)
    return ssl.create_default_context(cadata=AZURE_IOT_ROOT_CA)


def insecure_context() -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _handshake(host: str, port: int, ctx: ssl.SSLContext, timeout: float) -> None:
    with socket.create_connection((host, port), timeout=timeout) as raw:
        with ctx.wrap_socket(raw, server_hostname=host):
            pass


def probe_tls(
    host: str,
    port: int,
    *,
    ca_file: Optional[str] = None,
    allow_insecure_fallback: bool = True,
    timeout: float = 10.0,
) -> TlsProbeResult:
    """
    Open and close one TLS connection to host:port.

    Returns the context that worked. Raises TransportError when validated TLS
    fails and the insecure fallback is disabled or also fails.
    """
    try:
        ctx = verified_context(ca_file)
    except (OSError, ValueError) as exc:
        raise TransportError(f"Cannot load CA certificates: {exc}") from exc
    logger.info("Testing TLS connection to %s:%d...", host, port)
    try:
        _handshake(host, port, ctx, timeout)
    except (OSError, ValueError) as exc:  # ssl.SSLError is an OSError; bad IDNA labels raise UnicodeError
        if not allow_insecure_fallback:
            raise TransportError(f"TLS connection to {host}:{port} failed: {exc}") from exc
        logger.warning("Validated TLS failed (%s), trying insecure...", exc)
    else:
        logger.info("TLS test successful")
        return TlsProbeResult(TlsMode.VERIFIED, ctx)

    ctx = insecure_context()
    try:
        _handshake(host, port, ctx, timeout)
    except (OSError, ValueError) as exc:
        raise TransportError(f"TLS connection to {host}:{port} failed: {exc}") from exc
    logger.warning("TLS insecure test successful; server certificate is NOT validated")
    return TlsProbeResult(TlsMode.INSECURE, ctx)
