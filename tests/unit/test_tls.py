from __future__ import annotations

import ssl

import pytest

import azure_iot_mqtt.tls as tls
from azure_iot_mqtt.errors import TransportError
from azure_iot_mqtt.tls import TlsMode, probe_tls


@pytest.fixture
def handshakes(monkeypatch):
    """Record handshake attempts; fail those whose verify_mode is in `fail_modes`."""
    calls = []
    fail_modes = set()

    def _handshake(host, port, ctx, timeout):
        calls.append(ctx.verify_mode)
        if ctx.verify_mode in fail_modes:
            raise ssl.SSLError("certificate verify failed")

    monkeypatch.setattr(tls, "_handshake", _handshake)
    monkeypatch.setattr(tls, "verified_context", lambda ca_file=None: ssl.create_default_context())
    return calls, fail_modes


def test_verified_probe(handshakes):
    calls, _ = handshakes
    result = probe_tls("h.example.net", 8883)
    assert result.mode is TlsMode.VERIFIED
    assert result.context.verify_mode == ssl.CERT_REQUIRED
    assert calls == [ssl.CERT_REQUIRED]


def test_falls_back_to_insecure_when_allowed(handshakes):
    calls, fail_modes = handshakes
    fail_modes.add(ssl.CERT_REQUIRED)

    result = probe_tls("h.example.net", 8883, allow_insecure_fallback=True)

    assert result.mode is TlsMode.INSECURE
    assert result.context.verify_mode == ssl.CERT_NONE
    assert calls == [ssl.CERT_REQUIRED, ssl.CERT_NONE]


def test_hardened_build_refuses_fallback(handshakes):
    calls, fail_modes = handshakes
    fail_modes.add(ssl.CERT_REQUIRED)

    with pytest.raises(TransportError):
        probe_tls("h.example.net", 8883, allow_insecure_fallback=False)
    assert calls == [ssl.CERT_REQUIRED]


def test_both_fail_raises(handshakes):
    _, fail_modes = handshakes
    fail_modes.update({ssl.CERT_REQUIRED, ssl.CERT_NONE})
    with pytest.raises(TransportError):
        probe_tls("h.example.net", 8883)


def test_missing_ca_file_raises(tmp_path):
    with pytest.raises(TransportError):
        probe_tls("h.example.net", 8883, ca_file=str(tmp_path / "missing.pem"))


def test_insecure_context_skips_validation():
    ctx = tls.insecure_context()
    assert ctx.check_hostname is False
    assert ctx.verify_mode == ssl.CERT_NONE


@pytest.mark.parametrize("allow_fallback", [True, False])
def test_unencodable_hostname_raises_transport_error(monkeypatch, allow_fallback):
    def _handshake(host, port, ctx, timeout):
        raise UnicodeError("encoding with 'idna' codec failed (UnicodeError: label empty or too long)")

    monkeypatch.setattr(tls, "_handshake", _handshake)
    monkeypatch.setattr(tls, "verified_context", lambda ca_file=None: ssl.create_default_context())

    with pytest.raises(TransportError):
        probe_tls("a" * 64 + ".example.net", 8883, allow_insecure_fallback=allow_fallback)
