"""
Pytest configuration and shared fixtures
"""
import base64
import os
import ssl
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from azure_iot_mqtt.config import AzureIoTConfig  # noqa: E402
from azure_iot_mqtt.tls import TlsMode, TlsProbeResult  # noqa: E402

ZERO_KEY = base64.b64encode(bytes(16)).decode("ascii")
CONN_STR = f"HostName=h.example.net;DeviceId=dev1;SharedAccessKey={ZERO_KEY}"


class FakeTransport:
    """In-memory Transport: scripted connect results, recorded publishes."""

    def __init__(self, connect_results=None):
        self.connect_results = list(connect_results or [])
        self.connect_calls = []
        self.subscribed = []
        self.published = []
        self.loop_calls = 0
        self.connected = False
        self.subscribe_ok = True
        self.publish_ok = True
        self.handler = None
        self.disconnected = False

    def set_message_handler(self, handler):
        self.handler = handler

    def connect(self, client_id, username, password):
        self.connect_calls.append((client_id, username, password))
        ok = self.connect_results.pop(0) if self.connect_results else True
        self.connected = ok
        return ok

    def is_connected(self):
        return self.connected

    def subscribe(self, topic, qos=0):
        self.subscribed.append(topic)
        return self.subscribe_ok if not callable(self.subscribe_ok) else self.subscribe_ok(topic)

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return self.publish_ok

    def loop(self, timeout=0.0):
        self.loop_calls += 1

    def disconnect(self):
        self.disconnected = True
        self.connected = False

    # test helper: simulate an inbound publish arriving during loop()
    def deliver(self, topic, payload=b""):
        self.handler(topic, payload)


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self._now = now
        self.sync_calls = 0

    def sync(self):
        self.sync_calls += 1
        return True

    def now(self):
        return self._now

    def advance(self, seconds):
        self._now += seconds


@pytest.fixture
def config():
    return AzureIoTConfig(connection_string=CONN_STR, retry_delay_s=3.0)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def probe_calls():
    return []


@pytest.fixture
def session_kwargs(fake_transport, fake_clock, sleeps, probe_calls):
    """Keyword arguments wiring a session to fakes instead of the network."""

    def _probe(host, port, **kwargs):
        probe_calls.append((host, port, kwargs))
        return TlsProbeResult(TlsMode.VERIFIED, ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT))

    return {
        "time_source": fake_clock,
        "transport_factory": lambda host, port, ctx, cfg: fake_transport,
        "tls_probe": _probe,
        "sleep": sleeps.append,
    }
