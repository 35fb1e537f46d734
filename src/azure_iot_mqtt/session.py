"""
MQTT session lifecycle for one IoT Hub device identity.

UNINITIALIZED -> INITIALIZING -> READY -> CONNECTING -> CONNECTED
              -> (DISCONNECTED -> CONNECTING)*

Connect attempts are bounded (connect_attempts, fixed retry delay). loop()
reconnects inline when the link drops, so a single loop() call may block for
the whole retry budget.
"""

from __future__ import annotations

import enum
import logging
import ssl
import time
from typing import Callable, Optional

from azure_iot_mqtt.config import AzureIoTConfig
from azure_iot_mqtt.credentials import Credentials
from azure_iot_mqtt.errors import TransportError
from azure_iot_mqtt.sas import SasToken, generate_sas_token
from azure_iot_mqtt.time_source import NtpTimeSource, TimeSource
from azure_iot_mqtt.tls import TlsProbeResult, probe_tls
from azure_iot_mqtt.topics import TopicSchema
from azure_iot_mqtt.transport import MessageHandler, PahoTransport, Transport
from azure_iot_mqtt.twin import TwinRequestTracker

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, int, Optional[ssl.SSLContext], AzureIoTConfig], Transport]
TlsProbe = Callable[..., TlsProbeResult]


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _paho_transport(host: str, port: int, tls_context: Optional[ssl.SSLContext], config: AzureIoTConfig) -> Transport:
    return PahoTransport(host, port, tls_context, keepalive=config.keepalive_s)


class MqttSession:
    def __init__(
        self,
        config: AzureIoTConfig,
        tracker: TwinRequestTracker,
        *,
        time_source: Optional[TimeSource] = None,
        transport_factory: TransportFactory = _paho_transport,
        tls_probe: TlsProbe = probe_tls,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self.time_source = time_source or NtpTimeSource(config.ntp_server)

        self._transport_factory = transport_factory
        self._tls_probe = tls_probe
        self._sleep = sleep

        self.state = SessionState.UNINITIALIZED
        self.creds: Optional[Credentials] = None
        self.topics: Optional[TopicSchema] = None
        self.username: Optional[str] = None
        self.tls: Optional[TlsProbeResult] = None
        self._token: Optional[SasToken] = None
        self._transport: Optional[Transport] = None
        self._handler: Optional[MessageHandler] = None
        self._keep_connected = False  # set by connect(), cleared by disconnect()
        self.connect_attempts = 0  # attempts made by the last connect()

    # -------------------------
    # State
    # -------------------------
    @property
    def connection_state(self) -> ConnectionState:
        if self.state is SessionState.CONNECTED:
            return ConnectionState.CONNECTED
        if self.state is SessionState.CONNECTING:
            return ConnectionState.CONNECTING
        return ConnectionState.DISCONNECTED

    def is_connected(self) -> bool:
        return (
            self.state is SessionState.CONNECTED
            and self._transport is not None
            and self._transport.is_connected()
        )

    @property
    def token(self) -> Optional[SasToken]:
        return self._token

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._handler = handler
        if self._transport is not None:
            self._transport.set_message_handler(handler)

    # -------------------------
    # Lifecycle
    # -------------------------
    def init(self, creds: Credentials) -> None:
        """
        Prepare identity, first token, topics and a TLS context.

        Raises InvalidKey for an unusable key and TransportError when the hub
        is unreachable over TLS. The session stays UNINITIALIZED on failure.
        """
        logger.info("Initializing session for %s/%s", creds.hostname, creds.device_id)
        if self._transport is not None:
            logger.info("Re-initializing; closing previous transport")
            self._keep_connected = False
            try:
                self._transport.disconnect()
            finally:
                self.tracker.abandon_all()
                self._transport = None
        self.state = SessionState.INITIALIZING
        try:
            self.time_source.sync()
            self.creds = creds
            self._token = self._new_token()

            self.topics = TopicSchema(creds.hostname, creds.device_id, self.config.api_version)
            self.username = self.topics.username()
            logger.info("Username: %s", self.username)
            logger.info("D2C topic: %s", self.topics.telemetry())

            self.tls = self._tls_probe(
                creds.hostname,
                self.config.port,
                ca_file=self.config.ca_file,
                allow_insecure_fallback=self.config.allow_insecure_tls,
            )
            self._transport = self._transport_factory(
                creds.hostname, self.config.port, self.tls.context, self.config
            )
            if self._handler is not None:
                self._transport.set_message_handler(self._handler)
        except Exception:
            self.state = SessionState.UNINITIALIZED
            raise

        self.state = SessionState.READY
        logger.info("Initialization complete (tls=%s)", self.tls.mode.value)

    def _new_token(self) -> SasToken:
        assert self.creds is not None
        expiry = self.time_source.now() + self.config.sas_ttl_s
        token = generate_sas_token(self.creds, expiry)
        logger.info("SAS token generated, expires at %d", token.expiry_epoch)
        return token

    def _current_token(self) -> SasToken:
        now = self.time_source.now()
        if self._token is None or self._token.is_expired(now, self.config.sas_margin_s):
            logger.info("SAS token stale, regenerating")
            self._token = self._new_token()
        return self._token

    def connect(self) -> bool:
        """
        Connect with at most config.connect_attempts attempts, sleeping
        config.retry_delay_s between them. Subscribes on success.
        """
        if self.state in (SessionState.UNINITIALIZED, SessionState.INITIALIZING):
            logger.error("Not initialized!")
            return False
        assert self.creds is not None and self._transport is not None and self.topics is not None

        logger.info("Connecting to IoT Hub %s:%d...", self.creds.hostname, self.config.port)
        self._keep_connected = True
        self.state = SessionState.CONNECTING
        self.tracker.abandon_all()
        self.connect_attempts = 0

        attempts = self.config.connect_attempts
        for attempt in range(1, attempts + 1):
            self.connect_attempts = attempt
            logger.info("Attempt %d/%d", attempt, attempts)
            password = self._current_token().token
            try:
                ok = self._transport.connect(self.creds.device_id, self.username, password)
            except TransportError as exc:
                logger.warning("Attempt %d failed: %s", attempt, exc)
                ok = False

            if ok:
                self.state = SessionState.CONNECTED
                logger.info("Connected!")
                self._subscribe_all()
                return True

            if attempt < attempts:
                self._sleep(self.config.retry_delay_s)

        self.state = SessionState.DISCONNECTED
        logger.error("Connection failed after %d attempts", attempts)
        return False

    def _subscribe_all(self) -> None:
        assert self._transport is not None and self.topics is not None
        failed = [t for t in self.topics.subscriptions() if not self._transport.subscribe(t)]
        if failed:
            logger.warning("Warning: some subscriptions failed: %s", ", ".join(failed))
        else:
            logger.info("Subscribed to all topics")

    def loop(self, timeout: float = 0.0) -> None:
        """One cooperative service tick; reconnects inline if the link dropped."""
        if not self._keep_connected:
            return
        assert self._transport is not None

        if not self._transport.is_connected():
            self.state = SessionState.DISCONNECTED
            logger.warning("Disconnected, attempting reconnect...")
            if not self.connect():
                return

        self._transport.loop(timeout)

    def publish(self, topic: str, payload: bytes) -> bool:
        """Fire-and-forget at QoS 0. No retry here; callers decide whether to resend."""
        if not self.is_connected():
            return False
        assert self._transport is not None
        return self._transport.publish(topic, payload, qos=0)

    def disconnect(self) -> None:
        self._keep_connected = False
        if self._transport is None or self.state in (SessionState.UNINITIALIZED, SessionState.INITIALIZING):
            return
        try:
            self._transport.disconnect()
        finally:
            self.tracker.abandon_all()
            self.state = SessionState.DISCONNECTED
            logger.info("Session disconnected")
