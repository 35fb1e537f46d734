"""
Public Azure IoT Hub device client.

Wires the MQTT session, topic router and twin tracker together and
dispatches inbound messages to application callbacks. Callbacks run
synchronously inside loop(), in arrival order, and share the cooperative
timeline with protocol servicing, so they must return quickly.

No exception crosses this API: failures come back as bool / RequestStatus
and are logged.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Any, Callable, Mapping, Optional, Union
from urllib.parse import quote, urlencode

from azure_iot_mqtt.config import AzureIoTConfig
from azure_iot_mqtt.credentials import Credentials, parse_connection_string
from azure_iot_mqtt.errors import AzureIoTError, ParseError, ProtocolError, TwinBusy
from azure_iot_mqtt.routing import InboundMessage, MessageKind, classify
from azure_iot_mqtt.session import ConnectionState, MqttSession
from azure_iot_mqtt.twin import TwinRequestKind, TwinRequestTracker

logger = logging.getLogger(__name__)

C2DCallback = Callable[[InboundMessage], None]
DesiredPropertiesCallback = Callable[[bytes, int], None]
TwinReceivedCallback = Callable[[bytes], None]

Payload = Union[str, bytes, bytearray]


class RequestStatus(str, enum.Enum):
    SENT = "sent"
    BUSY = "busy"
    NOT_CONNECTED = "not_connected"
    FAILED = "failed"


def _to_bytes(payload: Any) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (dict, list)):
        return json.dumps(payload).encode("utf-8")
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


def encode_properties(properties: Union[str, Mapping[str, Any], None]) -> str:
    """Telemetry property bag: strings pass through as already URL-encoded, mappings get encoded."""
    if not properties:
        return ""
    if isinstance(properties, str):
        return properties
    return urlencode({k: str(v) for k, v in properties.items()}, quote_via=quote)


class AzureIoTClient:
    """
    Device client for one IoT Hub identity.

    Typical use:
        client = AzureIoTClient(load_config())
        client.on_c2d_message(handle_c2d)
        if client.init() and client.connect():
            while True:
                client.loop()
    """

    def __init__(
        self,
        config: AzureIoTConfig,
        *,
        session: Optional[MqttSession] = None,
        tracker: Optional[TwinRequestTracker] = None,
        **session_kwargs: Any,
    ) -> None:
        self.config = config
        self.tracker = tracker or (session.tracker if session else TwinRequestTracker())
        self.session = session or MqttSession(config, self.tracker, **session_kwargs)
        self.session.set_message_handler(self._on_message)

        self._creds: Optional[Credentials] = None
        self._c2d_cb: Optional[C2DCallback] = None
        self._desired_cb: Optional[DesiredPropertiesCallback] = None
        self._twin_cb: Optional[TwinReceivedCallback] = None

    # -------------------------
    # Accessors
    # -------------------------
    @property
    def device_id(self) -> Optional[str]:
        return self._creds.device_id if self._creds else None

    @property
    def hostname(self) -> Optional[str]:
        return self._creds.hostname if self._creds else None

    @property
    def connection_state(self) -> ConnectionState:
        return self.session.connection_state

    # -------------------------
    # Callback registration (usable as decorators)
    # -------------------------
    def on_c2d_message(self, callback: C2DCallback) -> C2DCallback:
        self._c2d_cb = callback
        return callback

    def on_desired_properties(self, callback: DesiredPropertiesCallback) -> DesiredPropertiesCallback:
        self._desired_cb = callback
        return callback

    def on_twin_received(self, callback: TwinReceivedCallback) -> TwinReceivedCallback:
        self._twin_cb = callback
        return callback

    # -------------------------
    # Lifecycle
    # -------------------------
    def init(self, connection_string: Optional[str] = None) -> bool:
        """Parse credentials and initialize the session. False on any failure; no degraded mode."""
        logger.info("Initializing...")
        conn_str = connection_string if connection_string is not None else self.config.connection_string
        try:
            creds = parse_connection_string(conn_str)
            self.session.init(creds)
        except ParseError as exc:
            logger.error("Invalid connection string: %s", exc)
            return False
        except AzureIoTError as exc:
            logger.error("Initialization failed: %s", exc)
            return False
        self._creds = creds
        return True

    def connect(self) -> bool:
        return self.session.connect()

    def is_connected(self) -> bool:
        return self.session.is_connected()

    def loop(self, timeout: float = 0.0) -> None:
        self.session.loop(timeout)

    def disconnect(self) -> None:
        self.session.disconnect()

    # -------------------------
    # Device-to-cloud
    # -------------------------
    def send_telemetry(
        self,
        payload: Payload,
        properties: Union[str, Mapping[str, Any], None] = None,
    ) -> bool:
        if not self.is_connected() or self.session.topics is None:
            logger.warning("Cannot send: not connected")
            return False
        topic = self.session.topics.telemetry(encode_properties(properties))
        if self.session.publish(topic, _to_bytes(payload)):
            logger.info("Telemetry sent")
            return True
        logger.warning("Telemetry send failed")
        return False

    # -------------------------
    # Device twin
    # -------------------------
    def request_twin(self) -> RequestStatus:
        """Request the full twin; the document arrives through on_twin_received."""
        if not self.is_connected() or self.session.topics is None:
            logger.warning("Cannot request twin: not connected")
            return RequestStatus.NOT_CONNECTED
        try:
            req = self.tracker.send_get()
        except TwinBusy as exc:
            logger.warning("%s", exc)
            return RequestStatus.BUSY

        if not self.session.publish(self.session.topics.twin_get(req.request_id), b""):
            self.tracker.cancel(req.request_id)
            logger.warning("Twin GET request failed")
            return RequestStatus.FAILED
        logger.info("Twin GET request sent (rid=%d)", req.request_id)
        return RequestStatus.SENT

    def update_reported_properties(self, payload: Union[Payload, Mapping[str, Any]]) -> RequestStatus:
        if not self.is_connected() or self.session.topics is None:
            logger.warning("Cannot update reported: not connected")
            return RequestStatus.NOT_CONNECTED
        body = _to_bytes(dict(payload) if isinstance(payload, Mapping) else payload)

        req = self.tracker.send_patch()
        if not self.session.publish(self.session.topics.twin_patch_reported(req.request_id), body):
            self.tracker.cancel(req.request_id)
            logger.warning("Reported properties send failed")
            return RequestStatus.FAILED
        logger.info("Reported properties sent (rid=%d)", req.request_id)
        return RequestStatus.SENT

    # -------------------------
    # Inbound dispatch
    # -------------------------
    def _on_message(self, topic: str, payload: bytes) -> None:
        logger.info("Message on %s (%d bytes)", topic, len(payload))
        try:
            msg = classify(topic, payload)
        except ProtocolError as exc:
            logger.warning("Dropping malformed message: %s", exc)
            return

        if msg.kind is MessageKind.C2D_MESSAGE:
            logger.info("-> C2D message")
            self._invoke(self._c2d_cb, msg)
        elif msg.kind is MessageKind.TWIN_RESPONSE:
            self._handle_twin_response(msg)
        elif msg.kind is MessageKind.DESIRED_PROPERTY_PATCH:
            logger.info("-> Desired properties, version: %s", msg.version)
            self._invoke(self._desired_cb, msg.payload, msg.version)
        else:
            logger.warning("-> Unknown message type on %s, dropped", topic)

    def _handle_twin_response(self, msg: InboundMessage) -> None:
        assert msg.status is not None
        logger.info("-> Twin response, status: %d rid: %s", msg.status, msg.request_id)
        req = self.tracker.resolve(msg.status, msg.request_id)
        if req is None:
            logger.info("Ignoring twin response with no pending request")
            return

        if req.kind is TwinRequestKind.GET and msg.status == 200:
            logger.info("Full device twin received")
            self._invoke(self._twin_cb, msg.payload)
        elif req.kind is TwinRequestKind.PATCH and msg.status in (200, 204):
            logger.info("Reported properties accepted (rid=%d)", req.request_id)
        else:
            logger.warning("Twin %s failed: status %d (rid=%d)", req.kind.value, msg.status, req.request_id)

    def _invoke(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Application callback raised")
