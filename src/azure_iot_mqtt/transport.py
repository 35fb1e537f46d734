"""
MQTT transport used by the session.

PahoTransport drives paho-mqtt cooperatively: no loop_start() thread, every
network read/write happens inside connect() or loop(), both bounded by
timeouts. Inbound publishes reach the registered handler synchronously from
within loop().
"""

from __future__ import annotations

import logging
import ssl
import time
from typing import Any, Callable, Optional, Protocol

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]


class Transport(Protocol):
    """Minimal interface the session needs from an MQTT connection."""

    def set_message_handler(self, handler: MessageHandler) -> None: ...

    def connect(self, client_id: str, username: str, password: str) -> bool: ...

    def is_connected(self) -> bool: ...

    def subscribe(self, topic: str, qos: int = 0) -> bool: ...

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> bool: ...

    def loop(self, timeout: float = 0.0) -> None: ...

    def disconnect(self) -> None: ...


class PahoTransport:
    def __init__(
        self,
        host: str,
        port: int,
        tls_context: Optional[ssl.SSLContext],
        *,
        keepalive: int = 60,
        connect_timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.connect_timeout = connect_timeout
        self._tls_context = tls_context

        self._client: Optional[mqtt.Client] = None
        self._client_id: Optional[str] = None
        self._handler: Optional[MessageHandler] = None
        self._connack: Any = None

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._handler = handler

    def _ensure_client(self, client_id: str) -> mqtt.Client:
        if self._client is not None and self._client_id == client_id:
            return self._client

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        if self._tls_context is not None:
            client.tls_set_context(self._tls_context)
            if self._tls_context.verify_mode == ssl.CERT_NONE:
                client.tls_insecure_set(True)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client
        self._client_id = client_id
        return client

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        self._connack = reason_code
        if reason_code != 0:
            logger.error("MQTT connect refused rc=%s", reason_code)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code != 0:
            logger.warning("Unexpected disconnect rc=%s", reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        if self._handler is None:
            logger.debug("Dropping message on %s: no handler", msg.topic)
            return
        self._handler(msg.topic, bytes(msg.payload))

    def connect(self, client_id: str, username: str, password: str) -> bool:
        """
        Send CONNECT and pump the network until CONNACK or connect_timeout.
        Returns True only on an accepted CONNACK.
        """
        client = self._ensure_client(client_id)
        client.username_pw_set(username, password)
        self._connack = None

        try:
            client.connect(self.host, self.port, keepalive=self.keepalive)
        except OSError as exc:
            logger.warning("MQTT connect to %s:%d failed: %s", self.host, self.port, exc)
            return False

        deadline = time.monotonic() + self.connect_timeout
        while self._connack is None and time.monotonic() < deadline:
            rc = client.loop(timeout=0.1)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.warning("MQTT loop failed while awaiting CONNACK rc=%s", rc)
                break

        if self._connack is None:
            logger.warning("No CONNACK from %s within %.0fs", self.host, self.connect_timeout)
            client.disconnect()
            return False
        return self._connack == 0 and client.is_connected()

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    def subscribe(self, topic: str, qos: int = 0) -> bool:
        if not self._client:
            return False
        rc, _mid = self._client.subscribe(topic, qos=qos)
        return rc == mqtt.MQTT_ERR_SUCCESS

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> bool:
        if not self._client:
            return False
        info = self._client.publish(topic, payload=payload, qos=qos, retain=False)
        return info.rc == mqtt.MQTT_ERR_SUCCESS

    def loop(self, timeout: float = 0.0) -> None:
        if not self._client:
            return
        rc = self._client.loop(timeout=timeout)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.debug("MQTT loop rc=%s", rc)

    def disconnect(self) -> None:
        if not self._client:
            return
        try:
            self._client.disconnect()
        finally:
            self._client = None
            self._client_id = None
