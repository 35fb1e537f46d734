"""
MQTT topic schema for an IoT Hub device identity.

Device-to-cloud: devices/<device_id>/messages/events/<props>
Cloud-to-device: devices/<device_id>/messages/devicebound/#
Device twin: $iothub/twin/GET, $iothub/twin/res, $iothub/twin/PATCH/properties/...
"""

from __future__ import annotations

from dataclasses import dataclass

from azure_iot_mqtt.errors import ParseError

DEFAULT_API_VERSION = "2021-04-12"

TWIN_RESPONSE_PREFIX = "$iothub/twin/res/"
DESIRED_PATCH_PREFIX = "$iothub/twin/PATCH/properties/desired/"
DEVICEBOUND_MARKER = "/messages/devicebound/"


class TopicSchemaError(ParseError):
    """Raised when an invalid identifier is used to construct topics."""


def _validate_device_id(device_id: str) -> str:
    if not isinstance(device_id, str) or not device_id:
        raise TopicSchemaError("device_id must be a non-empty string")
    if any(ch in device_id for ch in "/+#"):
        raise TopicSchemaError(f"device_id '{device_id}' must not contain MQTT separators or wildcards")
    return device_id


@dataclass(frozen=True, slots=True)
class TopicSchema:
    """
    MQTT topic schema for a single device.
    Root: devices/<device_id>
    """

    hostname: str
    device_id: str
    api_version: str = DEFAULT_API_VERSION

    def __post_init__(self) -> None:
        _validate_device_id(self.device_id)

    @property
    def base(self) -> str:
        return f"devices/{self.device_id}"

    def username(self) -> str:
        return f"{self.hostname}/{self.device_id}/?api-version={self.api_version}"

    # -------------------------
    # Device-to-cloud
    # -------------------------
    def telemetry(self, properties: str = "") -> str:
        """Telemetry topic; properties is an already URL-encoded property bag (a=1&b=2)."""
        return f"{self.base}/messages/events/{properties or ''}"

    # -------------------------
    # Cloud-to-device
    # -------------------------
    def c2d_subscribe(self) -> str:
        return f"{self.base}/messages/devicebound/#"

    # -------------------------
    # Device twin
    # -------------------------
    def twin_get(self, request_id: int) -> str:
        return f"$iothub/twin/GET/?$rid={request_id}"

    def twin_response_subscribe(self) -> str:
        return f"{TWIN_RESPONSE_PREFIX}#"

    def twin_patch_reported(self, request_id: int) -> str:
        return f"$iothub/twin/PATCH/properties/reported/?$rid={request_id}"

    def desired_subscribe(self) -> str:
        return f"{DESIRED_PATCH_PREFIX}#"

    def subscriptions(self) -> list[str]:
        """Topic filters subscribed on every (re)connect."""
        return [
            self.c2d_subscribe(),
            self.twin_response_subscribe(),
            self.desired_subscribe(),
        ]
