"""
azure-iot-mqtt entrypoint.

CLI:
  azure-iot-mqtt run               -> connect, report initial state, send telemetry until SIGINT/SIGTERM
  azure-iot-mqtt token [--ttl N]   -> print a SAS token for the configured connection string
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
import time
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as pkg_version
from typing import Optional

from azure_iot_mqtt.log_config import configure_logging

logger = logging.getLogger(__name__)


def get_version_string() -> str:
    try:
        return pkg_version("azure-iot-mqtt")
    except PackageNotFoundError:
        return "0.0.0+dev"


@dataclass
class Runtime:
    shutdown: threading.Event
    client: Optional[object] = None
    message_count: int = 0


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _register_callbacks(client) -> None:
    def on_c2d(msg) -> None:
        logger.info("App: C2D message received: %r (properties=%s)", msg.payload, msg.properties or "-")

    def on_desired(payload: bytes, version: int) -> None:
        logger.info("App: desired properties updated, version %d: %r", version, payload)

    def on_twin(payload: bytes) -> None:
        logger.info("App: full device twin received: %r", payload)

    client.on_c2d_message(on_c2d)
    client.on_desired_properties(on_desired)
    client.on_twin_received(on_twin)


def _send_telemetry(rt: Runtime) -> None:
    client = rt.client
    payload = {"deviceId": client.device_id, "messageId": rt.message_count}
    rt.message_count += 1
    client.send_telemetry(json.dumps(payload))


def run_device() -> int:
    """
    Runtime mode: init, connect, request twin, report initial state, then
    service the session and send telemetry on a fixed cadence until shutdown.
    Returns process exit code.
    """
    from azure_iot_mqtt.client import AzureIoTClient
    from azure_iot_mqtt.config import ConfigError, load_config

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    rt = Runtime(shutdown=threading.Event())
    _install_signal_handlers(rt)

    logger.info("============================================================")
    logger.info("Azure IoT Hub MQTT device")
    logger.info("Version: %s", get_version_string())
    logger.info("============================================================")

    client = AzureIoTClient(cfg)
    rt.client = client
    _register_callbacks(client)

    if not client.init():
        logger.error("Setup failed: IoT init failed")
        return 1
    if not client.connect():
        logger.error("Setup failed: IoT connection failed")
        return 1

    client.request_twin()
    client.update_reported_properties({
        "firmwareVersion": cfg.version,
        "telemetryInterval": cfg.telemetry_interval_s,
        "deviceStarted": True,
    })

    logger.info("Device running (shutdown via SIGINT/SIGTERM)")
    last_telemetry = time.monotonic()
    try:
        while not rt.shutdown.is_set():
            client.loop(timeout=0.1)
            now = time.monotonic()
            if client.is_connected() and now - last_telemetry >= cfg.telemetry_interval_s:
                _send_telemetry(rt)
                last_telemetry = now
    finally:
        logger.info("Shutting down...")
        client.disconnect()

    return 0


def print_token(ttl: Optional[int]) -> int:
    from azure_iot_mqtt.config import ConfigError, load_config
    from azure_iot_mqtt.credentials import parse_connection_string
    from azure_iot_mqtt.errors import AzureIoTError
    from azure_iot_mqtt.sas import generate_sas_token

    try:
        cfg = load_config()
        creds = parse_connection_string(cfg.connection_string)
        token = generate_sas_token(creds, int(time.time()) + (ttl if ttl is not None else cfg.sas_ttl_s))
    except (ConfigError, AzureIoTError) as exc:
        logger.error("%s", exc)
        return 1
    print(token.token)
    return 0


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="azure-iot-mqtt")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Connect to IoT Hub and run the device loop")

    token_parser = sub.add_parser("token", help="Print a SAS token for the configured device")
    token_parser.add_argument(
        "--ttl",
        type=_positive_int,
        metavar="SECONDS",
        help="Token lifetime (default: AZURE_IOT_SAS_TTL)",
    )

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging()

    if args.cmd == "run":
        raise SystemExit(run_device())

    if args.cmd == "token":
        raise SystemExit(print_token(args.ttl))

    raise SystemExit(2)


if __name__ == "__main__":
    main()
