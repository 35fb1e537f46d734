"""
Device client configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/azure-iot-mqtt/device.env (system install)
2) ~/.config/azure-iot-mqtt/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable, Optional

from azure_iot_mqtt.topics import DEFAULT_API_VERSION


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def _package_version() -> str:
    try:
        return _pkg_version("azure-iot-mqtt")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/azure-iot-mqtt/device.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "azure-iot-mqtt" / ".env"

    # 3) project override
    yield Path(".env")


def _require_env(key: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        raise ConfigError(f"Missing required environment variable: {key}")
    return v


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {key}: {raw!r}") from exc


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"Invalid boolean for {key}: {raw!r}")


def _int_env(key: str, default: int, *, minimum: int) -> int:
    value = _parse_int(key, os.getenv(key) or str(default))
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}")
    return value


@dataclass(frozen=True, slots=True)
class AzureIoTConfig:
    connection_string: str
    api_version: str = DEFAULT_API_VERSION
    port: int = 8883
    keepalive_s: int = 60
    sas_ttl_s: int = 86400
    sas_margin_s: int = 300
    connect_attempts: int = 5
    retry_delay_s: float = 3.0
    allow_insecure_tls: bool = True  # opt out in hardened builds
    ca_file: Optional[str] = None
    ntp_server: str = "pool.ntp.org"
    telemetry_interval_s: float = 10.0
    version: str = "0.0.0+dev"

    def __repr__(self) -> str:
        return (
            f"AzureIoTConfig(api_version={self.api_version!r}, port={self.port}, "
            f"connect_attempts={self.connect_attempts}, allow_insecure_tls={self.allow_insecure_tls}, "
            "connection_string=<redacted>)"
        )


def load_config(*, dotenv_enabled: bool = True) -> AzureIoTConfig:
    """
    Load config by reading env files (if python-dotenv is installed) and then
    validating environment variables.

    Returns an immutable AzureIoTConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        try:
            from dotenv import load_dotenv  # type: ignore
        except ImportError:
            load_dotenv = None  # type: ignore

        if load_dotenv is not None:
            for p in _env_paths():
                if p.is_file():
                    # do not override existing env vars; later files can fill missing
                    load_dotenv(p, override=False)

    connection_string = _require_env("AZURE_IOT_CONNECTION_STRING")

    port = _parse_int("AZURE_IOT_PORT", os.getenv("AZURE_IOT_PORT") or "8883")
    if not (1 <= port <= 65535):
        raise ConfigError(f"AZURE_IOT_PORT out of range: {port}")

    sas_ttl_s = _int_env("AZURE_IOT_SAS_TTL", 86400, minimum=1)
    sas_margin_s = _int_env("AZURE_IOT_SAS_MARGIN", 300, minimum=0)
    if sas_margin_s >= sas_ttl_s:
        raise ConfigError("AZURE_IOT_SAS_MARGIN must be smaller than AZURE_IOT_SAS_TTL")

    retry_delay_s = _parse_float("AZURE_IOT_RETRY_DELAY", os.getenv("AZURE_IOT_RETRY_DELAY") or "3")
    if retry_delay_s < 0:
        raise ConfigError("AZURE_IOT_RETRY_DELAY must be >= 0")

    telemetry_interval_s = _parse_float(
        "AZURE_IOT_TELEMETRY_INTERVAL", os.getenv("AZURE_IOT_TELEMETRY_INTERVAL") or "10"
    )
    if telemetry_interval_s <= 0:
        raise ConfigError("AZURE_IOT_TELEMETRY_INTERVAL must be > 0")

    return AzureIoTConfig(
        connection_string=connection_string,
        api_version=os.getenv("AZURE_IOT_API_VERSION") or DEFAULT_API_VERSION,
        port=port,
        keepalive_s=_int_env("AZURE_IOT_KEEPALIVE", 60, minimum=1),
        sas_ttl_s=sas_ttl_s,
        sas_margin_s=sas_margin_s,
        connect_attempts=_int_env("AZURE_IOT_CONNECT_ATTEMPTS", 5, minimum=1),
        retry_delay_s=retry_delay_s,
        allow_insecure_tls=_parse_bool(
            "AZURE_IOT_ALLOW_INSECURE_TLS", os.getenv("AZURE_IOT_ALLOW_INSECURE_TLS") or "1"
        ),
        ca_file=os.getenv("AZURE_IOT_CA_FILE") or None,
        ntp_server=os.getenv("AZURE_IOT_NTP_SERVER") or "pool.ntp.org",
        telemetry_interval_s=telemetry_interval_s,
        version=_package_version(),
    )
