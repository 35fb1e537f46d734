"""
Epoch clock used as the SAS token expiry basis.

sync() asks an SNTP server once; now() then advances that reading with the
monotonic clock. If the server cannot be reached, now() falls back to the
system clock, floored at FALLBACK_EPOCH so a device with an unset RTC still
produces tokens that are not already expired.
"""

from __future__ import annotations

import logging
import socket
import struct
import time
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

# 2025-02-03T00:00:00Z
FALLBACK_EPOCH = 1738540800

NTP_PORT = 123
# Seconds between 1900-01-01 (NTP era 0) and 1970-01-01.
NTP_UNIX_DELTA = 2208988800


class TimeSource(Protocol):
    def sync(self) -> bool: ...

    def now(self) -> int: ...


def query_sntp(server: str, *, port: int = NTP_PORT, timeout: float = 5.0) -> float:
    """Single SNTPv3 client request; returns the server transmit time as unix seconds."""
    packet = b"\x1b" + 47 * b"\0"  # LI=0, VN=3, Mode=3 (client)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.settimeout(timeout)
        sock.sendto(packet, (server, port))
        data, _ = sock.recvfrom(48)
    if len(data) < 48:
        raise OSError(f"Short SNTP reply from {server}: {len(data)} bytes")
    seconds, fraction = struct.unpack("!II", data[40:48])
    if seconds == 0:
        raise OSError(f"SNTP server {server} returned an empty transmit timestamp")
    return seconds - NTP_UNIX_DELTA + fraction / 2**32


class NtpTimeSource:
    def __init__(self, server: str = "pool.ntp.org", *, timeout: float = 5.0) -> None:
        self.server = server
        self.timeout = timeout
        self._base_epoch: Optional[float] = None
        self._base_mono = 0.0

    @property
    def synced(self) -> bool:
        return self._base_epoch is not None

    def sync(self) -> bool:
        logger.info("Syncing time via NTP (%s)...", self.server)
        try:
            epoch = query_sntp(self.server, timeout=self.timeout)
        except OSError as exc:
            logger.warning("NTP sync failed (%s); using fallback clock", exc)
            return False
        self._base_epoch = epoch
        self._base_mono = time.monotonic()
        logger.info("Time synced, epoch: %d", int(epoch))
        return True

    def now(self) -> int:
        if self._base_epoch is None:
            return max(int(time.time()), FALLBACK_EPOCH)
        return int(self._base_epoch + (time.monotonic() - self._base_mono))
