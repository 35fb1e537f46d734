"""
Apply log level from env.

Single log level for all loggers. AZURE_IOT_LOG_LEVEL accepts a level name
(DEBUG, INFO, ...) or a number; anything unrecognized means INFO.
"""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_level(raw: str) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    raw = str(raw).strip().upper()
    if raw.isdigit():
        return int(raw)
    level = getattr(logging, raw, logging.INFO)
    return level if isinstance(level, int) else logging.INFO


def level_from_env() -> int:
    return _parse_level(os.environ.get("AZURE_IOT_LOG_LEVEL", ""))


def apply_log_level(level: int) -> None:
    """Set root logger level so every module logger uses this level."""
    logging.getLogger().setLevel(level)


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    apply_log_level(level_from_env())
