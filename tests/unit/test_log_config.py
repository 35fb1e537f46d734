from __future__ import annotations

import logging

import pytest

from azure_iot_mqtt.log_config import apply_log_level, level_from_env


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", logging.INFO),
        ("debug", logging.DEBUG),
        ("WARNING", logging.WARNING),
        ("10", 10),
        ("nonsense", logging.INFO),
        ("BASIC_FORMAT", logging.INFO),
    ],
)
def test_level_from_env(monkeypatch, raw, expected):
    monkeypatch.setenv("AZURE_IOT_LOG_LEVEL", raw)
    assert level_from_env() == expected


def test_apply_log_level_sets_root():
    root = logging.getLogger()
    previous = root.level
    try:
        apply_log_level(logging.ERROR)
        assert root.level == logging.ERROR
    finally:
        root.setLevel(previous)
