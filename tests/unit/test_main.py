from __future__ import annotations

from unittest.mock import MagicMock

import pytest

import azure_iot_mqtt.main as m
from azure_iot_mqtt.config import AzureIoTConfig

from conftest import CONN_STR


def test_parser_requires_subcommand():
    p = m.build_parser()
    with pytest.raises(SystemExit):
        p.parse_args([])


def test_version_flag_exits(monkeypatch):
    # argparse --version triggers SystemExit(0)
    monkeypatch.setattr(m, "get_version_string", lambda: "1.0.0")
    with pytest.raises(SystemExit) as exc:
        m.main(["--version"])
    assert exc.value.code == 0


def test_run_exits_with_run_device_code(monkeypatch):
    monkeypatch.setattr(m, "run_device", lambda: 7)
    with pytest.raises(SystemExit) as exc:
        m.main(["run"])
    assert exc.value.code == 7


def test_token_prints_sas_token(monkeypatch, capsys):
    monkeypatch.setattr(
        "azure_iot_mqtt.config.load_config",
        lambda: AzureIoTConfig(connection_string=CONN_STR),
    )
    with pytest.raises(SystemExit) as exc:
        m.main(["token", "--ttl", "60"])
    assert exc.value.code == 0
    out = capsys.readouterr().out
    assert out.startswith("SharedAccessSignature sr=h.example.net%2Fdevices%2Fdev1&sig=")


def test_token_bad_connection_string(monkeypatch):
    monkeypatch.setattr(
        "azure_iot_mqtt.config.load_config",
        lambda: AzureIoTConfig(connection_string="HostName=h"),
    )
    assert m.print_token(None) == 1


def _fake_client(monkeypatch, *, init=True, connect=True):
    fake = MagicMock()
    fake.init.return_value = init
    fake.connect.return_value = connect
    fake.device_id = "dev1"
    monkeypatch.setattr("azure_iot_mqtt.client.AzureIoTClient", lambda cfg: fake)
    monkeypatch.setattr(
        "azure_iot_mqtt.config.load_config",
        lambda: AzureIoTConfig(connection_string=CONN_STR, telemetry_interval_s=0.01),
    )
    monkeypatch.setattr(m, "_install_signal_handlers", lambda rt: None)
    return fake


def test_run_device_returns_1_on_init_failure(monkeypatch):
    fake = _fake_client(monkeypatch, init=False)
    assert m.run_device() == 1
    fake.connect.assert_not_called()


def test_run_device_returns_1_on_connect_failure(monkeypatch):
    fake = _fake_client(monkeypatch, connect=False)
    assert m.run_device() == 1
    fake.connect.assert_called_once()


def test_run_device_reports_state_then_loops_until_shutdown(monkeypatch):
    fake = _fake_client(monkeypatch)
    fake.is_connected.return_value = True
    ticks = {"n": 0}

    class StopAfterTicks(m.threading.Event):
        def is_set(self):
            ticks["n"] += 1
            return ticks["n"] > 3

    monkeypatch.setattr(m.threading, "Event", StopAfterTicks)

    assert m.run_device() == 0

    fake.request_twin.assert_called_once()
    reported = fake.update_reported_properties.call_args[0][0]
    assert reported["deviceStarted"] is True
    assert fake.loop.call_count == 3
    fake.disconnect.assert_called_once()


@pytest.mark.parametrize("ttl", ["0", "-60", "soon"])
def test_token_rejects_non_positive_ttl(ttl):
    with pytest.raises(SystemExit) as exc:
        m.build_parser().parse_args(["token", "--ttl", ttl])
    assert exc.value.code == 2


def test_token_ttl_sets_expiry(monkeypatch, capsys):
    monkeypatch.setattr(
        "azure_iot_mqtt.config.load_config",
        lambda: AzureIoTConfig(connection_string=CONN_STR),
    )
    monkeypatch.setattr(m.time, "time", lambda: 1_800_000_000.0)
    assert m.print_token(60) == 0
    assert capsys.readouterr().out.strip().endswith("&se=1800000060")
