from __future__ import annotations

import itertools

import pytest

from azure_iot_mqtt.credentials import FIELD_LIMITS, parse_connection_string
from azure_iot_mqtt.errors import (
    DuplicateField,
    FieldTooLong,
    MalformedSegment,
    MissingField,
    ParseError,
)

FIELDS = {
    "HostName": "myhub.azure-devices.net",
    "DeviceId": "dev1",
    "SharedAccessKey": "c2VjcmV0LWtleS1tYXRlcmlhbA==",
}


@pytest.mark.parametrize("order", list(itertools.permutations(FIELDS)))
def test_parse_any_order(order):
    conn_str = ";".join(f"{k}={FIELDS[k]}" for k in order)

    creds = parse_connection_string(conn_str)

    assert creds.hostname == FIELDS["HostName"]
    assert creds.device_id == FIELDS["DeviceId"]
    assert creds.key == FIELDS["SharedAccessKey"]


@pytest.mark.parametrize("missing", list(FIELDS))
def test_missing_field_names_it(missing):
    conn_str = ";".join(f"{k}={v}" for k, v in FIELDS.items() if k != missing)

    with pytest.raises(MissingField) as exc:
        parse_connection_string(conn_str)

    assert exc.value.name == missing
    assert isinstance(exc.value, ParseError)


def test_empty_value_is_missing():
    with pytest.raises(MissingField) as exc:
        parse_connection_string("HostName=h;DeviceId=;SharedAccessKey=AAAA")
    assert exc.value.name == "DeviceId"


def test_key_padding_survives_split_on_first_equals():
    creds = parse_connection_string("HostName=h;DeviceId=d;SharedAccessKey=AAAAAAAAAAAAAAAAAAAAAA==")
    assert creds.key == "AAAAAAAAAAAAAAAAAAAAAA=="


@pytest.mark.parametrize("name", list(FIELDS))
def test_field_too_long_is_rejected_not_truncated(name):
    fields = dict(FIELDS)
    fields[name] = "x" * (FIELD_LIMITS[name] + 1)
    conn_str = ";".join(f"{k}={v}" for k, v in fields.items())

    with pytest.raises(FieldTooLong) as exc:
        parse_connection_string(conn_str)

    assert exc.value.name == name
    assert exc.value.limit == FIELD_LIMITS[name]


def test_field_at_limit_is_accepted():
    device_id = "d" * FIELD_LIMITS["DeviceId"]
    creds = parse_connection_string(f"HostName=h;DeviceId={device_id};SharedAccessKey=AAAA")
    assert creds.device_id == device_id


def test_duplicate_field_raises():
    with pytest.raises(DuplicateField) as exc:
        parse_connection_string("HostName=a;HostName=b;DeviceId=d;SharedAccessKey=AAAA")
    assert exc.value.name == "HostName"


def test_segment_without_equals_raises():
    with pytest.raises(MalformedSegment):
        parse_connection_string("HostName=h;garbage;DeviceId=d;SharedAccessKey=AAAA")


def test_unknown_fields_and_trailing_separator_are_ignored():
    creds = parse_connection_string("HostName=h;DeviceId=d;ModuleId=m;SharedAccessKey=AAAA;")
    assert (creds.hostname, creds.device_id) == ("h", "d")


def test_repr_redacts_key():
    creds = parse_connection_string("HostName=h;DeviceId=d;SharedAccessKey=topsecret")
    assert "topsecret" not in repr(creds)
