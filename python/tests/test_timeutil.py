"""Tests for wire timestamp helpers."""

from datetime import datetime, timedelta, timezone

from santachat.timeutil import EPOCH, EPOCH_ISO, format_iso, parse_iso, to_datetime


def test_format_is_millisecond_utc_with_z():
    value = datetime(2024, 12, 25, 8, 0, 0, 987654, tzinfo=timezone(timedelta(hours=2)))
    assert format_iso(value) == "2024-12-25T06:00:00.987Z"


def test_epoch_constants_agree():
    assert format_iso(EPOCH) == EPOCH_ISO
    assert parse_iso(EPOCH_ISO) == EPOCH


def test_parse_rejects_non_iso():
    assert parse_iso("yesterday") is None
    assert parse_iso("") is None
    assert parse_iso(None) is None  # type: ignore[arg-type]


def test_to_datetime_handles_timestamp_objects():
    class ProtoTimestamp:
        def ToDatetime(self):
            return datetime(2024, 1, 1)

    assert to_datetime(ProtoTimestamp()) == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert to_datetime(object()) is None
