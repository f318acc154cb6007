"""Tests for watermark normalization and unread derivation."""

from datetime import datetime, timedelta, timezone

from santachat.routing import conversation_id
from santachat.timeutil import EPOCH_ISO
from santachat.unread import counts_toward, derive_unread, later_watermark, normalize_watermark
from tests.factories import RoutedMessage, at
from tests.support.fakes import ServerTimestamp


class TestNormalizeWatermark:
    def test_every_shape_becomes_the_same_iso_string(self):
        moment = datetime(2024, 12, 24, 18, 30, 0, 123000, tzinfo=timezone.utc)
        expected = "2024-12-24T18:30:00.123Z"

        assert normalize_watermark(moment) == expected
        assert normalize_watermark("2024-12-24T18:30:00.123Z") == expected
        assert normalize_watermark("2024-12-24T19:30:00.123+01:00") == expected
        assert normalize_watermark(ServerTimestamp(moment)) == expected

    def test_naive_datetimes_are_utc(self):
        assert normalize_watermark(datetime(2024, 1, 1)) == "2024-01-01T00:00:00.000Z"

    def test_pending_or_garbage_uses_fallback(self):
        assert normalize_watermark(None) == EPOCH_ISO
        assert normalize_watermark("not a date") == EPOCH_ISO
        assert normalize_watermark(42, fallback="2024-01-01T00:00:00.000Z") == (
            "2024-01-01T00:00:00.000Z"
        )


class TestLaterWatermark:
    def test_keeps_the_newer(self):
        older = "2024-01-01T00:00:00.000Z"
        newer = "2024-06-01T00:00:00.000Z"
        assert later_watermark(older, newer) == newer
        assert later_watermark(newer, older) == newer

    def test_missing_current_takes_candidate(self):
        assert later_watermark(None, EPOCH_ISO) == EPOCH_ISO


class TestDeriveUnread:
    def setup_method(self):
        self.conv = conversation_id("santa", "me")
        self.messages = [
            RoutedMessage("santa", "me", self.conv, at(10)),
            RoutedMessage("santa", "me", self.conv, at(20)),
            RoutedMessage("me", "santa", self.conv, at(25)),
            RoutedMessage("santa", "me", self.conv, at(30)),
        ]

    def test_counts_incoming_messages_after_watermark(self):
        assert derive_unread(self.messages, "me", self.conv, at(15)) == 2

    def test_never_counts_own_messages(self):
        assert derive_unread(self.messages, "me", self.conv, None) == 3

    def test_message_at_watermark_is_read(self):
        assert derive_unread(self.messages, "me", self.conv, at(30)) == 0

    def test_accepts_any_watermark_shape(self):
        as_string = derive_unread(self.messages, "me", self.conv, "1970-01-01T00:00:00.000Z")
        as_object = derive_unread(self.messages, "me", self.conv, ServerTimestamp(at(15)))
        assert as_string == 3
        assert as_object == 2

    def test_other_conversation_is_not_counted(self):
        other = conversation_id("me", "santa")
        assert derive_unread(self.messages, "me", other, None) == 0

    def test_legacy_message_counts_in_both_conversations(self):
        legacy = RoutedMessage("santa", "me", None, at(40))
        assert counts_toward(legacy, "me", conversation_id("santa", "me"))
        assert counts_toward(legacy, "me", conversation_id("me", "santa"))
        assert not counts_toward(legacy, "me", conversation_id("carol", "me"))

    def test_unparseable_timestamps_are_skipped(self):
        messages = [RoutedMessage("santa", "me", self.conv, "garbage")]
        assert derive_unread(messages, "me", self.conv, None) == 0

    def test_mark_read_then_new_message(self):
        watermark = at(30) + timedelta(milliseconds=1)
        assert derive_unread(self.messages, "me", self.conv, watermark) == 0
        self.messages.append(RoutedMessage("santa", "me", self.conv, at(31)))
        assert derive_unread(self.messages, "me", self.conv, watermark) == 1
