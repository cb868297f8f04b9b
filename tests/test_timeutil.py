"""Tests for time reference parsing and formatting."""

from datetime import datetime, timedelta, timezone

import pytest

from workgraph.timeutil import format_duration, format_relative_time, parse_time_reference

NOW = datetime(2025, 6, 15, 14, 30, tzinfo=timezone.utc)


class TestParseTimeReference:
    """Tests for parse_time_reference()."""

    def test_named(self):
        assert parse_time_reference("now", NOW) == NOW
        assert parse_time_reference("today", NOW) == datetime(2025, 6, 15, tzinfo=timezone.utc)
        assert parse_time_reference("Yesterday", NOW) == datetime(2025, 6, 14, tzinfo=timezone.utc)
        assert parse_time_reference("last week", NOW) == NOW - timedelta(weeks=1)
        assert parse_time_reference("last month", NOW) == datetime(2025, 5, 15, 14, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("ref, delta", [
        ("30 seconds ago", timedelta(seconds=30)),
        ("1 hour ago", timedelta(hours=1)),
        ("2 days ago", timedelta(days=2)),
        ("3 weeks ago", timedelta(weeks=3)),
    ])
    def test_ago(self, ref, delta):
        assert parse_time_reference(ref, NOW) == NOW - delta

    def test_calendar_units(self):
        assert parse_time_reference("2 months ago", NOW) == datetime(2025, 4, 15, 14, 30, tzinfo=timezone.utc)
        assert parse_time_reference("1 year ago", NOW) == datetime(2024, 6, 15, 14, 30, tzinfo=timezone.utc)

    def test_iso_date_is_utc(self):
        assert parse_time_reference("2025-01-15") == datetime(2025, 1, 15, tzinfo=timezone.utc)

    def test_iso_with_offset_kept(self):
        parsed = parse_time_reference("2025-01-15T10:00:00+02:00")
        assert parsed.utcoffset() == timedelta(hours=2)

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_time_reference("not a time at all")


class TestFormatting:
    """Tests for format_relative_time() / format_duration()."""

    @pytest.mark.parametrize("delta, expected", [
        (timedelta(seconds=5), "5 seconds ago"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(hours=3), "3 hours ago"),
        (timedelta(days=2), "2 days ago"),
        (timedelta(days=14), "2 weeks ago"),
        (timedelta(days=400), "1 year ago"),
    ])
    def test_relative(self, delta, expected):
        assert format_relative_time(NOW - delta, NOW) == expected

    def test_future(self):
        assert format_relative_time(NOW + timedelta(hours=1), NOW) == "in the future"

    @pytest.mark.parametrize("seconds, expected", [
        (45, "45s"),
        (2.5, "2.5s"),
        (60, "1m"),
        (750, "12m 30s"),
        (3600, "1h"),
        (11100, "3h 5m"),
        (86400, "1d"),
        (187200, "2d 4h"),
    ])
    def test_duration(self, seconds, expected):
        assert format_duration(seconds) == expected
