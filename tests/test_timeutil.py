"""Tests for time parsing and formatting helpers."""

from datetime import datetime, timedelta

import pytest

from conftest import PDT

from sourdough.timeutil import format_duration, format_relative_time, parse_time_reference

NOW = datetime(2025, 10, 15, 14, 30, tzinfo=PDT)


def test_parse_relative():
    assert parse_time_reference("1 day ago", now=NOW) == NOW - timedelta(days=1)
    assert parse_time_reference("2 hours ago", now=NOW) == NOW - timedelta(hours=2)
    assert parse_time_reference("3 days ago", now=NOW) == NOW - timedelta(days=3)
    assert parse_time_reference("2 weeks ago", now=NOW) == NOW - timedelta(weeks=2)
    assert parse_time_reference("1 month ago", now=NOW) == datetime(2025, 9, 15, 14, 30, tzinfo=PDT)


def test_parse_named():
    assert parse_time_reference("today", now=NOW) == datetime(2025, 10, 15, tzinfo=PDT)
    assert parse_time_reference("Yesterday", now=NOW) == datetime(2025, 10, 14, tzinfo=PDT)


def test_parse_iso_date_is_aware():
    parsed = parse_time_reference("2025-10-01")
    assert parsed.tzinfo is not None
    assert (parsed.year, parsed.month, parsed.day) == (2025, 10, 1)


def test_parse_garbage():
    with pytest.raises(ValueError):
        parse_time_reference("whenever the dough is ready")


def test_format_duration():
    assert format_duration(timedelta(hours=3, minutes=25, seconds=59)) == "3h25m"
    assert format_duration(timedelta(minutes=40)) == "40m"
    assert format_duration(timedelta(hours=2)) == "2h0m"
    assert format_duration(timedelta(seconds=-5)) == "0m"


def test_format_relative_time():
    assert format_relative_time(NOW - timedelta(seconds=30), now=NOW) == "just now"
    assert format_relative_time(NOW - timedelta(minutes=1), now=NOW) == "1 minute ago"
    assert format_relative_time(NOW - timedelta(hours=5), now=NOW) == "5 hours ago"
    assert format_relative_time(NOW - timedelta(days=2), now=NOW) == "2 days ago"
    assert format_relative_time(NOW - timedelta(days=14), now=NOW) == "2 weeks ago"
    assert format_relative_time(NOW + timedelta(hours=1), now=NOW) == "in the future"
