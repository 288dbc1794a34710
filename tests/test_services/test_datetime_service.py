"""Tests for datetime helpers."""

from datetime import UTC, datetime, timedelta, timezone

from hub.services.datetime_service import format_iso, iso_before, now_utc, parse_iso


class TestDatetimeHelpers:
    def test_now_is_aware_utc(self) -> None:
        assert now_utc().tzinfo is UTC

    def test_format_has_fixed_precision(self) -> None:
        dt = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert format_iso(dt) == "2026-01-02T03:04:05.000000+00:00"

    def test_format_converts_to_utc(self) -> None:
        dt = datetime(2026, 1, 2, 5, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_iso(dt) == "2026-01-02T03:00:00.000000+00:00"

    def test_format_treats_naive_as_utc(self) -> None:
        assert format_iso(datetime(2026, 1, 1)).endswith("+00:00")

    def test_parse_round_trip(self) -> None:
        dt = datetime(2026, 3, 4, 5, 6, 7, 89, tzinfo=UTC)
        assert parse_iso(format_iso(dt)) == dt

    def test_parse_malformed_returns_none(self) -> None:
        assert parse_iso("yesterday") is None

    def test_iso_before_sorts_before_now(self) -> None:
        assert iso_before(60) < format_iso(now_utc())
