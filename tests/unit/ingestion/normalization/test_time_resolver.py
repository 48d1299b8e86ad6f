"""
Unit tests for the time_resolver module.

Tests for start-time resolution: explicit instants, declared timezones,
fallback and city-inferred timezones, and the rejection of bare local times.
"""

from datetime import date, datetime, timezone

import pytest

from eventfusion.exceptions import NormalizationError
from eventfusion.ingestion.normalization.time_resolver import (
    combine_local,
    infer_timezone,
    parse_datetime_value,
    resolve_optional_utc,
    resolve_start_utc,
    resolve_timezone_name,
)

JAZZ_NIGHT_UTC = datetime(2024, 2, 2, 0, 0, tzinfo=timezone.utc)


class TestInferTimezone:
    """Tests for infer_timezone()."""

    def test_known_city(self):
        assert infer_timezone("Toronto") == "America/Toronto"
        assert infer_timezone("  new   york ") == "America/New_York"

    def test_unknown_city(self):
        assert infer_timezone("Springfield") is None
        assert infer_timezone(None) is None


class TestParseDatetimeValue:
    """Tests for parse_datetime_value()."""

    def test_zulu_suffix(self):
        assert parse_datetime_value("2024-02-02T00:00:00Z") == JAZZ_NIGHT_UTC

    def test_naive_string_stays_naive(self):
        parsed = parse_datetime_value("2024-02-01T19:00:00")
        assert parsed == datetime(2024, 2, 1, 19, 0)
        assert parsed.tzinfo is None

    def test_epoch_seconds_and_milliseconds(self):
        assert parse_datetime_value(1706832000) == JAZZ_NIGHT_UTC
        assert parse_datetime_value(1706832000000) == JAZZ_NIGHT_UTC

    def test_date_object(self):
        assert parse_datetime_value(date(2024, 2, 1)) == datetime(2024, 2, 1, 0, 0)

    @pytest.mark.parametrize("value", [None, "", "next friday"])
    def test_unparseable(self, value):
        assert parse_datetime_value(value) is None


class TestCombineLocal:
    """Tests for combine_local()."""

    def test_date_and_time(self):
        assert combine_local("2024-02-01", "19:00:00") == datetime(2024, 2, 1, 19, 0)

    def test_date_only(self):
        assert combine_local("2024-02-01") == datetime(2024, 2, 1, 0, 0)

    def test_missing_date(self):
        assert combine_local(None, "19:00:00") is None


class TestResolveTimezoneName:
    """Tests for resolve_timezone_name()."""

    def test_declared_wins(self):
        assert resolve_timezone_name("Europe/Paris", "America/Toronto", "London") == "Europe/Paris"

    def test_invalid_declared_falls_through(self):
        assert resolve_timezone_name("Mars/Olympus", "America/Toronto") == "America/Toronto"

    def test_city_inference(self):
        assert resolve_timezone_name(None, None, "Tokyo") == "Asia/Tokyo"


class TestResolveStartUtc:
    """Tests for resolve_start_utc()."""

    def test_explicit_utc_wins(self):
        start, tz_name = resolve_start_utc(
            utc="2024-02-02T00:00:00Z",
            local="2024-02-01T21:00:00",
            declared_timezone="America/Toronto",
        )
        assert start == JAZZ_NIGHT_UTC
        assert tz_name == "America/Toronto"

    def test_offset_in_local_string(self):
        start, tz_name = resolve_start_utc(local="2024-02-01T19:00:00-05:00")
        assert start == JAZZ_NIGHT_UTC
        assert tz_name == "UTC"

    def test_local_with_declared_timezone(self):
        start, _ = resolve_start_utc(local="2024-02-01T19:00:00", declared_timezone="America/Toronto")
        assert start == JAZZ_NIGHT_UTC

    def test_local_with_fallback_timezone(self):
        start, tz_name = resolve_start_utc(local="2024-02-01T19:00:00", fallback_timezone="America/Toronto")
        assert start == JAZZ_NIGHT_UTC
        assert tz_name == "America/Toronto"

    def test_local_with_city_inference(self):
        start, tz_name = resolve_start_utc(local="2024-02-01T19:00:00", city="Toronto")
        assert start == JAZZ_NIGHT_UTC
        assert tz_name == "America/Toronto"

    def test_daylight_saving_applied(self):
        start, _ = resolve_start_utc(local="2024-07-01T19:00:00", declared_timezone="America/Toronto")
        assert start == datetime(2024, 7, 1, 23, 0, tzinfo=timezone.utc)

    def test_bare_local_time_rejected(self):
        """A naive time with no resolvable zone must never be assumed to be UTC."""
        with pytest.raises(NormalizationError) as exc_info:
            resolve_start_utc(local="2024-02-01T19:00:00", city="Springfield", source="yelp", record_id="y-1")
        assert exc_info.value.source == "yelp"
        assert exc_info.value.record_id == "y-1"
        assert "no resolvable timezone" in exc_info.value.reason

    def test_missing_start(self):
        with pytest.raises(NormalizationError, match="missing start time"):
            resolve_start_utc(declared_timezone="America/Toronto")

    def test_unparseable_utc(self):
        with pytest.raises(NormalizationError, match="unparseable UTC start time"):
            resolve_start_utc(utc="soon")


class TestResolveOptionalUtc:
    """Tests for resolve_optional_utc()."""

    def test_naive_uses_zone(self):
        assert resolve_optional_utc("2024-02-01T19:00:00", "America/Toronto") == JAZZ_NIGHT_UTC

    def test_naive_without_zone_is_dropped(self):
        assert resolve_optional_utc("2024-02-01T19:00:00", None) is None

    def test_garbage_is_dropped(self):
        assert resolve_optional_utc("tbd", "UTC") is None
