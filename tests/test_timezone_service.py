"""Tests for timezone normalization and formatting.

Test Categories:
1. Validation
2. Wall-clock <-> UTC conversion, including DST gaps and overlaps
3. All-day bounds
4. Offsets, clock-format hint and labels
5. Formatting
"""
from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from app.core.errors import InvalidTimezone
from app.services import timezone_service as tzs
from tests.conftest import utc

NEW_YORK = "America/New_York"


# =============================================================================
# Validation
# =============================================================================

class TestValidation:
    @pytest.mark.parametrize("name", ["UTC", NEW_YORK, "Europe/Berlin", "Asia/Kolkata"])
    def test_known_zones_are_valid(self, name):
        assert tzs.is_valid_timezone(name)
        assert tzs.get_zone(name).key == name

    @pytest.mark.parametrize("name", ["", "   ", "Mars/Olympus_Mons", "Pacific Standard Time"])
    def test_unknown_zones_raise(self, name):
        assert not tzs.is_valid_timezone(name)
        with pytest.raises(InvalidTimezone):
            tzs.get_zone(name)

    def test_invalid_timezone_maps_to_400(self):
        with pytest.raises(InvalidTimezone) as exc_info:
            tzs.to_utc(datetime(2024, 1, 1, 9, 0), "Nowhere/City")
        assert exc_info.value.status_code == 400
        assert exc_info.value.to_dict()["error"] == "invalid_timezone"


# =============================================================================
# Conversion
# =============================================================================

class TestConversion:
    @pytest.mark.parametrize(
        "local,tz",
        [
            (datetime(2024, 1, 15, 9, 30), NEW_YORK),
            (datetime(2024, 7, 4, 18, 0), NEW_YORK),
            (datetime(2024, 3, 31, 12, 0), "Europe/London"),
            (datetime(2024, 12, 31, 23, 59), "Asia/Tokyo"),
            (datetime(2024, 6, 1, 0, 0), "Asia/Kathmandu"),
        ],
    )
    def test_round_trip_outside_transitions(self, local, tz):
        assert tzs.from_utc(tzs.to_utc(local, tz), tz) == local

    def test_to_utc_uses_offset_in_force(self):
        assert tzs.to_utc(datetime(2024, 1, 15, 9, 0), NEW_YORK) == utc(2024, 1, 15, 14, 0)
        assert tzs.to_utc(datetime(2024, 7, 15, 9, 0), NEW_YORK) == utc(2024, 7, 15, 13, 0)

    def test_nonexistent_time_uses_standard_offset(self):
        # 02:30 does not exist on 2024-03-10 in New York
        assert tzs.to_utc(datetime(2024, 3, 10, 2, 30), NEW_YORK) == utc(2024, 3, 10, 7, 30)

    def test_ambiguous_time_uses_standard_occurrence(self):
        # 01:30 happens twice on 2024-11-03 in New York; EST is -05:00
        assert tzs.to_utc(datetime(2024, 11, 3, 1, 30), NEW_YORK) == utc(2024, 11, 3, 6, 30)

    def test_aware_input_is_only_converted(self):
        aware = datetime.fromisoformat("2024-03-10T09:00:00+01:00")
        assert tzs.to_utc(aware, NEW_YORK) == utc(2024, 3, 10, 8, 0)

    def test_from_utc_returns_naive_wall_clock(self):
        local = tzs.from_utc(utc(2024, 3, 10, 18, 30), NEW_YORK)
        assert local == datetime(2024, 3, 10, 14, 30)
        assert local.tzinfo is None

    def test_from_utc_treats_naive_as_utc(self):
        assert tzs.from_utc(datetime(2024, 1, 15, 14, 0), NEW_YORK) == datetime(2024, 1, 15, 9, 0)

    def test_local_date_crosses_midnight(self):
        assert tzs.local_date(utc(2024, 3, 9, 20, 0), "Asia/Tokyo") == date(2024, 3, 10)
        assert tzs.local_date(utc(2024, 3, 10, 3, 0), NEW_YORK) == date(2024, 3, 9)


# =============================================================================
# All-day bounds
# =============================================================================

class TestAllDayBounds:
    def test_all_day_on_spring_forward_day(self):
        start, end = tzs.all_day_bounds(date(2024, 3, 10), NEW_YORK)

        assert start == utc(2024, 3, 10, 5, 0)
        # The day is only 23 hours long
        assert end == utc(2024, 3, 11, 3, 59, 59, 999999)
        assert tzs.local_date(start, NEW_YORK) == date(2024, 3, 10)
        assert tzs.local_date(end, NEW_YORK) == date(2024, 3, 10)

    def test_multi_day_span(self):
        start, end = tzs.all_day_bounds(date(2024, 1, 1), "Europe/Berlin", date(2024, 1, 3))

        assert start == utc(2023, 12, 31, 23, 0)
        assert end == utc(2024, 1, 3, 22, 59, 59, 999999)

    def test_end_before_start_collapses_to_one_day(self):
        assert tzs.all_day_bounds(date(2024, 5, 2), "UTC", date(2024, 5, 1)) == tzs.all_day_bounds(
            date(2024, 5, 2), "UTC"
        )

    def test_same_day_differs_by_zone(self):
        ny_start, _ = tzs.all_day_bounds(date(2024, 3, 10), NEW_YORK)
        tokyo_start, _ = tzs.all_day_bounds(date(2024, 3, 10), "Asia/Tokyo")
        assert ny_start - tokyo_start == timedelta(hours=14)


# =============================================================================
# Offsets, clock hint and labels
# =============================================================================

class TestOffsetsAndLabels:
    @pytest.mark.parametrize(
        "tz,instant,expected",
        [
            (NEW_YORK, utc(2024, 1, 15), "-05:00"),
            (NEW_YORK, utc(2024, 7, 15), "-04:00"),
            ("Asia/Kolkata", utc(2024, 1, 15), "+05:30"),
            ("Asia/Kathmandu", utc(2024, 1, 15), "+05:45"),
            ("UTC", utc(2024, 1, 15), "+00:00"),
        ],
    )
    def test_offset_of(self, tz, instant, expected):
        assert tzs.offset_of(tz, instant) == expected

    @pytest.mark.parametrize(
        "tz,expected",
        [
            (NEW_YORK, False),
            ("America/Los_Angeles", False),
            ("Australia/Sydney", False),
            ("Asia/Kolkata", False),
            ("America/Sao_Paulo", True),
            ("Europe/Berlin", True),
            ("Asia/Tokyo", True),
            ("UTC", True),
        ],
    )
    def test_is_24_hour_format(self, tz, expected):
        assert tzs.is_24_hour_format(tz) is expected

    def test_timezone_label(self):
        assert tzs.timezone_label(NEW_YORK, at=utc(2024, 1, 15)) == "New York (EST)"
        assert tzs.timezone_label(NEW_YORK, at=utc(2024, 7, 15)) == "New York (EDT)"
        assert tzs.timezone_label("UTC") == "UTC"

    def test_list_timezones(self):
        zones = tzs.list_timezones()
        values = {zone["value"] for zone in zones}

        assert "UTC" in values
        assert NEW_YORK in values
        assert not any(value.startswith("Etc/") for value in values)
        labels = [zone["label"] for zone in zones]
        assert labels == sorted(labels)

    @pytest.mark.parametrize(
        "override,user_tz,expected",
        [
            ("Asia/Tokyo", NEW_YORK, "Asia/Tokyo"),
            (None, "Europe/Paris", "Europe/Paris"),
            (None, None, "UTC"),
        ],
    )
    def test_resolve_timezone(self, override, user_tz, expected):
        assert tzs.resolve_timezone(override, user_tz) == expected

    def test_resolve_timezone_rejects_unknown(self):
        with pytest.raises(InvalidTimezone):
            tzs.resolve_timezone("Not/AZone", NEW_YORK)


# =============================================================================
# Formatting
# =============================================================================

class TestFormatting:
    INSTANT = utc(2024, 3, 10, 18, 30)

    def test_format_time_follows_zone_hint(self):
        assert tzs.format_time(self.INSTANT, NEW_YORK) == "2:30 PM"
        assert tzs.format_time(self.INSTANT, "Europe/Berlin") == "19:30"

    def test_format_time_explicit_preference(self):
        assert tzs.format_time(self.INSTANT, NEW_YORK, use_24_hour=True) == "14:30"
        assert tzs.format_time(self.INSTANT, "Europe/Berlin", use_24_hour=False) == "7:30 PM"

    def test_format_time_with_pattern(self):
        assert tzs.format_time(self.INSTANT, NEW_YORK, fmt="%H-%M") == "14-30"

    def test_midnight_and_noon_in_12_hour_clock(self):
        assert tzs.format_time(utc(2024, 1, 15, 5, 0), NEW_YORK) == "12:00 AM"
        assert tzs.format_time(utc(2024, 1, 15, 17, 0), NEW_YORK) == "12:00 PM"

    def test_format_date(self):
        assert tzs.format_date(self.INSTANT, NEW_YORK) == "Mar 10, 2024"
        assert tzs.format_date(utc(2024, 3, 10, 2, 0), NEW_YORK) == "Mar 9, 2024"

    def test_format_date_time(self):
        assert tzs.format_date_time(self.INSTANT, NEW_YORK) == "Mar 10, 2024 2:30 PM"

    def test_format_time_range(self):
        end = self.INSTANT + timedelta(minutes=45)
        assert tzs.format_time_range(self.INSTANT, end, NEW_YORK) == "2:30 PM - 3:15 PM"
        assert tzs.format_time_range(self.INSTANT, end, NEW_YORK, use_24_hour=True) == "14:30 - 15:15"
