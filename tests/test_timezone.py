"""Tests for XMLTV timestamp parsing and the stored ISO representation."""

from datetime import datetime, timezone

import pytest

from epg_guide.utils.timezone import (
    DateFormatError,
    from_utc_iso,
    parse_iso8601_to_utc,
    parse_xmltv_time,
    to_utc_iso,
)


class TestParseXmltvTime:

    def test_without_offset_is_local_time(self):
        parsed = parse_xmltv_time("20231201120000")
        assert parsed == datetime(2023, 12, 1, 12, 0, 0).astimezone(timezone.utc)
        assert parsed.tzinfo is timezone.utc

    def test_offset_is_applied(self):
        parsed = parse_xmltv_time("20231201120000 +0100")
        assert parsed == datetime(2023, 12, 1, 11, 0, 0, tzinfo=timezone.utc)

    def test_negative_offset_is_applied(self):
        parsed = parse_xmltv_time("20080715003000 -0600")
        assert parsed == datetime(2008, 7, 15, 6, 30, 0, tzinfo=timezone.utc)

    def test_offset_ignored_when_not_honored(self):
        # Compatibility mode: the wall clock is read in local time whatever the suffix says
        parsed = parse_xmltv_time("20231201120000 +0100", honor_offset=False)
        assert parsed == datetime(2023, 12, 1, 12, 0, 0).astimezone(timezone.utc)

    def test_unrecognized_offset_falls_back_to_local_time(self):
        parsed = parse_xmltv_time("20231201120000 CET")
        assert parsed == datetime(2023, 12, 1, 12, 0, 0).astimezone(timezone.utc)

    @pytest.mark.parametrize("value", [
        None,
        "",
        "2023120112",
        "2023-12-01 12:00",
        "20231301120000",  # month 13
        "20231201256000",  # hour 25
        "abcdefghijklmn",
        "00010101000000 +0100",  # shifts before year 1
        "99991231235959 -0100",  # shifts past year 9999
    ])
    def test_malformed_values_yield_none(self, value):
        assert parse_xmltv_time(value) is None


class TestIsoStorage:

    def test_fixed_width_round_trip(self):
        value = datetime(2024, 5, 1, 12, 0, 0, 987654, tzinfo=timezone.utc)
        stored = to_utc_iso(value)
        assert stored == "2024-05-01T12:00:00+00:00"
        assert from_utc_iso(stored) == value.replace(microsecond=0)

    def test_none_passes_through(self):
        assert to_utc_iso(None) is None
        assert from_utc_iso(None) is None

    def test_parse_iso8601_z_suffix(self):
        assert parse_iso8601_to_utc("2025-10-09T00:00:00Z") == datetime(2025, 10, 9, tzinfo=timezone.utc)

    def test_parse_iso8601_invalid(self):
        with pytest.raises(DateFormatError):
            parse_iso8601_to_utc("yesterday")
