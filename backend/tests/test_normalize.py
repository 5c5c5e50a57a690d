"""
Unit tests for utils/normalize.py

Tests the scraped-value normalizers:
- Correct type conversion
- Proper None/empty string handling
- Time-of-day extraction to HH:MM:SS
- Overnight event windows
"""

import pytest
from datetime import date, datetime, time

from utils.normalize import (
    ValidationError,
    to_int,
    to_float,
    to_bool,
    to_str,
    to_date,
    date_key,
    extract_time,
    time_key,
    time_to_minutes,
    combine_date_time,
    event_window,
)


class TestToInt:
    """Tests for to_int()"""

    def test_valid_int_string(self):
        assert to_int("123") == 123
        assert to_int("-456") == -456

    def test_none_and_empty(self):
        assert to_int(None) is None
        assert to_int("", default=50) == 50

    def test_invalid_string_raises(self):
        with pytest.raises(ValidationError) as exc:
            to_int("abc", field="limit")
        assert "Expected int" in str(exc.value)
        assert exc.value.field == "limit"


class TestToFloat:
    """Tests for to_float()"""

    def test_valid_float_string(self):
        assert to_float("52.5112") == 52.5112
        assert to_float("100") == 100.0

    def test_with_default(self):
        assert to_float(None, default=1.5) == 1.5

    def test_invalid_raises(self):
        with pytest.raises(ValidationError):
            to_float("north")


class TestToBool:
    """Tests for to_bool()"""

    def test_true_values(self):
        for value in ("true", "TRUE", "1", "yes", "on"):
            assert to_bool(value) is True

    def test_false_values(self):
        for value in ("false", "0", "no", "off"):
            assert to_bool(value) is False

    def test_bool_passthrough(self):
        assert to_bool(True) is True

    def test_empty_uses_default(self):
        assert to_bool("", default=True) is True

    def test_invalid_raises(self):
        with pytest.raises(ValidationError):
            to_bool("maybe")


class TestToStr:
    """Tests for to_str()"""

    def test_strips(self):
        assert to_str("  Berghain ") == "Berghain"

    def test_whitespace_only_is_empty(self):
        assert to_str("   ") is None
        assert to_str("   ", default="n/a") == "n/a"


class TestToDate:
    """Tests for to_date()"""

    def test_iso_date(self):
        assert to_date("2024-05-01") == date(2024, 5, 1)

    def test_iso_datetime_keeps_date(self):
        assert to_date("2024-05-01T23:00:00Z") == date(2024, 5, 1)

    def test_date_and_datetime_objects(self):
        assert to_date(date(2024, 5, 1)) == date(2024, 5, 1)
        assert to_date(datetime(2024, 5, 1, 23, 0)) == date(2024, 5, 1)

    def test_invalid_raises(self):
        with pytest.raises(ValidationError) as exc:
            to_date("01/05/2024x", field="date")
        assert exc.value.field == "date"

    def test_date_key(self):
        assert date_key("2024-05-01T10:00:00") == "2024-05-01"
        assert date_key(date(2024, 5, 1)) == "2024-05-01"
        assert date_key(None) is None


# =============================================================================
# Times
# =============================================================================

class TestExtractTime:
    """Tests for extract_time()"""

    def test_hh_mm(self):
        assert extract_time("23:00") == "23:00:00"
        assert extract_time("9:05") == "09:05:00"

    def test_hh_mm_ss(self):
        assert extract_time("23:30:15") == "23:30:15"

    def test_iso_datetime(self):
        assert extract_time("2024-05-01T23:00:00Z") == "23:00:00"
        assert extract_time("2024-05-01T06:30:00+02:00") == "06:30:00"

    def test_objects(self):
        assert extract_time(time(22, 15)) == "22:15:00"
        assert extract_time(datetime(2024, 5, 1, 1, 2, 3)) == "01:02:03"

    def test_unusable(self):
        assert extract_time(None) is None
        assert extract_time("") is None
        assert extract_time("doors open late") is None
        assert extract_time("25:00") is None

    def test_time_key_and_minutes(self):
        assert time_key("23:00:59") == "23:00"
        assert time_to_minutes("23:30") == 1410
        assert time_to_minutes(None) is None


class TestEventWindow:
    """Tests for combine_date_time() and event_window()"""

    def test_combine(self):
        assert combine_date_time(date(2024, 5, 1), "23:30") == datetime(2024, 5, 1, 23, 30)
        assert combine_date_time(None, "23:30") is None

    def test_same_day(self):
        start, end = event_window(date(2024, 5, 1), "20:00", "23:00")
        assert start == datetime(2024, 5, 1, 20, 0)
        assert end == datetime(2024, 5, 1, 23, 0)

    def test_overnight_wrap(self):
        start, end = event_window(date(2024, 5, 1), "23:30", "00:30")
        assert start == datetime(2024, 5, 1, 23, 30)
        assert end == datetime(2024, 5, 2, 0, 30)

    def test_missing_end(self):
        start, end = event_window(date(2024, 5, 1), "23:30", None)
        assert start == datetime(2024, 5, 1, 23, 30)
        assert end is None
