"""Tests for date bucket keys."""

from datetime import date, datetime, timezone, timedelta

from groundwork.dates import (
    to_date_key, week_start, week_end, week_start_key, month_key, year_key,
    sunday_index, parse_date_key, parse_timestamp, last_n_day_keys,
)


class TestKeys:
    def test_day_key_zero_padded(self):
        assert to_date_key(date(2026, 1, 5)) == "2026-01-05"

    def test_month_and_year(self):
        assert month_key(date(2026, 3, 9)) == "2026-03"
        assert year_key(date(2026, 3, 9)) == "2026"

    def test_week_starts_on_sunday(self):
        # 2026-01-07 is a Wednesday
        assert week_start(date(2026, 1, 7)) == date(2026, 1, 4)
        assert week_start_key(date(2026, 1, 7)) == "2026-01-04"

    def test_sunday_is_its_own_week_start(self):
        assert week_start(date(2026, 1, 4)) == date(2026, 1, 4)

    def test_saturday_belongs_to_previous_sunday(self):
        assert week_start(date(2026, 1, 10)) == date(2026, 1, 4)

    def test_week_start_clamped_at_year_one(self):
        # 0001-01-01 is a Monday; its Sunday would be year 0
        assert week_start(date(1, 1, 1)) == date.min
        assert week_start(date(1, 1, 6)) == date.min
        assert week_start(date(1, 1, 7)) == date(1, 1, 7)

    def test_week_end_clamped_at_year_9999(self):
        assert week_end(date(2026, 1, 4)) == date(2026, 1, 10)
        assert week_end(date(9999, 12, 26)) == date.max

    def test_week_start_accepts_datetime(self):
        assert week_start(datetime(2026, 1, 7, 23, 30)) == date(2026, 1, 4)

    def test_sunday_index(self):
        assert sunday_index(date(2026, 1, 4)) == 0   # Sunday
        assert sunday_index(date(2026, 1, 5)) == 1   # Monday
        assert sunday_index(date(2026, 1, 10)) == 6  # Saturday


class TestParsing:
    def test_parse_date_key(self):
        assert parse_date_key("2026-01-05") == date(2026, 1, 5)
        assert parse_date_key("not a date") is None
        assert parse_date_key(None) is None

    def test_naive_timestamp_taken_as_local(self):
        assert parse_timestamp("2026-01-05T23:15:00") == datetime(2026, 1, 5, 23, 15)

    def test_aware_timestamp_converted(self, monkeypatch):
        import groundwork.dates as dates_module
        monkeypatch.setattr(dates_module, "TZ", timezone(timedelta(hours=-5)))
        # 02:00 UTC is 21:00 the previous evening at UTC-5
        parsed = parse_timestamp("2026-01-06T02:00:00+00:00")
        assert parsed == datetime(2026, 1, 5, 21, 0)
        assert parsed.tzinfo is None

    def test_plain_date_string(self):
        assert parse_timestamp("2026-01-05") == datetime(2026, 1, 5)

    def test_garbage_returns_none(self):
        assert parse_timestamp("yesterday-ish") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None

    def test_out_of_range_returns_none(self, monkeypatch):
        import groundwork.dates as dates_module
        monkeypatch.setattr(dates_module, "TZ", timezone.utc)
        assert parse_timestamp("9999-12-31T23:30:00-05:00") is None
        assert parse_timestamp("0001-01-01T00:30:00+05:00") is None


class TestLastNDays:
    def test_oldest_first(self):
        keys = last_n_day_keys(date(2026, 1, 5), 3)
        assert keys == ["2026-01-03", "2026-01-04", "2026-01-05"]

    def test_default_seven(self):
        keys = last_n_day_keys(date(2026, 3, 2))
        assert len(keys) == 7
        assert keys[0] == "2026-02-24"
        assert keys[-1] == "2026-03-02"
