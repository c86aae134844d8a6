"""Tests for the briefing scheduler timing and the usage log line."""

from datetime import datetime, timezone

import pytest

from groundwork.db import init_db, log_usage
from groundwork.main import seconds_until, usage_report


@pytest.fixture
def fresh_db(tmp_path, monkeypatch):
    db_path = tmp_path / "test.db"
    import groundwork.db as db_module
    monkeypatch.setattr(db_module, "DB_PATH", db_path)
    init_db()
    yield db_path


class TestSecondsUntil:
    def test_later_today(self):
        now = datetime(2026, 1, 10, 4, 30, tzinfo=timezone.utc)
        assert seconds_until(6, now) == 90 * 60

    def test_already_passed_rolls_to_tomorrow(self):
        now = datetime(2026, 1, 10, 7, 0, tzinfo=timezone.utc)
        assert seconds_until(6, now) == 23 * 3600

    def test_exactly_on_the_hour_waits_a_day(self):
        now = datetime(2026, 1, 10, 6, 0, tzinfo=timezone.utc)
        assert seconds_until(6, now) == 24 * 3600


class TestUsageReport:
    def test_empty_log(self, fresh_db):
        assert usage_report() == "LLM usage: today 0 tokens (0 calls), month 0 tokens (0 calls)"

    def test_purposes_largest_first(self, fresh_db):
        log_usage(10, 5, 15, model="m", purpose="observations_7day")
        log_usage(1000, 500, 1500, model="m", purpose="briefing")
        report = usage_report()
        assert "today 1,515 tokens (2 calls)" in report
        assert report.endswith("| briefing=1,500, observations_7day=15")
