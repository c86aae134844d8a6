"""Habit analytics engine — streaks and adherence over irregular session logs.

Pure function of (habits, sessions, today). No database access, no LLM calls.

Cadence:
  - "daily"  — the habit's period text contains "day"; the graded unit is a day
  - "weekly" — anything else; the graded unit is a Sunday-anchored week

Each cadence is a CadencePolicy that owns the success test, both streak walks
and window adherence. compute_habit_stats() only buckets sessions and
assembles the result.

The measured window ends today if anything was logged today, otherwise
yesterday, so an in-progress day never reads as a miss. Weekly adherence
only grades weeks that have fully ended by yesterday.
"""

import logging
import math
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta

from groundwork.dates import (
    to_date_key, week_start, week_end, week_start_key, month_key, year_key,
    sunday_index, parse_date_key, parse_timestamp, today_local, days_between,
)

log = logging.getLogger(__name__)


@dataclass
class Habit:
    id: int
    title: str
    kind: str = "check"          # "check" | "amount"
    count: int = 1               # target per period; 0/None means 1
    period: str = "day"
    type: str = ""
    target_duration: int = 0
    created_at: str = ""
    archived_at: str | None = None


@dataclass
class HabitSession:
    id: int
    habit_id: int
    created_at: str
    amount: float | None = None  # only read when habit.kind == "amount"
    duration: int | None = None
    note: str | None = None
    finished_at: str | None = None


@dataclass
class HabitStatResult:
    habit: Habit
    is_daily: bool
    start_date: date
    last7: list = field(default_factory=list)
    sum_last7: float = 0
    active_streak: int = 0
    longest_streak: int = 0
    adherence_percent: int = 0
    adherence_last365: int = 0
    adherence_current_year: int = 0
    current_week_success: bool = False
    weekday_totals: list = field(default_factory=lambda: [0] * 7)
    weekday_success: list = field(default_factory=lambda: [0] * 7)
    month_totals: dict = field(default_factory=dict)
    month_success: dict = field(default_factory=dict)
    success_days_count: int = 0
    success_weeks_count: int = 0
    success_months_count: int = 0
    success_years_count: int = 0
    totals_by_day: dict = field(default_factory=dict)
    totals_by_week: dict = field(default_factory=dict)
    totals_by_month: dict = field(default_factory=dict)
    totals_by_year: dict = field(default_factory=dict)
    total_days: int = 1
    total_weeks: int = 1
    total_months: int = 1
    total_years: int = 1


@dataclass
class HabitStatSummary:
    """The slice of a HabitStatResult that goes into LLM prompts."""
    title: str
    active_streak: int
    last7_sum: float
    adherence_percent: int
    adherence_last365: int
    adherence_current_year: int


# ═══════════════════════════════════════════════════════════════════════════
# Period arithmetic
# ═══════════════════════════════════════════════════════════════════════════

def count_days_between(start: date, end: date) -> int:
    """Inclusive day count, never below 1."""
    return max(1, days_between(start, end) + 1)


def count_weeks_between(start: date, end: date) -> int:
    """Inclusive count of week buckets touched, never below 1."""
    return max(1, (week_start(end) - week_start(start)).days // 7 + 1)


def count_months_between(start: date, end: date) -> int:
    return max(1, (end.year - start.year) * 12 + (end.month - start.month) + 1)


def count_years_between(start: date, end: date) -> int:
    return max(1, end.year - start.year + 1)


def _percent(success: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, not banker's rounding
    return math.floor(success * 100 / total + 0.5)


def _key_dates(keys: set[str]) -> list[date]:
    parsed = (parse_date_key(k) for k in keys)
    return [d for d in parsed if d is not None]


@dataclass
class _Span:
    start: date
    today: date
    metrics_end: date

    @property
    def yesterday(self) -> date:
        return self.today - timedelta(days=1)


# ═══════════════════════════════════════════════════════════════════════════
# Cadence policies
# ═══════════════════════════════════════════════════════════════════════════

class CadencePolicy(ABC):
    """Success rules and streak/adherence walks for one cadence."""

    is_daily: bool = False

    def __init__(self, habit: Habit) -> None:
        self.habit = habit
        self.target = habit.count or 1

    def meets_target(self, total) -> bool:
        if self.habit.kind == "amount":
            return total >= self.target
        return total >= 1

    @abstractmethod
    def success_sets(self, totals_by_day: dict, totals_by_week: dict) -> tuple[set[str], set[str]]:
        """Return (success day keys, success week keys)."""
        ...

    @abstractmethod
    def graded(self, success_days: set[str], success_weeks: set[str]) -> set[str]:
        """The keys adherence and streaks are measured on."""
        ...

    @abstractmethod
    def active_streak(self, success: set[str], span: _Span) -> int:
        ...

    @abstractmethod
    def longest_streak(self, success: set[str], span: _Span) -> int:
        ...

    @abstractmethod
    def window_adherence(self, success: set[str], window_start: date, span: _Span) -> tuple[int, int]:
        """Return (success periods, total periods) from window_start to the end of the span."""
        ...

    @abstractmethod
    def current_week_success(self, success: set[str], today: date) -> bool:
        ...


class DailyCadencePolicy(CadencePolicy):
    is_daily = True

    def success_sets(self, totals_by_day, totals_by_week):
        days = {k for k, v in totals_by_day.items() if self.meets_target(v)}
        return days, set()

    def graded(self, success_days, success_weeks):
        return success_days

    def active_streak(self, success, span):
        streak = 0
        cursor = span.metrics_end
        while cursor >= span.start and to_date_key(cursor) in success:
            streak += 1
            if cursor <= span.start:
                break
            cursor -= timedelta(days=1)
        return streak

    def longest_streak(self, success, span):
        longest = current = 0
        cursor = span.start
        while cursor <= span.metrics_end:
            if to_date_key(cursor) in success:
                current += 1
                longest = max(longest, current)
            else:
                current = 0
            cursor += timedelta(days=1)
        return longest

    def window_adherence(self, success, window_start, span):
        total = count_days_between(window_start, span.metrics_end)
        hits = sum(1 for d in _key_dates(success) if window_start <= d <= span.metrics_end)
        return hits, total

    def current_week_success(self, success, today):
        this_week = week_start(today)
        return any(week_start(d) == this_week for d in _key_dates(success))


class WeeklyCadencePolicy(CadencePolicy):
    is_daily = False

    def success_sets(self, totals_by_day, totals_by_week):
        # Any active day is marked, but only weeks are graded.
        days = {k for k, v in totals_by_day.items() if v > 0}
        weeks = {k for k, v in totals_by_week.items() if self.meets_target(v)}
        return days, weeks

    def graded(self, success_days, success_weeks):
        return success_weeks

    def active_streak(self, success, span):
        streak = 0
        first_week = week_start(span.start)
        cursor = week_start(span.today)
        while cursor >= first_week and to_date_key(cursor) in success:
            streak += 1
            if cursor - first_week < timedelta(days=7):
                break
            cursor -= timedelta(days=7)
        return streak

    def longest_streak(self, success, span):
        first_week = week_start(span.start)
        weeks = sorted(ws for ws in _key_dates(success) if first_week <= ws <= span.today)
        longest = current = 0
        prev = None
        for ws in weeks:
            current = current + 1 if prev is not None and (ws - prev).days == 7 else 1
            longest = max(longest, current)
            prev = ws
        return longest

    def window_adherence(self, success, window_start, span):
        # A week counts once its Saturday is no later than yesterday.
        total = count_weeks_between(window_start, span.yesterday)
        hits = sum(
            1 for ws in _key_dates(success)
            if window_start <= week_end(ws) <= span.yesterday
        )
        return hits, total

    def current_week_success(self, success, today):
        return week_start_key(today) in success


def cadence_policy(habit: Habit) -> CadencePolicy:
    if "day" in (habit.period or "").lower():
        return DailyCadencePolicy(habit)
    return WeeklyCadencePolicy(habit)


# ═══════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════

def compute_habit_stats(
    active_habits: list[Habit],
    sessions_by_habit_id: dict,
    last7_day_keys: list[str],
    today: date | None = None,
) -> list[HabitStatResult]:
    """Compute rolling stats for each habit.

    sessions_by_habit_id maps habit id → sessions in any order. Sessions with
    unparseable timestamps are skipped. today defaults to the local date.
    """
    today = today or today_local()
    return [
        _compute_one(habit, sessions_by_habit_id.get(habit.id, []), last7_day_keys, today)
        for habit in active_habits
    ]


def _compute_one(habit: Habit, sessions: list[HabitSession],
                 last7_day_keys: list[str], today: date) -> HabitStatResult:
    policy = cadence_policy(habit)

    totals_by_day: dict = defaultdict(int)
    totals_by_week: dict = defaultdict(int)
    totals_by_month: dict = defaultdict(int)
    totals_by_year: dict = defaultdict(int)
    weekday_totals = [0] * 7
    weekday_success = [0] * 7
    earliest = None

    for session in sessions:
        ts = parse_timestamp(session.created_at)
        if ts is None:
            log.debug("Skipping session %s of habit %s: bad timestamp %r",
                      session.id, habit.id, session.created_at)
            continue
        if earliest is None or ts < earliest:
            earliest = ts
        day = ts.date()
        amount = max(0, session.amount or 0) if habit.kind == "amount" else 1
        totals_by_day[to_date_key(day)] += amount
        totals_by_week[week_start_key(day)] += amount
        totals_by_month[month_key(day)] += amount
        totals_by_year[year_key(day)] += amount
        weekday_totals[sunday_index(day)] += amount

    success_days, success_weeks = policy.success_sets(totals_by_day, totals_by_week)
    if policy.is_daily:
        for d in _key_dates(success_days):
            weekday_success[sunday_index(d)] += 1

    created = parse_timestamp(habit.created_at)
    if created is not None:
        start = created.date()
    elif earliest is not None:
        start = earliest.date()
    else:
        start = today

    logged_today = totals_by_day.get(to_date_key(today), 0) > 0
    metrics_end = today if logged_today else today - timedelta(days=1)
    span = _Span(start=start, today=today, metrics_end=metrics_end)

    graded = policy.graded(success_days, success_weeks)
    month_success: dict = defaultdict(int)
    success_years = set()
    for d in _key_dates(graded):
        month_success[month_key(d)] += 1
        success_years.add(year_key(d))

    last365_start = max(start, metrics_end - timedelta(days=364))
    year_start = max(start, date(metrics_end.year, 1, 1))

    all_hits, all_total = policy.window_adherence(graded, start, span)
    hits_365, total_365 = policy.window_adherence(graded, last365_start, span)
    hits_year, total_year = policy.window_adherence(graded, year_start, span)

    last7 = [totals_by_day.get(k, 0) for k in last7_day_keys]

    return HabitStatResult(
        habit=habit,
        is_daily=policy.is_daily,
        start_date=start,
        last7=last7,
        sum_last7=sum(last7),
        active_streak=policy.active_streak(graded, span),
        longest_streak=policy.longest_streak(graded, span),
        adherence_percent=_percent(all_hits, all_total),
        adherence_last365=_percent(hits_365, total_365),
        adherence_current_year=_percent(hits_year, total_year),
        current_week_success=policy.current_week_success(graded, today),
        weekday_totals=weekday_totals,
        weekday_success=weekday_success,
        month_totals=dict(totals_by_month),
        month_success=dict(month_success),
        success_days_count=len(success_days),
        success_weeks_count=len(success_weeks),
        success_months_count=len(month_success),
        success_years_count=len(success_years),
        totals_by_day=dict(totals_by_day),
        totals_by_week=dict(totals_by_week),
        totals_by_month=dict(totals_by_month),
        totals_by_year=dict(totals_by_year),
        total_days=count_days_between(start, metrics_end),
        total_weeks=count_weeks_between(start, metrics_end),
        total_months=count_months_between(start, metrics_end),
        total_years=count_years_between(start, metrics_end),
    )


def summarize_for_analysis(results: list[HabitStatResult]) -> list[HabitStatSummary]:
    return [
        HabitStatSummary(
            title=r.habit.title,
            active_streak=r.active_streak,
            last7_sum=r.sum_last7,
            adherence_percent=r.adherence_percent,
            adherence_last365=r.adherence_last365,
            adherence_current_year=r.adherence_current_year,
        )
        for r in results
    ]
