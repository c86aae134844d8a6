"""Tests for observation parsing, the frequency gate, and analysis context."""

import json

import pytest

from groundwork.habit_stats import HabitStatSummary
from groundwork.identity import IdentityMetrics, WeeklyReflection
from groundwork.observations import (
    AnalysisData, EntityRef, Observation, ObservationParseError,
    build_analysis_context, format_for_consolidation,
    parse_observation_response, parse_observations, sanitize_observations,
    should_run_analysis, to_payloads,
)


def _obs(id: int = 1, **kw) -> Observation:
    defaults = dict(scope="daily", analysis_depth="7day", category="habit_trend",
                    observation="Reading streak holding at 4 days", date_ref="2026-01-04",
                    confidence=3)
    defaults.update(kw)
    return Observation(id=id, **defaults)


# ═══════════════════════════════════════════════════════════════════════════
# Frequency gate
# ═══════════════════════════════════════════════════════════════════════════

class TestShouldRunAnalysis:
    def test_never_run_is_due(self):
        assert should_run_analysis("30day", None, "2026-01-05")
        assert should_run_analysis("full", "", "2026-01-05")

    def test_30day_interval(self):
        assert not should_run_analysis("30day", "2026-01-01", "2026-01-05")
        assert should_run_analysis("30day", "2026-01-01", "2026-01-07")
        assert should_run_analysis("30day", "2026-01-01", "2026-01-06")

    def test_7day_interval(self):
        assert not should_run_analysis("7day", "2026-01-05", "2026-01-05")
        assert should_run_analysis("7day", "2026-01-04", "2026-01-05")

    def test_full_interval(self):
        assert not should_run_analysis("full", "2026-01-01", "2026-01-14")
        assert should_run_analysis("full", "2026-01-01", "2026-01-15")


# ═══════════════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestLocateJson:
    def test_raw_array(self):
        result = parse_observation_response('[{"a": 1}]')
        assert result.ok
        assert result.entries == [{"a": 1}]

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n[{"a": 1}]\n```\nHope that helps.'
        assert parse_observation_response(text).entries == [{"a": 1}]

    def test_fence_without_language(self):
        assert parse_observation_response('```\n[]\n```').entries == []

    def test_bracket_slice(self):
        text = 'Observations: [{"a": 1}, {"b": 2}] end'
        assert parse_observation_response(text).entries == [{"a": 1}, {"b": 2}]

    def test_object_is_error(self):
        result = parse_observation_response('{"category": "habit_trend"}')
        assert not result.ok
        assert "array" in result.error

    def test_no_json_is_error(self):
        result = parse_observation_response("I could not find any patterns.")
        assert not result.ok

    def test_broken_json_is_error(self):
        assert not parse_observation_response("[{'single': 'quotes'}]").ok

    def test_empty_text(self):
        assert not parse_observation_response("").ok
        assert not parse_observation_response(None).ok

    def test_parse_observations_raises(self):
        with pytest.raises(ObservationParseError):
            parse_observations("nothing here")

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_observations('{"not": "a list"}')


class TestSanitize:
    def test_category_coercion_and_clamp(self):
        [entry] = parse_observations('[{"category":"bogus","observation":"x","confidence":10}]')
        assert entry.category == "growth_signal"
        assert entry.confidence == 5

    def test_missing_field_dropped(self):
        text = '[{"category":"habit_trend","observation":"ok","confidence":3},{"category":"habit_trend"}]'
        entries = parse_observations(text)
        assert len(entries) == 1
        assert entries[0].observation == "ok"

    def test_wrong_types_dropped(self):
        entries = sanitize_observations([
            "just a string",
            {"category": 3, "observation": "x", "confidence": 3},
            {"category": "habit_trend", "observation": ["x"], "confidence": 3},
            {"category": "habit_trend", "observation": "x", "confidence": "4"},
            {"category": "habit_trend", "observation": "x", "confidence": True},
            {"category": "habit_trend", "observation": "x", "confidence": float("nan")},
            {"category": "habit_trend", "observation": "kept", "confidence": 4},
        ])
        assert [e.observation for e in entries] == ["kept"]

    def test_confidence_rounding(self):
        entries = sanitize_observations([
            {"category": "habit_trend", "observation": "a", "confidence": 2.5},
            {"category": "habit_trend", "observation": "b", "confidence": 2.4},
            {"category": "habit_trend", "observation": "c", "confidence": -3},
            {"category": "habit_trend", "observation": "d", "confidence": 0.4},
        ])
        assert [e.confidence for e in entries] == [3, 2, 1, 1]

    def test_observation_truncated(self):
        [entry] = sanitize_observations([
            {"category": "energy_pattern", "observation": "y" * 900, "confidence": 3},
        ])
        assert len(entry.observation) == 500

    def test_entity_refs_filtered(self):
        [entry] = sanitize_observations([{
            "category": "habit_trend", "observation": "x", "confidence": 3,
            "entity_refs": [
                {"type": "habit", "id": "12"},
                {"type": "habit", "id": 12},
                {"type": "goal"},
                "habit:12",
                {"type": "identity_metric", "id": "morning_grounding"},
            ],
        }])
        assert entry.entity_refs == [
            EntityRef(type="habit", id="12"),
            EntityRef(type="identity_metric", id="morning_grounding"),
        ]

    def test_entity_refs_not_a_list(self):
        [entry] = sanitize_observations([
            {"category": "habit_trend", "observation": "x", "confidence": 3, "entity_refs": "habit"},
        ])
        assert entry.entity_refs == []

    def test_all_known_categories_kept(self):
        cats = ["habit_trend", "identity_pattern", "schedule_insight", "reflection_theme",
                "energy_pattern", "growth_signal", "task_trend"]
        entries = sanitize_observations([
            {"category": c, "observation": "x", "confidence": 3} for c in cats
        ])
        assert [e.category for e in entries] == cats


class TestPayloads:
    def test_scope_follows_depth(self):
        raw = parse_observations(json.dumps([
            {"category": "habit_trend", "observation": "x", "confidence": 3},
        ]))
        [daily] = to_payloads(raw, "7day", "2026-01-04")
        [weekly] = to_payloads(raw, "30day", "2026-01-04")
        [quarterly] = to_payloads(raw, "full", "2026-01-04")
        assert (daily.scope, weekly.scope, quarterly.scope) == ("daily", "weekly", "quarterly")
        assert daily.analysis_depth == "7day"
        assert daily.date_ref == "2026-01-04"


# ═══════════════════════════════════════════════════════════════════════════
# Context
# ═══════════════════════════════════════════════════════════════════════════

class TestAnalysisContext:
    def _data(self, **kw) -> AnalysisData:
        return AnalysisData(today="2026-01-04", **kw)

    def test_minimal(self):
        text = build_analysis_context("7day", self._data())
        assert text.startswith("Analysis depth: 7day")
        assert "Analysis through: 2026-01-04" in text
        assert "Habit stats" not in text

    def test_identity_metrics_window_label(self):
        metrics = [IdentityMetrics(date="2026-01-04", morning_grounding=True, curiosity_spark=True)]
        assert "Identity metrics (last 7 days)" in build_analysis_context("7day", self._data(identity_metrics=metrics))
        text = build_analysis_context("30day", self._data(identity_metrics=metrics))
        assert "Identity metrics (last 30 days)" in text
        assert "2026-01-04: 2/5 (grounding, curiosity)" in text

    def test_habit_stats_line(self):
        stats = [HabitStatSummary(title="Read", active_streak=3, last7_sum=4.0,
                                  adherence_percent=75, adherence_last365=70, adherence_current_year=80)]
        text = build_analysis_context("7day", self._data(habit_stats=stats))
        assert "- Read: streak=3d, last7=4, adherence365=70%, currentYear=80%" in text

    def test_reflections_and_tasks(self):
        data = self._data(
            reflections=[WeeklyReflection(week_start_date="2025-12-28", what_went_well="Slept well")],
            completed_tasks=["File taxes"],
        )
        text = build_analysis_context("7day", data)
        assert "Week of 2025-12-28: Well: Slept well | Mattered: (empty)" in text
        assert "- File taxes" in text

    def test_existing_and_dismissed(self):
        dismissed = _obs(2, dismissed=True, dismiss_reason="intentional", dismiss_note="rest day")
        data = self._data(existing_observations=[_obs(1)], dismissed_observations=[dismissed])
        text = build_analysis_context("7day", data)
        assert "do NOT repeat these" in text
        assert "(confidence: 3, from: 2026-01-04)" in text
        assert 'dismissed as "intentional": rest day' in text

    def test_format_for_consolidation(self):
        text = format_for_consolidation([_obs(1), _obs(2, category="energy_pattern", observation="Evenings low")])
        assert text.splitlines() == [
            "- [habit_trend] Reading streak holding at 4 days (2026-01-04, confidence: 3)",
            "- [energy_pattern] Evenings low (2026-01-04, confidence: 3)",
        ]
