"""Observations — types, LLM response parsing, frequency gate, analysis context.

Everything here is pure: no database, no LLM calls. The orchestration that
uses it lives in observation_engine.py.

Parsing is two stages:
  1. parse_observation_response() — locate a JSON array in free text.
     Returns a ParseResult carrying either the entries or an error.
  2. sanitize_observations() — per-entry validation and clamping.
     Bad entries are dropped, never the whole batch.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date

from groundwork.habit_stats import HabitStatSummary
from groundwork.identity import IdentityMetrics, WeeklyReflection

log = logging.getLogger(__name__)

SCOPES = ("daily", "weekly", "quarterly")
DEPTHS = ("7day", "30day", "full")
SCOPE_BY_DEPTH = {"7day": "daily", "30day": "weekly", "full": "quarterly"}

CATEGORIES = (
    "habit_trend", "identity_pattern", "schedule_insight",
    "reflection_theme", "energy_pattern", "growth_signal", "task_trend",
)
DEFAULT_CATEGORY = "growth_signal"
DISMISS_REASONS = ("intentional", "outdated", "incorrect")

MAX_OBSERVATION_CHARS = 500
MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5

# Minimum whole days between two runs of the same analysis tier
ANALYSIS_INTERVAL_DAYS = {"7day": 1, "30day": 5, "full": 14}


@dataclass
class EntityRef:
    type: str   # "habit" | "goal" | "identity_metric", informational only
    id: str


@dataclass
class Observation:
    id: int
    scope: str
    analysis_depth: str
    category: str
    observation: str
    date_ref: str
    confidence: int
    entity_refs: list[EntityRef] = field(default_factory=list)
    dismissed: bool = False
    dismiss_reason: str | None = None
    dismiss_note: str | None = None
    superseded_by: int | None = None
    created_at: str = ""

    @property
    def active(self) -> bool:
        return not self.dismissed and self.superseded_by is None


@dataclass
class ObservationPayload:
    """A validated observation ready to insert."""
    scope: str
    analysis_depth: str
    category: str
    observation: str
    date_ref: str
    confidence: int
    entity_refs: list[EntityRef] = field(default_factory=list)


@dataclass
class RawObservation:
    category: str
    observation: str
    confidence: int
    entity_refs: list[EntityRef] = field(default_factory=list)


@dataclass
class AnalysisData:
    today: str                                   # analysis date (yesterday)
    habit_stats: list[HabitStatSummary] = field(default_factory=list)
    identity_metrics: list[IdentityMetrics] = field(default_factory=list)
    reflections: list[WeeklyReflection] = field(default_factory=list)
    existing_observations: list[Observation] = field(default_factory=list)
    dismissed_observations: list[Observation] = field(default_factory=list)
    completed_tasks: list[str] | None = None


class ObservationParseError(ValueError):
    """LLM output did not contain a usable JSON array."""


@dataclass
class ParseResult:
    entries: list = field(default_factory=list)
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


# ═══════════════════════════════════════════════════════════════════════════
# Frequency gate
# ═══════════════════════════════════════════════════════════════════════════

def should_run_analysis(depth: str, last_run_date: str | None, today: str) -> bool:
    """Whether an analysis tier is due, given the date it last produced output."""
    if not last_run_date:
        return True
    days = (date.fromisoformat(today) - date.fromisoformat(last_run_date)).days
    return days >= ANALYSIS_INTERVAL_DAYS[depth]


# ═══════════════════════════════════════════════════════════════════════════
# Parsing — stage 1: find the JSON array
# ═══════════════════════════════════════════════════════════════════════════

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def _locate_json(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fence = _FENCE_RE.search(text)
    if fence:
        return json.loads(fence.group(1))

    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end > start:
        return json.loads(text[start:end + 1])

    raise ObservationParseError("no JSON found in observation response")


def parse_observation_response(text: str) -> ParseResult:
    try:
        parsed = _locate_json(text or "")
    except (json.JSONDecodeError, ObservationParseError) as e:
        return ParseResult(error=f"could not parse observation response: {e}")
    if not isinstance(parsed, list):
        return ParseResult(error="observation response is not an array")
    return ParseResult(entries=parsed)


# ═══════════════════════════════════════════════════════════════════════════
# Parsing — stage 2: validate and clamp each entry
# ═══════════════════════════════════════════════════════════════════════════

def _is_number(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _clamp_confidence(value) -> int:
    rounded = math.floor(value + 0.5)
    return min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, rounded))


def _clean_entity_refs(value) -> list[EntityRef]:
    if not isinstance(value, list):
        return []
    return [
        EntityRef(type=ref["type"], id=ref["id"])
        for ref in value
        if isinstance(ref, dict)
        and isinstance(ref.get("type"), str)
        and isinstance(ref.get("id"), str)
    ]


def sanitize_observations(entries: list) -> list[RawObservation]:
    cleaned = []
    for item in entries:
        if not isinstance(item, dict):
            continue
        category = item.get("category")
        text = item.get("observation")
        confidence = item.get("confidence")
        if not isinstance(category, str) or not isinstance(text, str) or not _is_number(confidence):
            continue
        cleaned.append(RawObservation(
            category=category if category in CATEGORIES else DEFAULT_CATEGORY,
            observation=text[:MAX_OBSERVATION_CHARS],
            confidence=_clamp_confidence(confidence),
            entity_refs=_clean_entity_refs(item.get("entity_refs")),
        ))
    dropped = len(entries) - len(cleaned)
    if dropped:
        log.info("Dropped %d malformed observation entries", dropped)
    return cleaned


def parse_observations(text: str) -> list[RawObservation]:
    """Both parsing stages. Raises ObservationParseError if no array is found."""
    result = parse_observation_response(text)
    if not result.ok:
        raise ObservationParseError(result.error)
    return sanitize_observations(result.entries)


def to_payloads(raw: list[RawObservation], depth: str, date_ref: str,
                scope: str | None = None) -> list[ObservationPayload]:
    return [
        ObservationPayload(
            scope=scope or SCOPE_BY_DEPTH[depth],
            analysis_depth=depth,
            category=r.category,
            observation=r.observation,
            date_ref=date_ref,
            confidence=r.confidence,
            entity_refs=r.entity_refs,
        )
        for r in raw
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Analysis context
# ═══════════════════════════════════════════════════════════════════════════

def _format_metrics(m: IdentityMetrics) -> str:
    done = ", ".join(m.practices_done()) or "none"
    return f"{m.date}: {m.score}/5 ({done})"


def _format_reflection(r: WeeklyReflection) -> str:
    return (
        f"Week of {r.week_start_date}: "
        f"Well: {r.what_went_well or '(empty)'} | "
        f"Mattered: {r.what_mattered or '(empty)'} | "
        f"Learnings: {r.learnings or '(empty)'}"
    )


def build_analysis_context(depth: str, data: AnalysisData) -> str:
    """Render everything the analyst model sees as plain text sections."""
    sections = [
        f"Analysis depth: {depth}",
        f"Analysis through: {data.today} (today's data excluded — still in progress)",
    ]

    if data.identity_metrics:
        window = "7" if depth == "7day" else "30"
        lines = "\n".join(_format_metrics(m) for m in data.identity_metrics)
        sections.append(f"Identity metrics (last {window} days):\n{lines}")

    if data.habit_stats:
        lines = "\n".join(
            f"- {h.title}: streak={h.active_streak}d, last7={h.last7_sum:g}, "
            f"adherence365={h.adherence_last365}%, currentYear={h.adherence_current_year}%"
            for h in data.habit_stats
        )
        sections.append(
            f"Habit stats:\n{lines}\n"
            "Note: Habit adherence stats are long-window metrics where one day's variance is negligible."
        )

    if data.completed_tasks:
        lines = "\n".join(f"- {t}" for t in data.completed_tasks)
        sections.append(f"Completed tasks (recent):\n{lines}")

    if data.reflections:
        lines = "\n".join(_format_reflection(r) for r in data.reflections)
        sections.append(f"Recent reflections:\n{lines}")

    if data.existing_observations:
        lines = "\n".join(
            f"- [{o.category}] {o.observation} (confidence: {o.confidence}, from: {o.date_ref})"
            for o in data.existing_observations
        )
        sections.append(
            "Existing active observations (do NOT repeat these — build on them or find NEW patterns):\n"
            + lines
        )

    if data.dismissed_observations:
        lines = "\n".join(
            f'- [{o.category}] "{o.observation}" → dismissed as "{o.dismiss_reason}"'
            + (f": {o.dismiss_note}" if o.dismiss_note else "")
            for o in data.dismissed_observations
        )
        sections.append(f"User-corrected observations (respect these corrections):\n{lines}")

    return "\n\n".join(sections)


def format_for_consolidation(observations: list[Observation]) -> str:
    return "\n".join(
        f"- [{o.category}] {o.observation} ({o.date_ref}, confidence: {o.confidence})"
        for o in observations
    )
