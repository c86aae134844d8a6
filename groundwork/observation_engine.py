"""Observation engine — generate, consolidate, and cap AI observations.

Three analysis tiers, each producing observations at its own scope:
  7day  → daily      (every run)
  30day → weekly     (every 5 days)
  full  → quarterly  (every 14 days)

Older fine-grained observations are periodically consolidated one scope up.
The originals are superseded, never deleted. Only pruning deletes.

Daily cycle: guard → 7day → 30day? → full? → weekly consolidation →
quarterly consolidation → prune. Analysis always runs through yesterday;
today's data is still in progress.
"""

import logging
from datetime import date, timedelta

from groundwork.config import (
    MAX_ACTIVE_OBSERVATIONS,
    OBSERVATION_CONTEXT_LIMIT,
    DISMISSED_CONTEXT_LIMIT,
    CONSOLIDATE_DAILY_AFTER_DAYS,
    CONSOLIDATE_WEEKLY_AFTER_DAYS,
)
from groundwork.habit_stats import HabitStatSummary
from groundwork.llm import LLMProvider, get_client
from groundwork.prompt_loader import get_prompt
from groundwork.observations import (
    AnalysisData, Observation, ObservationPayload,
    build_analysis_context, format_for_consolidation,
    parse_observations, should_run_analysis, to_payloads,
)
from groundwork.db import (
    load_active_observations, load_observations_for_date,
    load_recent_dismissed_observations, insert_observations,
    supersede_observations, prune_observations, get_last_analysis_date,
    load_identity_metrics_range, load_recent_weekly_reflections,
    log_usage,
)

log = logging.getLogger(__name__)

GENERATION_MAX_TOKENS = 512
RECENT_RESULT_COUNT = 5

# (identity-metric days, reflections) loaded for each tier
_TIER_WINDOWS = {"7day": (7, 1), "30day": (30, 4), "full": (30, 12)}


def _complete(client: LLMProvider | None, user_text: str, max_tokens: int, purpose: str) -> str:
    """One analyst call with the shared observation system prompt."""
    system = get_prompt("observation_system")
    if not system:
        raise RuntimeError("observation_system prompt not found")

    client = client or get_client(purpose="think")
    response = client.complete(system, user_text, max_tokens=max_tokens, temperature=0.5)

    log_usage(
        response.prompt_tokens, response.completion_tokens,
        response.total_tokens, model=response.model, purpose=purpose,
    )
    return response.content


# ═══════════════════════════════════════════════════════════════════════════
# Generation
# ═══════════════════════════════════════════════════════════════════════════

def generate_observations(depth: str, data: AnalysisData,
                          client: LLMProvider | None = None) -> list[ObservationPayload]:
    """Run one analysis tier. Raises ObservationParseError on unusable output."""
    context = build_analysis_context(depth, data)
    text = _complete(client, context, GENERATION_MAX_TOKENS, f"observations_{depth}")
    return to_payloads(parse_observations(text), depth, data.today)


def _tier_data(user_id: int, depth: str, base: AnalysisData) -> AnalysisData:
    metric_days, reflection_count = _TIER_WINDOWS[depth]
    return AnalysisData(
        today=base.today,
        habit_stats=base.habit_stats,
        identity_metrics=load_identity_metrics_range(user_id, metric_days, base.today),
        reflections=load_recent_weekly_reflections(user_id, reflection_count),
        existing_observations=base.existing_observations,
        dismissed_observations=base.dismissed_observations,
        completed_tasks=base.completed_tasks,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Consolidation
# ═══════════════════════════════════════════════════════════════════════════

WEEKLY_CONSOLIDATION_PROMPT = """Consolidate these daily observations into 2-3 weekly-scope observations that capture the most important patterns. Keep the same JSON format (array of objects with category, observation, confidence, entity_refs).

Daily observations to consolidate:
"""

QUARTERLY_CONSOLIDATION_PROMPT = """Consolidate these weekly observations into 1-2 quarterly-scope observations that capture the deepest identity patterns. Keep the same JSON format (array of objects with category, observation, confidence, entity_refs).

Weekly observations to consolidate:
"""


def stale_observations(active: list[Observation], scope: str, analysis_date: str,
                       after_days: int) -> list[Observation]:
    """Observations of `scope` eligible for consolidation, oldest first.

    Empty unless there are at least 3 of that scope in total and at least 2
    dated on or before analysis_date minus after_days.
    """
    same_scope = [o for o in active if o.scope == scope]
    if len(same_scope) < 3:
        return []
    cutoff = (date.fromisoformat(analysis_date) - timedelta(days=after_days)).isoformat()
    stale = sorted(
        (o for o in same_scope if o.date_ref <= cutoff),
        key=lambda o: (o.date_ref, o.created_at, o.id),
    )
    return stale if len(stale) >= 2 else []


def _consolidate(user_id: int, analysis_date: str, stale: list[Observation],
                 prompt: str, depth: str, max_tokens: int, purpose: str,
                 client: LLMProvider | None) -> int:
    text = _complete(client, prompt + format_for_consolidation(stale), max_tokens, purpose)
    payloads = to_payloads(parse_observations(text), depth, analysis_date)
    new_ids = insert_observations(user_id, payloads)
    if not new_ids:
        log.info("%s produced no observations, originals left active", purpose)
        return 0
    count = supersede_observations(user_id, [o.id for o in stale], new_ids[0])
    log.info("%s: %d observations → %d", purpose, count, len(new_ids))
    return count


def consolidate_weekly(user_id: int, analysis_date: str, active: list[Observation],
                       client: LLMProvider | None = None) -> int:
    """Fold stale daily observations into weekly ones. Returns number superseded."""
    stale = stale_observations(active, "daily", analysis_date, CONSOLIDATE_DAILY_AFTER_DAYS)
    if not stale:
        return 0
    return _consolidate(user_id, analysis_date, stale, WEEKLY_CONSOLIDATION_PROMPT,
                        "30day", 400, "consolidate_weekly", client)


def consolidate_quarterly(user_id: int, analysis_date: str, active: list[Observation],
                          client: LLMProvider | None = None) -> int:
    """Fold stale weekly observations into quarterly ones. Returns number superseded."""
    stale = stale_observations(active, "weekly", analysis_date, CONSOLIDATE_WEEKLY_AFTER_DAYS)
    if not stale:
        return 0
    return _consolidate(user_id, analysis_date, stale, QUARTERLY_CONSOLIDATION_PROMPT,
                        "full", 300, "consolidate_quarterly", client)


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline (called from the morning briefing)
# ═══════════════════════════════════════════════════════════════════════════

def run_observation_pipeline(user_id: int, today: str, habit_stats: list[HabitStatSummary],
                             completed_tasks: list[str] | None = None,
                             client: LLMProvider | None = None) -> list[Observation]:
    """Run the daily observation cycle for one user.

    Idempotent per day: once yesterday has 7day observations, later calls
    only reload. Every tier is isolated, so a failing LLM call or store
    write is logged and the remaining steps still run. Returns the most
    recent active observations.
    """
    yesterday = (date.fromisoformat(today) - timedelta(days=1)).isoformat()

    if load_observations_for_date(user_id, yesterday, analysis_depth="7day"):
        log.info("Observations for %s already generated (user %d)", yesterday, user_id)
        return load_active_observations(user_id, RECENT_RESULT_COUNT)

    log.info("Starting observation pipeline for user %d through %s", user_id, yesterday)
    results = {"7day": 0, "30day": 0, "full": 0,
               "weekly_superseded": 0, "quarterly_superseded": 0, "pruned": 0}

    base = AnalysisData(
        today=yesterday,
        habit_stats=habit_stats,
        existing_observations=load_active_observations(user_id, OBSERVATION_CONTEXT_LIMIT),
        dismissed_observations=load_recent_dismissed_observations(user_id, DISMISSED_CONTEXT_LIMIT),
        completed_tasks=completed_tasks,
    )

    try:
        payloads = generate_observations("7day", _tier_data(user_id, "7day", base), client)
        results["7day"] = len(insert_observations(user_id, payloads))
    except Exception as e:
        log.error("7day observation generation failed: %s", e)

    for depth in ("30day", "full"):
        try:
            if not should_run_analysis(depth, get_last_analysis_date(user_id, depth), yesterday):
                continue
            payloads = generate_observations(depth, _tier_data(user_id, depth, base), client)
            results[depth] = len(insert_observations(user_id, payloads))
        except Exception as e:
            log.error("%s observation generation failed: %s", depth, e)

    try:
        results["weekly_superseded"] = consolidate_weekly(
            user_id, yesterday, load_active_observations(user_id), client)
    except Exception as e:
        log.error("Weekly consolidation failed: %s", e)

    try:
        results["quarterly_superseded"] = consolidate_quarterly(
            user_id, yesterday, load_active_observations(user_id), client)
    except Exception as e:
        log.error("Quarterly consolidation failed: %s", e)

    try:
        results["pruned"] = prune_observations(user_id, MAX_ACTIVE_OBSERVATIONS)
    except Exception as e:
        log.error("Observation pruning failed: %s", e)

    log.info("Observation pipeline complete: %s", results)
    return load_active_observations(user_id, RECENT_RESULT_COUNT)
