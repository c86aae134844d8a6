"""Morning briefing — the daily entry point that drives observation analysis.

One briefing per user per day, cached in daily_briefings. Building it:
  1. compute habit stats from the store
  2. run the observation pipeline (failures never block the briefing)
  3. ask the chat model for a headline, values focus, reasons and insight cards
"""

import json
import logging
import re
from datetime import date, timedelta

from groundwork.config import BRIEFING_TOP_HABITS
from groundwork.dates import last_n_day_keys
from groundwork.habit_stats import HabitStatResult, compute_habit_stats, summarize_for_analysis
from groundwork.identity import IdentityMetrics, WeeklyReflection
from groundwork.llm import LLMProvider, get_client
from groundwork.observation_engine import run_observation_pipeline
from groundwork.observations import Observation
from groundwork.prompt_loader import get_full_prompt
from groundwork.db import (
    load_active_habits, load_sessions_by_habit,
    load_identity_metrics, load_recent_weekly_reflections,
    load_briefing, save_briefing, log_usage,
)

log = logging.getLogger(__name__)

BRIEFING_MAX_TOKENS = 1024
MAX_WHY_BULLETS = 5
MAX_INSIGHTS = 4
MAX_INSIGHT_REASONS = 3

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


class BriefingParseError(ValueError):
    """Chat model output was not a usable briefing object."""


# ═══════════════════════════════════════════════════════════════════════════
# Context
# ═══════════════════════════════════════════════════════════════════════════

def _format_habit(r: HabitStatResult) -> str:
    unit = "day" if r.is_daily else "week"
    return (
        f"- {r.habit.title}: {r.active_streak}-{unit} streak, "
        f"{r.adherence_percent}% adherence, {r.sum_last7:g} in last 7 days"
    )


def build_briefing_context(today: str, tasks: list[dict], events: list[dict],
                           completed_tasks: list[str], habits: list[HabitStatResult],
                           identity: IdentityMetrics | None,
                           reflection: WeeklyReflection | None,
                           observations: list[Observation]) -> str:
    """Render the chat model's user message.

    tasks: [{"title", "priority"?, "due"?}], events: [{"time", "title"}].
    """
    sections = [f"Today: {today}"]

    score = identity.score if identity else 0
    sections.append(
        f"Identity score (yesterday, 5 daily checks): {score}/5 — use this for context; "
        "the user has not yet completed today's checks."
    )

    if tasks:
        lines = "\n".join(
            f"- [P{t.get('priority', 4)}] {t['title']}" + (f" (due {t['due']})" if t.get("due") else "")
            for t in tasks
        )
        sections.append(f"Tasks due today ({len(tasks)}):\n{lines}")
    else:
        sections.append("Tasks due today: none")

    if completed_tasks:
        lines = "\n".join(f"- {t}" for t in completed_tasks)
        sections.append(f"Already completed today ({len(completed_tasks)}):\n{lines}")

    if events:
        lines = "\n".join(f"- {e.get('time', '')}: {e['title']}" for e in events)
        sections.append(f"Calendar events today ({len(events)}):\n{lines}")
    else:
        sections.append("Calendar events today: none")

    if habits:
        sections.append("Top habit streaks:\n" + "\n".join(_format_habit(h) for h in habits))

    if reflection:
        if reflection.capability_growth is None:
            growth = "not answered"
        else:
            growth = "yes" if reflection.capability_growth else "no"
        sections.append(
            f"Latest weekly reflection (week of {reflection.week_start_date}):\n"
            f"What went well: {reflection.what_went_well or '(empty)'}\n"
            f"What mattered: {reflection.what_mattered or '(empty)'}\n"
            f"Learnings: {reflection.learnings or '(empty)'}\n"
            f"More capable than 7 days ago: {growth}"
        )

    if observations:
        lines = "\n".join(f"- [{o.category}] {o.observation}" for o in observations)
        sections.append(f"Recent pattern observations:\n{lines}")

    return "\n\n".join(sections)


# ═══════════════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════════════

def parse_briefing_response(text: str) -> dict:
    """Parse and validate the chat model's JSON. Raises BriefingParseError."""
    text = text or ""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        fence = _FENCE_RE.search(text)
        if not fence:
            raise BriefingParseError("could not parse briefing response as JSON")
        try:
            parsed = json.loads(fence.group(1))
        except json.JSONDecodeError as e:
            raise BriefingParseError(f"could not parse fenced briefing JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise BriefingParseError("briefing response is not an object")
    return validate_briefing(parsed)


def validate_briefing(obj: dict) -> dict:
    """Keep only well-typed fields, capped to what the dashboard shows."""
    headline = obj.get("headline")
    values_focus = obj.get("valuesFocus")
    bullets = obj.get("whyBullets")
    raw_insights = obj.get("insights")

    insights = []
    if isinstance(raw_insights, list):
        valid = [
            i for i in raw_insights
            if isinstance(i, dict)
            and isinstance(i.get("title"), str)
            and isinstance(i.get("body"), str)
            and isinstance(i.get("why"), list)
        ]
        for idx, i in enumerate(valid[:MAX_INSIGHTS]):
            insights.append({
                "id": f"ai-insight-{idx}",
                "title": i["title"],
                "body": i["body"],
                "why": [w for w in i["why"] if isinstance(w, str)][:MAX_INSIGHT_REASONS],
            })

    return {
        "headline": headline if isinstance(headline, str) else "",
        "valuesFocus": values_focus if isinstance(values_focus, str) else "",
        "whyBullets": [b for b in bullets if isinstance(b, str)][:MAX_WHY_BULLETS]
        if isinstance(bullets, list) else [],
        "insights": insights,
    }


# ═══════════════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════════════

def _observation_view(o: Observation) -> dict:
    return {
        "id": o.id,
        "category": o.category,
        "observation": o.observation,
        "confidence": o.confidence,
        "date_ref": o.date_ref,
    }


def run_morning_briefing(user_id: int, today: str, tasks: list[dict] | None = None,
                         events: list[dict] | None = None,
                         completed_tasks: list[str] | None = None,
                         tone: str = "standard", refresh: bool = False,
                         client: LLMProvider | None = None,
                         think_client: LLMProvider | None = None) -> dict:
    """Return today's briefing, generating and caching it if needed.

    client is the chat model, think_client the observation analyst; both
    default to the configured providers.
    """
    if not refresh:
        cached = load_briefing(user_id, today)
        if cached is not None:
            return cached

    today_date = date.fromisoformat(today)
    yesterday = (today_date - timedelta(days=1)).isoformat()

    results = compute_habit_stats(
        load_active_habits(user_id), load_sessions_by_habit(user_id),
        last_n_day_keys(today_date), today_date,
    )

    try:
        observations = run_observation_pipeline(
            user_id, today, summarize_for_analysis(results), completed_tasks, client=think_client,
        )
    except Exception as e:
        log.error("Observation pipeline failed: %s", e)
        observations = []

    top_habits = sorted(results, key=lambda r: r.active_streak, reverse=True)[:BRIEFING_TOP_HABITS]
    reflections = load_recent_weekly_reflections(user_id, 1)
    context = build_briefing_context(
        today, tasks or [], events or [], completed_tasks or [], top_habits,
        load_identity_metrics(user_id, yesterday),
        reflections[0] if reflections else None,
        observations,
    )

    addenda = ("briefing_gentle",) if tone == "gentle" else ()
    system = get_full_prompt("briefing", "Chat", addenda=addenda)

    client = client or get_client(purpose="chat")
    response = client.complete(system, context, max_tokens=BRIEFING_MAX_TOKENS, temperature=0.7)
    log_usage(
        response.prompt_tokens, response.completion_tokens,
        response.total_tokens, model=response.model, purpose="briefing",
    )

    briefing = parse_briefing_response(response.content)
    briefing["observations"] = [_observation_view(o) for o in observations]
    save_briefing(user_id, today, briefing)
    log.info("Briefing generated for user %d on %s (%d insights)",
             user_id, today, len(briefing["insights"]))
    return briefing
