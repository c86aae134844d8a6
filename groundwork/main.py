"""Groundwork — main entry point.

Starts all subsystems:
1. Database initialization
2. Morning briefing scheduler (drives the observation pipeline)

Run with: python -m groundwork.main
"""

import asyncio
import logging
from datetime import datetime, timezone, timedelta

from groundwork.config import (
    BRIEFING_HOUR,
    BRIEFING_TONE,
    TIMEZONE_OFFSET_HOURS,
    OWNER_USER_ID,
)
from groundwork.db import init_db, get_usage_summary
from groundwork.briefing import run_morning_briefing
from groundwork.prompt_loader import missing_prompts

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s — %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("groundwork")

TZ = timezone(timedelta(hours=TIMEZONE_OFFSET_HOURS))


def usage_report() -> str:
    """One-line LLM token usage summary for the log."""
    s = get_usage_summary()
    t, m = s["today"], s["month"]
    line = (f"LLM usage: today {t['total']:,} tokens ({t['calls']} calls), "
            f"month {m['total']:,} tokens ({m['calls']} calls)")
    if s["by_purpose"]:
        top = sorted(s["by_purpose"].items(), key=lambda x: -x[1])
        line += " | " + ", ".join(f"{purpose}={total:,}" for purpose, total in top)
    return line


def seconds_until(hour: int, now: datetime) -> float:
    """Seconds from now until the next occurrence of hour:00."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now >= target:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def briefing_scheduler(user_id: int):
    """Build the morning briefing at the configured hour daily."""
    while True:
        wait_seconds = seconds_until(BRIEFING_HOUR, datetime.now(TZ))
        log.info("Next briefing in %.0f minutes", wait_seconds / 60)
        await asyncio.sleep(wait_seconds)

        today = datetime.now(TZ).strftime("%Y-%m-%d")
        log.info("Running scheduled briefing for %s...", today)
        try:
            briefing = run_morning_briefing(user_id, today, tone=BRIEFING_TONE)
            log.info("Briefing ready: %s", briefing["headline"])
            log.info(usage_report())
        except Exception as e:
            log.error("Briefing failed: %s", e, exc_info=True)


async def main():
    """Boot sequence."""
    log.info("=" * 50)
    log.info("Groundwork starting up...")
    log.info("=" * 50)

    init_db()
    log.info("Database ready")
    log.info(usage_report())

    missing = missing_prompts()
    if missing:
        log.warning("Prompt files missing: %s", ", ".join(missing))

    try:
        await briefing_scheduler(OWNER_USER_ID)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        log.info("Shutting down...")


if __name__ == "__main__":
    asyncio.run(main())
