"""SQLite database layer — habits, check-ins, reflections, observations, briefings.

Lightweight schema. Tables are created automatically on first run.
"""

import json
import sqlite3
import logging
from datetime import date, datetime, timezone, timedelta

from groundwork.config import DB_PATH, TIMEZONE_OFFSET_HOURS
from groundwork.habit_stats import Habit, HabitSession
from groundwork.identity import IdentityMetrics, WeeklyReflection, PRACTICES
from groundwork.observations import (
    Observation, ObservationPayload, EntityRef, DISMISS_REASONS,
)

logger = logging.getLogger(__name__)

TZ = timezone(timedelta(hours=TIMEZONE_OFFSET_HOURS))

_ACTIVE = "dismissed = 0 AND superseded_by IS NULL"


def _connect() -> sqlite3.Connection:
    """Return a connection with row_factory set."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(DB_PATH))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def _now() -> str:
    return datetime.now(TZ).isoformat()


def init_db() -> None:
    """Create tables if they don't exist."""
    conn = _connect()
    conn.executescript("""
        -- Habits (soft-deleted via archived_at)
        CREATE TABLE IF NOT EXISTS habits (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id         INTEGER NOT NULL,
            title           TEXT    NOT NULL,
            type            TEXT    NOT NULL DEFAULT '',
            kind            TEXT    NOT NULL DEFAULT 'check',
            count           INTEGER NOT NULL DEFAULT 1,
            period          TEXT    NOT NULL DEFAULT 'day',
            target_duration INTEGER NOT NULL DEFAULT 0,
            created_at      TEXT    NOT NULL,
            archived_at     TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_habits_user
            ON habits(user_id, archived_at);

        -- One row per logged occurrence of a habit
        CREATE TABLE IF NOT EXISTS habit_sessions (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id     INTEGER NOT NULL,
            habit_id    INTEGER NOT NULL REFERENCES habits(id),
            amount      REAL,
            duration    INTEGER,
            note        TEXT,
            created_at  TEXT    NOT NULL,
            finished_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_habit_sessions_habit
            ON habit_sessions(user_id, habit_id, created_at);

        -- Daily identity check-in (five practices)
        CREATE TABLE IF NOT EXISTS identity_metrics (
            user_id               INTEGER NOT NULL,
            date                  TEXT    NOT NULL,
            morning_grounding     INTEGER NOT NULL DEFAULT 0,
            embodied_movement     INTEGER NOT NULL DEFAULT 0,
            nutritional_awareness INTEGER NOT NULL DEFAULT 0,
            present_connection    INTEGER NOT NULL DEFAULT 0,
            curiosity_spark       INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (user_id, date)
        );

        -- Weekly reflections
        CREATE TABLE IF NOT EXISTS weekly_reflections (
            user_id           INTEGER NOT NULL,
            week_start_date   TEXT    NOT NULL,
            what_went_well    TEXT    NOT NULL DEFAULT '',
            what_mattered     TEXT    NOT NULL DEFAULT '',
            learnings         TEXT    NOT NULL DEFAULT '',
            capability_growth INTEGER,
            updated_at        TEXT    NOT NULL,
            PRIMARY KEY (user_id, week_start_date)
        );

        -- AI observations (superseded rows are kept, pruning deletes)
        CREATE TABLE IF NOT EXISTS observations (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id        INTEGER NOT NULL,
            scope          TEXT    NOT NULL,
            analysis_depth TEXT    NOT NULL,
            category       TEXT    NOT NULL,
            observation    TEXT    NOT NULL,
            date_ref       TEXT    NOT NULL,
            entity_refs    TEXT    NOT NULL DEFAULT '[]',
            confidence     INTEGER NOT NULL DEFAULT 3,
            dismissed      INTEGER NOT NULL DEFAULT 0,
            dismiss_reason TEXT,
            dismiss_note   TEXT,
            dismissed_at   TEXT,
            superseded_by  INTEGER,
            created_at     TEXT    NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_observations_user
            ON observations(user_id, dismissed, superseded_by, date_ref);
        CREATE INDEX IF NOT EXISTS idx_observations_depth
            ON observations(user_id, analysis_depth, date_ref);

        -- Cached morning briefings
        CREATE TABLE IF NOT EXISTS daily_briefings (
            user_id    INTEGER NOT NULL,
            date       TEXT    NOT NULL,
            content    TEXT    NOT NULL,
            created_at TEXT    NOT NULL,
            PRIMARY KEY (user_id, date)
        );

        -- LLM usage tracking
        CREATE TABLE IF NOT EXISTS usage_log (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            prompt_tokens     INTEGER NOT NULL DEFAULT 0,
            completion_tokens INTEGER NOT NULL DEFAULT 0,
            total_tokens      INTEGER NOT NULL DEFAULT 0,
            model             TEXT    NOT NULL DEFAULT '',
            purpose           TEXT    NOT NULL DEFAULT 'chat',
            created_at        TEXT    NOT NULL
        );
    """)
    conn.close()
    logger.info("Database initialized at %s", DB_PATH)


# ═══════════════════════════════════════════════════════════════════════════
# Habits
# ═══════════════════════════════════════════════════════════════════════════

def _row_to_habit(row: sqlite3.Row) -> Habit:
    return Habit(
        id=row["id"],
        title=row["title"],
        kind=row["kind"],
        count=row["count"],
        period=row["period"],
        type=row["type"],
        target_duration=row["target_duration"],
        created_at=row["created_at"],
        archived_at=row["archived_at"],
    )


def create_habit(user_id: int, title: str, kind: str = "check", count: int = 1,
                 period: str = "day", type: str = "", target_duration: int = 0,
                 created_at: str | None = None) -> int:
    """Create a new habit. Returns habit id."""
    conn = _connect()
    cur = conn.execute(
        """INSERT INTO habits (user_id, title, type, kind, count, period, target_duration, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (user_id, title, type, kind, count, period, target_duration, created_at or _now()),
    )
    conn.commit()
    hid = cur.lastrowid
    conn.close()
    return hid


def archive_habit(user_id: int, habit_id: int) -> bool:
    conn = _connect()
    cur = conn.execute(
        "UPDATE habits SET archived_at = ? WHERE id = ? AND user_id = ? AND archived_at IS NULL",
        (_now(), habit_id, user_id),
    )
    conn.commit()
    changed = cur.rowcount > 0
    conn.close()
    return changed


def load_active_habits(user_id: int) -> list[Habit]:
    conn = _connect()
    rows = conn.execute(
        "SELECT * FROM habits WHERE user_id = ? AND archived_at IS NULL ORDER BY created_at, id",
        (user_id,),
    ).fetchall()
    conn.close()
    return [_row_to_habit(r) for r in rows]


def log_habit_session(user_id: int, habit_id: int, amount: float | None = None,
                      duration: int | None = None, note: str | None = None,
                      created_at: str | None = None, finished_at: str | None = None) -> int:
    """Record one occurrence of a habit. Returns session id."""
    conn = _connect()
    cur = conn.execute(
        """INSERT INTO habit_sessions (user_id, habit_id, amount, duration, note, created_at, finished_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (user_id, habit_id, amount, duration, note, created_at or _now(), finished_at),
    )
    conn.commit()
    sid = cur.lastrowid
    conn.close()
    return sid


def load_sessions_by_habit(user_id: int) -> dict[int, list[HabitSession]]:
    conn = _connect()
    rows = conn.execute(
        "SELECT * FROM habit_sessions WHERE user_id = ? ORDER BY created_at, id",
        (user_id,),
    ).fetchall()
    conn.close()

    grouped: dict[int, list[HabitSession]] = {}
    for r in rows:
        grouped.setdefault(r["habit_id"], []).append(HabitSession(
            id=r["id"],
            habit_id=r["habit_id"],
            created_at=r["created_at"],
            amount=r["amount"],
            duration=r["duration"],
            note=r["note"],
            finished_at=r["finished_at"],
        ))
    return grouped


# ═══════════════════════════════════════════════════════════════════════════
# Identity check-ins & reflections
# ═══════════════════════════════════════════════════════════════════════════

_PRACTICE_FIELDS = [name for name, _ in PRACTICES]


def _row_to_metrics(row: sqlite3.Row) -> IdentityMetrics:
    return IdentityMetrics(
        date=row["date"],
        **{name: bool(row[name]) for name in _PRACTICE_FIELDS},
    )


def save_identity_metrics(user_id: int, metrics: IdentityMetrics) -> None:
    columns = ", ".join(_PRACTICE_FIELDS)
    updates = ", ".join(f"{name} = excluded.{name}" for name in _PRACTICE_FIELDS)
    conn = _connect()
    conn.execute(
        f"""INSERT INTO identity_metrics (user_id, date, {columns}) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, date) DO UPDATE SET {updates}""",
        (user_id, metrics.date, *(int(getattr(metrics, name)) for name in _PRACTICE_FIELDS)),
    )
    conn.commit()
    conn.close()


def load_identity_metrics(user_id: int, day: str) -> IdentityMetrics | None:
    conn = _connect()
    row = conn.execute(
        "SELECT * FROM identity_metrics WHERE user_id = ? AND date = ?",
        (user_id, day),
    ).fetchone()
    conn.close()
    return _row_to_metrics(row) if row else None


def load_identity_metrics_range(user_id: int, days: int, end_date: str) -> list[IdentityMetrics]:
    """Check-ins for the `days` days ending at end_date, oldest first."""
    start = (date.fromisoformat(end_date) - timedelta(days=days - 1)).isoformat()
    conn = _connect()
    rows = conn.execute(
        "SELECT * FROM identity_metrics WHERE user_id = ? AND date >= ? AND date <= ? ORDER BY date",
        (user_id, start, end_date),
    ).fetchall()
    conn.close()
    return [_row_to_metrics(r) for r in rows]


def save_weekly_reflection(user_id: int, reflection: WeeklyReflection) -> None:
    growth = None if reflection.capability_growth is None else int(reflection.capability_growth)
    conn = _connect()
    conn.execute(
        """INSERT INTO weekly_reflections
               (user_id, week_start_date, what_went_well, what_mattered, learnings, capability_growth, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(user_id, week_start_date) DO UPDATE SET
               what_went_well = excluded.what_went_well,
               what_mattered = excluded.what_mattered,
               learnings = excluded.learnings,
               capability_growth = excluded.capability_growth,
               updated_at = excluded.updated_at""",
        (user_id, reflection.week_start_date, reflection.what_went_well,
         reflection.what_mattered, reflection.learnings, growth, _now()),
    )
    conn.commit()
    conn.close()


def load_recent_weekly_reflections(user_id: int, limit: int = 1) -> list[WeeklyReflection]:
    """Most recent reflections first."""
    conn = _connect()
    rows = conn.execute(
        "SELECT * FROM weekly_reflections WHERE user_id = ? ORDER BY week_start_date DESC LIMIT ?",
        (user_id, limit),
    ).fetchall()
    conn.close()
    return [
        WeeklyReflection(
            week_start_date=r["week_start_date"],
            what_went_well=r["what_went_well"],
            what_mattered=r["what_mattered"],
            learnings=r["learnings"],
            capability_growth=None if r["capability_growth"] is None else bool(r["capability_growth"]),
        )
        for r in rows
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Observations
# ═══════════════════════════════════════════════════════════════════════════

def _row_to_observation(row: sqlite3.Row) -> Observation:
    try:
        refs = [EntityRef(**r) for r in json.loads(row["entity_refs"] or "[]")]
    except (json.JSONDecodeError, TypeError):
        logger.warning("Observation %d has unreadable entity_refs", row["id"])
        refs = []
    return Observation(
        id=row["id"],
        scope=row["scope"],
        analysis_depth=row["analysis_depth"],
        category=row["category"],
        observation=row["observation"],
        date_ref=row["date_ref"],
        confidence=row["confidence"],
        entity_refs=refs,
        dismissed=bool(row["dismissed"]),
        dismiss_reason=row["dismiss_reason"],
        dismiss_note=row["dismiss_note"],
        superseded_by=row["superseded_by"],
        created_at=row["created_at"],
    )


def load_active_observations(user_id: int, limit: int | None = None) -> list[Observation]:
    """Non-dismissed, non-superseded observations, newest first."""
    sql = f"SELECT * FROM observations WHERE user_id = ? AND {_ACTIVE} ORDER BY date_ref DESC, id DESC"
    params: list = [user_id]
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    conn = _connect()
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return [_row_to_observation(r) for r in rows]


def load_observations_for_date(user_id: int, date_ref: str,
                               analysis_depth: str | None = None) -> list[Observation]:
    sql = "SELECT * FROM observations WHERE user_id = ? AND date_ref = ?"
    params: list = [user_id, date_ref]
    if analysis_depth:
        sql += " AND analysis_depth = ?"
        params.append(analysis_depth)
    sql += " ORDER BY id"
    conn = _connect()
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return [_row_to_observation(r) for r in rows]


def load_recent_dismissed_observations(user_id: int, limit: int = 30) -> list[Observation]:
    conn = _connect()
    rows = conn.execute(
        """SELECT * FROM observations WHERE user_id = ? AND dismissed = 1
           ORDER BY COALESCE(dismissed_at, created_at) DESC, id DESC LIMIT ?""",
        (user_id, limit),
    ).fetchall()
    conn.close()
    return [_row_to_observation(r) for r in rows]


def get_observation(user_id: int, observation_id: int) -> Observation | None:
    conn = _connect()
    row = conn.execute(
        "SELECT * FROM observations WHERE user_id = ? AND id = ?",
        (user_id, observation_id),
    ).fetchone()
    conn.close()
    return _row_to_observation(row) if row else None


def insert_observations(user_id: int, payloads: list[ObservationPayload]) -> list[int]:
    """Insert a batch. Returns the new ids in payload order."""
    if not payloads:
        return []
    now = _now()
    conn = _connect()
    ids = []
    for p in payloads:
        cur = conn.execute(
            """INSERT INTO observations
                   (user_id, scope, analysis_depth, category, observation, date_ref,
                    entity_refs, confidence, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (user_id, p.scope, p.analysis_depth, p.category, p.observation, p.date_ref,
             json.dumps([{"type": r.type, "id": r.id} for r in p.entity_refs]),
             p.confidence, now),
        )
        ids.append(cur.lastrowid)
    conn.commit()
    conn.close()
    return ids


def supersede_observations(user_id: int, ids: list[int], superseded_by: int) -> int:
    """Point the given observations at their replacement. Rows are kept."""
    ids = [i for i in ids if i != superseded_by]
    if not ids:
        return 0
    placeholders = ",".join("?" * len(ids))
    conn = _connect()
    cur = conn.execute(
        f"UPDATE observations SET superseded_by = ? WHERE user_id = ? AND id IN ({placeholders})",
        (superseded_by, user_id, *ids),
    )
    conn.commit()
    count = cur.rowcount
    conn.close()
    return count


def prune_observations(user_id: int, cap: int) -> int:
    """Delete active observations beyond cap: oldest, then least confident, first."""
    conn = _connect()
    row = conn.execute(
        f"SELECT COUNT(*) AS cnt FROM observations WHERE user_id = ? AND {_ACTIVE}",
        (user_id,),
    ).fetchone()
    excess = row["cnt"] - cap
    if excess <= 0:
        conn.close()
        return 0
    victims = [r["id"] for r in conn.execute(
        f"""SELECT id FROM observations WHERE user_id = ? AND {_ACTIVE}
            ORDER BY date_ref ASC, confidence ASC, id ASC LIMIT ?""",
        (user_id, excess),
    ).fetchall()]
    placeholders = ",".join("?" * len(victims))
    cur = conn.execute(f"DELETE FROM observations WHERE id IN ({placeholders})", victims)
    conn.commit()
    count = cur.rowcount
    conn.close()
    logger.info("Pruned %d observations for user %d (cap %d)", count, user_id, cap)
    return count


def get_last_analysis_date(user_id: int, analysis_depth: str) -> str | None:
    conn = _connect()
    row = conn.execute(
        "SELECT MAX(date_ref) AS last FROM observations WHERE user_id = ? AND analysis_depth = ?",
        (user_id, analysis_depth),
    ).fetchone()
    conn.close()
    return row["last"] if row else None


def dismiss_observation(user_id: int, observation_id: int, reason: str, note: str = "") -> bool:
    """User dismissal. reason must be one of DISMISS_REASONS."""
    if reason not in DISMISS_REASONS:
        raise ValueError(f"Unknown dismiss reason: {reason!r}. Expected one of {DISMISS_REASONS}")
    conn = _connect()
    cur = conn.execute(
        """UPDATE observations SET dismissed = 1, dismiss_reason = ?, dismiss_note = ?, dismissed_at = ?
           WHERE user_id = ? AND id = ?""",
        (reason, note or None, _now(), user_id, observation_id),
    )
    conn.commit()
    changed = cur.rowcount > 0
    conn.close()
    return changed


def restore_observation(user_id: int, observation_id: int) -> bool:
    conn = _connect()
    cur = conn.execute(
        """UPDATE observations SET dismissed = 0, dismiss_reason = NULL, dismiss_note = NULL, dismissed_at = NULL
           WHERE user_id = ? AND id = ?""",
        (user_id, observation_id),
    )
    conn.commit()
    changed = cur.rowcount > 0
    conn.close()
    return changed


# ═══════════════════════════════════════════════════════════════════════════
# Briefing cache
# ═══════════════════════════════════════════════════════════════════════════

def save_briefing(user_id: int, day: str, briefing: dict) -> None:
    conn = _connect()
    conn.execute(
        """INSERT INTO daily_briefings (user_id, date, content, created_at) VALUES (?, ?, ?, ?)
           ON CONFLICT(user_id, date) DO UPDATE SET content = excluded.content, created_at = excluded.created_at""",
        (user_id, day, json.dumps(briefing, ensure_ascii=False), _now()),
    )
    conn.commit()
    conn.close()


def load_briefing(user_id: int, day: str) -> dict | None:
    conn = _connect()
    row = conn.execute(
        "SELECT content FROM daily_briefings WHERE user_id = ? AND date = ?",
        (user_id, day),
    ).fetchone()
    conn.close()
    return json.loads(row["content"]) if row else None


def delete_briefing(user_id: int, day: str) -> None:
    conn = _connect()
    conn.execute("DELETE FROM daily_briefings WHERE user_id = ? AND date = ?", (user_id, day))
    conn.commit()
    conn.close()


# ═══════════════════════════════════════════════════════════════════════════
# Usage Logging
# ═══════════════════════════════════════════════════════════════════════════

def log_usage(prompt_tokens: int, completion_tokens: int, total_tokens: int,
              model: str = "", purpose: str = "chat") -> None:
    conn = _connect()
    conn.execute(
        """INSERT INTO usage_log (prompt_tokens, completion_tokens, total_tokens,
           model, purpose, created_at) VALUES (?, ?, ?, ?, ?, ?)""",
        (prompt_tokens, completion_tokens, total_tokens, model, purpose, _now()),
    )
    conn.commit()
    conn.close()


def get_usage_summary() -> dict:
    """Token totals for today and this month, plus this month by purpose.

    Returns:
        {
            "today": {"total": int, "calls": int},
            "month": {"total": int, "calls": int},
            "by_purpose": {"observations_7day": int, "briefing": int, ...},
        }
    """
    now = datetime.now(TZ)
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0).isoformat()

    conn = _connect()

    def _totals(since: str) -> dict:
        row = conn.execute(
            """SELECT COALESCE(SUM(total_tokens), 0) as t, COUNT(*) as n
               FROM usage_log WHERE created_at >= ?""",
            (since,),
        ).fetchone()
        return {"total": row["t"], "calls": row["n"]}

    today = _totals(today_start)
    month = _totals(month_start)

    by_purpose = {}
    for r in conn.execute(
        """SELECT purpose, COALESCE(SUM(total_tokens), 0) as t
           FROM usage_log WHERE created_at >= ? GROUP BY purpose""",
        (month_start,),
    ).fetchall():
        by_purpose[r["purpose"] or "other"] = r["t"]

    conn.close()
    return {"today": today, "month": month, "by_purpose": by_purpose}
