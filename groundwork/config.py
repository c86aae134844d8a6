"""Configuration — loads environment variables with sensible defaults.

All tunables live here. Override via .env file or environment variables.
No hardcoded thresholds/timings elsewhere in the codebase.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)

def _env_int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


# ═══════════════════════════════════════════════════════════════════════════
# LLM — Chat Model (required)
# ═══════════════════════════════════════════════════════════════════════════
# CHAT_PROVIDER tells the framework which SDK to use:
#   "openai"       — OpenAI SDK (also works with DeepSeek, Ollama, Groq, etc.)
#   "azure_openai" — Azure OpenAI SDK
#   "anthropic"    — Anthropic SDK

CHAT_PROVIDER = _env("CHAT_PROVIDER", "anthropic")
CHAT_API_KEY = _env("CHAT_API_KEY")
CHAT_MODEL = _env("CHAT_MODEL")          # required, no default
CHAT_BASE_URL = _env("CHAT_BASE_URL")    # optional custom endpoint

# ═══════════════════════════════════════════════════════════════════════════
# LLM — Think Model (optional, falls back to Chat)
# ═══════════════════════════════════════════════════════════════════════════
# The observation pipeline runs on the think model.
# Leave empty to reuse the Chat model for everything.

THINK_PROVIDER = _env("THINK_PROVIDER")  # defaults to CHAT_PROVIDER
THINK_API_KEY = _env("THINK_API_KEY")    # defaults to CHAT_API_KEY
THINK_MODEL = _env("THINK_MODEL")        # defaults to CHAT_MODEL
THINK_BASE_URL = _env("THINK_BASE_URL")  # defaults to CHAT_BASE_URL

AZURE_API_VERSION = _env("AZURE_API_VERSION", "2024-12-01-preview")

# ═══════════════════════════════════════════════════════════════════════════
# Owner
# ═══════════════════════════════════════════════════════════════════════════

OWNER_USER_ID = _env_int("OWNER_USER_ID", 0)

# ═══════════════════════════════════════════════════════════════════════════
# Morning briefing
# ═══════════════════════════════════════════════════════════════════════════

BRIEFING_HOUR = _env_int("BRIEFING_HOUR", 6)
BRIEFING_TONE = _env("BRIEFING_TONE", "standard")   # "standard" | "gentle"
BRIEFING_TOP_HABITS = _env_int("BRIEFING_TOP_HABITS", 5)

# ═══════════════════════════════════════════════════════════════════════════
# Observations
# ═══════════════════════════════════════════════════════════════════════════

MAX_ACTIVE_OBSERVATIONS = _env_int("MAX_ACTIVE_OBSERVATIONS", 200)
OBSERVATION_CONTEXT_LIMIT = _env_int("OBSERVATION_CONTEXT_LIMIT", 50)
DISMISSED_CONTEXT_LIMIT = _env_int("DISMISSED_CONTEXT_LIMIT", 30)
CONSOLIDATE_DAILY_AFTER_DAYS = _env_int("CONSOLIDATE_DAILY_AFTER_DAYS", 7)
CONSOLIDATE_WEEKLY_AFTER_DAYS = _env_int("CONSOLIDATE_WEEKLY_AFTER_DAYS", 28)

# ═══════════════════════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════════════════════

DB_PATH = Path(_env("GROUNDWORK_DB_PATH") or _PROJECT_ROOT / "data" / "groundwork.db")

# ═══════════════════════════════════════════════════════════════════════════
# Timezone (default UTC, override for your locale in .env)
# ═══════════════════════════════════════════════════════════════════════════

TIMEZONE_OFFSET_HOURS = _env_int("TIMEZONE_OFFSET_HOURS", 0)
