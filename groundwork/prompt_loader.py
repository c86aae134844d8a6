"""Prompt loader — hot-reload prompt templates from prompts/ directory.

personality.md holds ## sections (only Chat today) that get prepended to
voice prompts. Analyst prompts that must answer in bare JSON skip it.
Optional addenda (e.g. briefing_gentle) are appended after the task
prompt. Edit prompt files directly — changes take effect immediately.
"""

import logging
import re
from pathlib import Path

log = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_cache: dict[str, str] = {}

# Prompts that must return bare JSON, never prepend personality
_NO_PERSONALITY = {"observation_system", "personality"}

# Prompts the pipeline and briefing cannot run without
REQUIRED_PROMPTS = ("observation_system", "briefing", "briefing_gentle", "personality")


def _extract_section(text: str, heading: str) -> str:
    """Extract content under a specific ## heading from markdown.

    Returns everything between '## <heading>' and the next '## ' or EOF.
    """
    pattern = rf"^## {re.escape(heading)}\s*\n(.*?)(?=^## |\Z)"
    match = re.search(pattern, text, re.MULTILINE | re.DOTALL)
    return match.group(1).strip() if match else ""


def get_prompt(name: str) -> str:
    """Load a prompt template by name (without .md extension).

    Always reads from disk (hot-reload). Falls back to the last good read
    if the file has since disappeared.
    """
    path = _PROMPTS_DIR / f"{name}.md"
    if path.exists():
        content = path.read_text(encoding="utf-8").strip()
        _cache[name] = content
        return content

    if name in _cache:
        log.warning("Prompt file missing, using cache: %s", name)
        return _cache[name]

    log.error("Prompt not found: %s", name)
    return ""


def get_personality(section: str = "Chat") -> str:
    """One ## section of personality.md, or '' if absent."""
    full = get_prompt("personality")
    return _extract_section(full, section) if full else ""


def get_full_prompt(name: str, section: str = "Chat", addenda: tuple[str, ...] = ()) -> str:
    """personality.md[section] + '---' + task prompt + addenda.

    Functional prompts (observation_system) skip personality. Missing
    addenda are skipped with the error get_prompt already logs.
    """
    parts = [get_prompt(name)]
    parts.extend(text for text in (get_prompt(a) for a in addenda) if text)
    body = "\n\n".join(p for p in parts if p)

    if name in _NO_PERSONALITY:
        return body

    personality = get_personality(section)
    if not personality:
        return body
    return f"{personality}\n\n---\n\n{body}"


def list_prompts() -> list[str]:
    """List available prompt template names."""
    if not _PROMPTS_DIR.exists():
        return []
    return sorted(f.stem for f in _PROMPTS_DIR.glob("*.md"))


def missing_prompts() -> list[str]:
    """Required prompt names with no file on disk."""
    available = set(list_prompts())
    return [name for name in REQUIRED_PROMPTS if name not in available]
