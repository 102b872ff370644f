from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from config.settings import Settings

PROMPT_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=8)
def load_prompt(filename: str) -> str:
    """Read a prompt text file shipped next to this module."""

    path = PROMPT_DIR / filename
    if not path.is_file():
        raise RuntimeError(f"Prompt file not found: {filename}")
    return path.read_text(encoding="utf-8").strip()


def resolve_system_prompt(settings: Settings) -> str:
    if settings.system_prompt and settings.system_prompt.strip():
        return settings.system_prompt.strip()
    return load_prompt(settings.system_prompt_file)
