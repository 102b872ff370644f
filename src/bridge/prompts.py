"""Mapping of call transcripts onto chat completion messages."""

from __future__ import annotations

from collections.abc import Sequence

from bridge.schemas import Turn
from config.settings import Settings
from prompts.loader import resolve_system_prompt


def role_for_turn(turn: Turn) -> str:
    if turn.is_agent:
        return "assistant"
    return "user"


def build_llm_messages(
    system_prompt: str,
    history: Sequence[Turn],
    *,
    max_turns: int | None = None,
) -> list[dict[str, str]]:
    """Return the system directive followed by the (windowed) transcript.

    When ``max_turns`` is given only the most recent turns are kept.
    """

    turns = list(history)
    if max_turns is not None and len(turns) > max_turns:
        turns = turns[-max_turns:]

    messages: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for turn in turns:
        messages.append({"role": role_for_turn(turn), "content": turn.content})
    return messages


class PromptBuilder:
    """Binds the configured system directive and history window."""

    def __init__(self, settings: Settings) -> None:
        self._system_prompt = resolve_system_prompt(settings)
        self._max_turns = settings.history_max_turns

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def build(self, history: Sequence[Turn]) -> list[dict[str, str]]:
        return build_llm_messages(self._system_prompt, history, max_turns=self._max_turns)
