"""Pydantic schemas for the Retell custom LLM WebSocket protocol."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

InteractionType = Literal["update_only", "response_required", "reminder_required"]

AGENT_ROLE = "agent"


class Turn(BaseModel):
    """One utterance of the call, attributed to the agent or the caller."""

    model_config = ConfigDict(frozen=True)

    role: str
    content: str = ""

    @property
    def is_agent(self) -> bool:
        return self.role == AGENT_ROLE


class TranscriptEvent(BaseModel):
    """Inbound snapshot of the conversation sent by the voice provider."""

    model_config = ConfigDict(frozen=True)

    response_id: int
    transcript: tuple[Turn, ...] = Field(default_factory=tuple)
    interaction_type: InteractionType

    @property
    def requires_response(self) -> bool:
        return self.interaction_type != "update_only"


class ResponseFragment(BaseModel):
    """Outbound piece of an agent utterance."""

    response_id: int
    content: str
    content_complete: bool = False
    end_call: bool = False
