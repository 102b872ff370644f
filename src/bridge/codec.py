"""Wire encoding for transcript events and response fragments."""

from __future__ import annotations

from pydantic import ValidationError

from bridge.errors import InvalidMessageError
from bridge.schemas import ResponseFragment, TranscriptEvent


def parse_transcript_event(text: str | bytes) -> TranscriptEvent:
    """Decode an inbound WebSocket message.

    Raises InvalidMessageError for anything that is not a transcript event with
    a known interaction type, including malformed JSON.
    """

    try:
        return TranscriptEvent.model_validate_json(text)
    except ValidationError as exc:
        raise InvalidMessageError(f"Malformed transcript message: {exc.error_count()} error(s)") from exc


def encode_fragment(fragment: ResponseFragment) -> str:
    return fragment.model_dump_json()
