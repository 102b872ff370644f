"""TwiML documents routing call audio to Retell."""

from __future__ import annotations

from twilio.twiml.voice_response import Start, Stream, VoiceResponse


def audio_stream_url(base_url: str, call_id: str) -> str:
    return f"{base_url.rstrip('/')}/{call_id}"


def stream_to_retell_twiml(*, stream_url: str) -> str:
    """Return TwiML that forks the call audio to ``stream_url``."""

    response = VoiceResponse()
    start = Start()
    start.append(Stream(url=stream_url))
    response.append(start)
    return str(response)
