"""Twilio Voice integration.

Inbound calls hit the webhook, get registered with Retell, and are answered
with TwiML that streams the call audio to Retell's audio WebSocket. Retell in
turn connects back to ``/llm-websocket/{call_id}`` for responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_retell_client
from config.settings import Settings, get_settings
from integrations.retell_client import RetellClient
from integrations.twiml import audio_stream_url, stream_to_retell_twiml

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


@router.post("/webhook/{agent_id}")
async def twilio_webhook(
    agent_id: str,
    retell: RetellClient = Depends(get_retell_client),
    settings: Settings = Depends(get_settings),
) -> Response:
    call = await retell.register_call(agent_id)

    stream_url = audio_stream_url(settings.retell_audio_websocket_url, call.call_id)
    LOGGER.info("Routing Twilio audio for call %s to %s", call.call_id, stream_url)
    return _twiml_response(stream_to_retell_twiml(stream_url=stream_url))
