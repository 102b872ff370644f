"""Call registration against the Retell API."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, ValidationError

from bridge.errors import CallRegistrationError
from config.settings import Settings

LOGGER = logging.getLogger(__name__)


class RegisterCallRequest(BaseModel):
    agent_id: str
    audio_encoding: str
    audio_websocket_protocol: str
    sample_rate: int


class RegisteredCall(BaseModel):
    call_id: str
    agent_id: str | None = None
    audio_encoding: str | None = None
    audio_websocket_protocol: str | None = None
    sample_rate: int | None = None
    call_status: str | None = None
    start_timestamp: int | None = None


class RetellClient:
    """Registers inbound calls so Retell opens the LLM WebSocket for them."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.retell_api_key:
            LOGGER.error("RETELL_API_KEY is not configured; inbound calls cannot be registered.")
            raise CallRegistrationError()
        self._base_url = settings.retell_base_url.rstrip("/")
        self._api_key = settings.retell_api_key
        self._timeout = settings.retell_request_timeout_seconds
        self._transport = transport
        self._audio_encoding = settings.retell_audio_encoding
        self._sample_rate = settings.retell_sample_rate
        self._audio_websocket_protocol = settings.retell_audio_websocket_protocol

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def register_call(self, agent_id: str) -> RegisteredCall:
        request = RegisterCallRequest(
            agent_id=agent_id,
            audio_encoding=self._audio_encoding,
            audio_websocket_protocol=self._audio_websocket_protocol,
            sample_rate=self._sample_rate,
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/register-call",
                    json=request.model_dump(),
                    headers=self._headers(),
                )
            response.raise_for_status()
            call = RegisteredCall.model_validate(response.json())
        except httpx.HTTPError as exc:
            LOGGER.error("Retell call registration failed for agent %s: %s", agent_id, exc)
            raise CallRegistrationError() from exc
        except (ValueError, ValidationError) as exc:
            LOGGER.error("Retell returned an unusable registration for agent %s: %s", agent_id, exc)
            raise CallRegistrationError() from exc

        LOGGER.info("Registered call %s for agent %s", call.call_id, agent_id)
        return call
