"""Client for self-hosted vLLM or TGI compatible inference endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable

import httpx

from bridge.errors import GenerationError
from config.settings import Settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


def parse_sse_delta(line: str) -> str | None:
    """Extract the text delta from one server-sent-event line.

    Returns None for keep-alives, comments, the terminator and chunks without
    content.
    """

    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    data = line[len(SSE_DATA_PREFIX):].strip()
    if not data or data == SSE_DONE:
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise GenerationError(f"Invalid stream chunk from LLM: {data[:80]!r}") from exc

    choices = payload.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None


class VLLMClient(BaseLLMClient):
    """Minimal streaming client for a self-hosted inference server."""

    def __init__(self, settings: Settings, *, http_client: httpx.AsyncClient | None = None) -> None:
        if not settings.llm_endpoint:
            raise ValueError("Self-hosted LLM endpoint must be configured.")

        self._endpoint = settings.llm_endpoint.rstrip("/")
        self._model = settings.llm_model
        self._api_key = settings.llm_api_key
        self._max_tokens = settings.llm_max_tokens
        self._temperature = settings.llm_temperature
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(90.0, connect=10.0))

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def stream_chat(
        self,
        messages: Iterable[dict[str, str]],
    ) -> AsyncIterator[str]:
        payload = {
            "model": self._model,
            "messages": list(messages),
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stream": True,
        }

        try:
            async with self._client.stream(
                "POST",
                f"{self._endpoint}/v1/chat/completions",
                json=payload,
                headers=self._headers(),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise GenerationError(
                        f"LLM endpoint returned HTTP {response.status_code}: {response.text[:200]}"
                    )
                async for line in response.aiter_lines():
                    chunk = parse_sse_delta(line)
                    if chunk:
                        yield chunk
        except httpx.HTTPError as exc:
            LOGGER.warning("Self-hosted LLM stream failed: %s", exc)
            raise GenerationError(str(exc)) from exc

    async def aclose(self) -> None:
        await self._client.aclose()
