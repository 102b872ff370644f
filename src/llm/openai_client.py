"""OpenAI/Azure OpenAI streaming client wrapper."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable

import httpx
from openai import AsyncOpenAI, OpenAIError

from bridge.errors import GenerationError
from config.settings import Settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completion streaming API."""

    def __init__(self, settings: Settings, *, http_client: httpx.AsyncClient | None = None) -> None:
        if not settings.llm_api_key:
            raise ValueError("LLM API key must be configured for OpenAI client.")

        self._client = AsyncOpenAI(
            api_key=settings.llm_api_key,
            base_url=settings.llm_endpoint or None,
            http_client=http_client,
        )
        self._model = settings.llm_model
        self._max_tokens = settings.llm_max_tokens
        self._temperature = settings.llm_temperature

    async def stream_chat(
        self,
        messages: Iterable[dict[str, str]],
    ) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self._model,
                messages=list(messages),
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                stream=True,
            )
        except OpenAIError as exc:
            LOGGER.warning("OpenAI stream could not be opened: %s", exc)
            raise GenerationError(str(exc)) from exc

        try:
            async for event in stream:
                if not event.choices:
                    continue
                chunk = event.choices[0].delta.content
                if chunk:
                    yield chunk
        except OpenAIError as exc:
            LOGGER.warning("OpenAI stream failed: %s", exc)
            raise GenerationError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(str(exc)) from exc
        finally:
            await stream.close()

    async def aclose(self) -> None:
        await self._client.close()
