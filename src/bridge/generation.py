"""Cancellable completion streams."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field

from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class GenerationHandle:
    """Live handle to the completion stream answering one transcript event."""

    response_id: int
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()

    def cancel(self) -> None:
        """Signal cancellation without waiting for the stream to wind down."""

        self.cancelled.set()
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait(self) -> None:
        if self.task is not None:
            await asyncio.gather(self.task, return_exceptions=True)


class CompletionStreamAdapter:
    """Uniform streaming front for any configured LLM client.

    Fragments are never delivered once the handle is cancelled, and the
    provider stream is closed exactly once whichever way iteration ends.
    Provider failures arrive as ``GenerationError``.
    """

    def __init__(self, client: BaseLLMClient) -> None:
        self._client = client

    async def start(
        self,
        handle: GenerationHandle,
        messages: Sequence[dict[str, str]],
    ) -> AsyncIterator[str]:
        if handle.is_cancelled:
            return

        async with aclosing(self._client.stream_chat(messages)) as stream:
            async for fragment in stream:
                if handle.is_cancelled:
                    LOGGER.debug("Dropping buffered fragments of cancelled response %s", handle.response_id)
                    return
                if not fragment:
                    continue
                yield fragment
