"""Shared abstractions for streaming language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable


class BaseLLMClient(ABC):
    """Abstract base class for LLM providers.

    Implementations translate transport and API failures into
    ``bridge.errors.GenerationError`` and release the underlying response when
    the iterator is closed.
    """

    @abstractmethod
    def stream_chat(
        self,
        messages: Iterable[dict[str, str]],
    ) -> AsyncIterator[str]:
        """Yield text deltas of a chat-style completion."""

    async def aclose(self) -> None:
        """Release pooled connections held by the client."""
