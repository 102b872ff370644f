"""Per-call turn orchestration.

A CallSession owns one Retell LLM WebSocket. The reader loop (``run``) is the
only place that mutates the transcript history; every answer is streamed by a
subordinate task tracked through a GenerationHandle. A response-requiring
event always cancels the previous handle before the next one starts, and
fragments of a cancelled handle are never written.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from enum import Enum

from bridge.codec import encode_fragment, parse_transcript_event
from bridge.connection import Connection
from bridge.errors import (
    EmptyGenerationError,
    GenerationError,
    InvalidMessageError,
    SessionConnectionError,
)
from bridge.generation import CompletionStreamAdapter, GenerationHandle
from bridge.prompts import PromptBuilder
from bridge.schemas import ResponseFragment, TranscriptEvent, Turn
from config.settings import Settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)

GREETING_RESPONSE_ID = 0
END_MARKER = "\n\n###### [END] ######"
FALLBACK_MARKER = "[ERROR] NO RESPONSE, PLEASE RETRY"


class SessionState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    CLOSED = "closed"


class CallSession:
    """State machine bridging one call to the LLM."""

    def __init__(
        self,
        call_id: str,
        connection: Connection,
        *,
        adapter: CompletionStreamAdapter,
        prompt_builder: PromptBuilder,
        greeting: str,
        generation_timeout: float,
    ) -> None:
        self._call_id = call_id
        self._connection = connection
        self._adapter = adapter
        self._prompt_builder = prompt_builder
        self._greeting = greeting
        self._generation_timeout = generation_timeout

        self._state = SessionState.IDLE
        self._history: list[Turn] = []
        self._active: GenerationHandle | None = None
        self._last_response_id = GREETING_RESPONSE_ID
        self._tasks: set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()
        self._closed = asyncio.Event()

    @property
    def call_id(self) -> str:
        return self._call_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> tuple[Turn, ...]:
        return tuple(self._history)

    @property
    def active_generation(self) -> GenerationHandle | None:
        return self._active

    @property
    def closed(self) -> bool:
        return self._state is SessionState.CLOSED

    async def run(self) -> None:
        """Greet the caller, then process inbound messages until the call ends."""

        try:
            await self.on_connect()
            while not self.closed:
                try:
                    raw = await self._receive()
                    if raw is None:
                        break
                    event = parse_transcript_event(raw)
                except InvalidMessageError as exc:
                    LOGGER.debug("Call %s: ignoring message (%s)", self._call_id, exc.detail)
                    continue
                self.on_transcript(event)
        except SessionConnectionError as exc:
            LOGGER.info("Call %s: connection ended (%s)", self._call_id, exc.detail)
        finally:
            await self.on_disconnect()

    async def on_connect(self) -> None:
        if self.closed:
            raise SessionConnectionError("Session already closed.")
        self._state = SessionState.IDLE
        LOGGER.info("Call %s: session started", self._call_id)
        await self._write(
            ResponseFragment(
                response_id=GREETING_RESPONSE_ID,
                content=self._greeting,
                content_complete=True,
                end_call=False,
            )
        )

    def on_transcript(self, event: TranscriptEvent) -> None:
        """Apply a transcript event.

        Never suspends, so superseding a running generation and starting the
        next one happen atomically with respect to the writer tasks.
        """

        if self.closed:
            LOGGER.debug("Call %s: event %s after close ignored", self._call_id, event.response_id)
            return

        self._history = list(event.transcript)
        if not event.requires_response:
            LOGGER.debug("Call %s: transcript update (%d turns)", self._call_id, len(self._history))
            return

        LOGGER.debug(
            "Call %s: %s for response %s", self._call_id, event.interaction_type, event.response_id
        )
        self._cancel_active()

        messages = self._prompt_builder.build(self._history)
        handle = GenerationHandle(response_id=event.response_id)
        handle.task = asyncio.create_task(
            self._generate(handle, messages),
            name=f"generation-{self._call_id}-{event.response_id}",
        )
        self._tasks.add(handle.task)
        handle.task.add_done_callback(self._tasks.discard)

        self._active = handle
        self._last_response_id = event.response_id
        self._state = SessionState.GENERATING

    async def end_call(self, content: str = "", *, response_id: int | None = None) -> None:
        """Send the terminal fragment asking the provider to hang up, then close."""

        if self.closed:
            return
        if response_id is None:
            response_id = self._last_response_id
        self._cancel_active()
        try:
            await self._write(
                ResponseFragment(
                    response_id=response_id,
                    content=content,
                    content_complete=True,
                    end_call=True,
                )
            )
        finally:
            await self.close()

    async def close(self) -> None:
        """Transition to closed, cancel generations and release the connection."""

        if self.closed:
            return
        self._state = SessionState.CLOSED
        current = asyncio.current_task()

        if self._active is not None:
            self._active.cancelled.set()
            if self._active.task is not current:
                self._active.cancel()
            self._active = None
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        self._closed.set()
        await self._connection.close()
        LOGGER.info("Call %s: session closed", self._call_id)

    async def on_disconnect(self) -> None:
        await self.close()
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _cancel_active(self) -> None:
        if self._active is None:
            return
        LOGGER.debug("Call %s: superseding response %s", self._call_id, self._active.response_id)
        self._active.cancel()
        self._active = None

    async def _receive(self) -> str | None:
        receive = asyncio.ensure_future(self._connection.receive_text())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({receive, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for future in (receive, closed):
                if not future.done():
                    future.cancel()
        if receive in done:
            return receive.result()
        return None

    async def _generate(self, handle: GenerationHandle, messages: list[dict[str, str]]) -> None:
        produced = 0
        try:
            try:
                async with asyncio.timeout(self._generation_timeout):
                    async with aclosing(self._adapter.start(handle, messages)) as fragments:
                        async for text in fragments:
                            if not await self._emit(handle, text):
                                return
                            produced += 1
                if produced == 0:
                    raise EmptyGenerationError()
                content = END_MARKER
            except SessionConnectionError:
                raise
            except GenerationError as exc:
                LOGGER.warning(
                    "Call %s: response %s degraded to fallback: %s",
                    self._call_id,
                    handle.response_id,
                    exc.detail,
                )
                content = FALLBACK_MARKER
            except TimeoutError:
                LOGGER.warning(
                    "Call %s: response %s timed out after %.1fs",
                    self._call_id,
                    handle.response_id,
                    self._generation_timeout,
                )
                content = FALLBACK_MARKER
            except Exception:
                LOGGER.exception("Call %s: response %s failed", self._call_id, handle.response_id)
                content = FALLBACK_MARKER

            await self._emit(handle, content)
        except SessionConnectionError as exc:
            LOGGER.info("Call %s: write failed (%s)", self._call_id, exc.detail)
            await self.close()
        finally:
            if self._active is handle:
                self._active = None
                if self._state is SessionState.GENERATING:
                    self._state = SessionState.IDLE

    async def _emit(self, handle: GenerationHandle, content: str) -> bool:
        """Write a fragment for ``handle`` unless it has been superseded."""

        async with self._send_lock:
            if handle.is_cancelled or self._active is not handle or self.closed:
                LOGGER.debug("Call %s: suppressed fragment of response %s", self._call_id, handle.response_id)
                return False
            await self._send(
                ResponseFragment(
                    response_id=handle.response_id,
                    content=content,
                    content_complete=False,
                    end_call=False,
                )
            )
            return True

    async def _write(self, fragment: ResponseFragment) -> None:
        async with self._send_lock:
            if self.closed:
                raise SessionConnectionError("Session already closed.")
            await self._send(fragment)

    async def _send(self, fragment: ResponseFragment) -> None:
        LOGGER.debug("Call %s: -> %s", self._call_id, fragment)
        await self._connection.send_text(encode_fragment(fragment))


class SessionFactory:
    """Builds call sessions sharing one LLM client and configuration."""

    def __init__(self, settings: Settings, llm_client: BaseLLMClient) -> None:
        self._adapter = CompletionStreamAdapter(llm_client)
        self._prompt_builder = PromptBuilder(settings)
        self._greeting = settings.greeting
        self._generation_timeout = settings.generation_timeout_seconds

    def create(self, call_id: str, connection: Connection) -> CallSession:
        return CallSession(
            call_id,
            connection,
            adapter=self._adapter,
            prompt_builder=self._prompt_builder,
            greeting=self._greeting,
            generation_timeout=self._generation_timeout,
        )
