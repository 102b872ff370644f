"""Outbound/inbound transport seam between a call session and its WebSocket."""

from __future__ import annotations

import logging
from typing import Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from bridge.errors import InvalidMessageError, SessionConnectionError

LOGGER = logging.getLogger(__name__)


class Connection(Protocol):
    """Duplex text channel owned by exactly one session."""

    async def send_text(self, data: str) -> None:  # pragma: no cover - protocol stub
        ...

    async def receive_text(self) -> str:  # pragma: no cover - protocol stub
        ...

    async def close(self) -> None:  # pragma: no cover - protocol stub
        ...


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the Connection protocol.

    Every transport failure is raised as SessionConnectionError so the session
    can shut down through a single path.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return (
            self._closed
            or self._websocket.client_state == WebSocketState.DISCONNECTED
            or self._websocket.application_state == WebSocketState.DISCONNECTED
        )

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise SessionConnectionError("Cannot send on a closed connection.")
        try:
            await self._websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._closed = True
            raise SessionConnectionError(f"Send failed: {exc!r}") from exc

    async def receive_text(self) -> str:
        """Return the next text frame; binary frames must hold valid UTF-8."""

        if self.closed:
            raise SessionConnectionError("Cannot receive on a closed connection.")
        try:
            message = await self._websocket.receive()
        except (RuntimeError, OSError) as exc:
            self._closed = True
            raise SessionConnectionError(f"Receive failed: {exc!r}") from exc

        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise SessionConnectionError(f"Peer disconnected with code {message.get('code')}")
        text = message.get("text")
        if text is not None:
            return text
        try:
            return (message.get("bytes") or b"").decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidMessageError(f"Binary frame is not valid UTF-8: {exc.reason}") from exc

    async def close(self, code: int = 1000) -> None:
        if self.closed:
            self._closed = True
            return
        self._closed = True
        try:
            await self._websocket.close(code=code)
        except (RuntimeError, OSError) as exc:
            LOGGER.debug("WebSocket already gone while closing: %r", exc)
