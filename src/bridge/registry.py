from __future__ import annotations

import asyncio
import logging

from bridge.session import CallSession

LOGGER = logging.getLogger(__name__)


class SessionRegistry:
    """In-memory index of live call sessions.

    Note: This is a single-process registry. Sessions are bound to the worker
    holding their WebSocket, so nothing here needs to be shared across workers.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, CallSession] = {}

    async def register(self, session: CallSession) -> None:
        """Track ``session``; an older session for the same call is closed."""

        async with self._lock:
            previous = self._sessions.get(session.call_id)
            self._sessions[session.call_id] = session

        if previous is not None and previous is not session:
            LOGGER.warning("Call %s reconnected; closing the previous session", session.call_id)
            await previous.on_disconnect()

    async def unregister(self, session: CallSession) -> None:
        async with self._lock:
            if self._sessions.get(session.call_id) is session:
                del self._sessions[session.call_id]

    async def get(self, call_id: str) -> CallSession | None:
        async with self._lock:
            return self._sessions.get(call_id)

    async def active_calls(self) -> list[str]:
        async with self._lock:
            return sorted(self._sessions)

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        if sessions:
            LOGGER.info("Closing %d active call session(s)", len(sessions))
            await asyncio.gather(*(session.on_disconnect() for session in sessions), return_exceptions=True)
