"""Retell custom LLM WebSocket endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket

from api.dependencies import get_session_factory, get_session_registry
from bridge.connection import WebSocketConnection
from bridge.registry import SessionRegistry
from bridge.session import SessionFactory

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["retell"])


@router.websocket("/llm-websocket/{call_id}")
async def llm_websocket(
    websocket: WebSocket,
    call_id: str,
    factory: SessionFactory = Depends(get_session_factory),
    registry: SessionRegistry = Depends(get_session_registry),
) -> None:
    await websocket.accept()
    LOGGER.info("Retell connected for call %s", call_id)

    session = factory.create(call_id, WebSocketConnection(websocket))
    await registry.register(session)
    try:
        await session.run()
    finally:
        await registry.unregister(session)
