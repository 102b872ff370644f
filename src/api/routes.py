"""FastAPI routes exposing service status."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_session_registry
from api.schemas import HealthResponse
from bridge.registry import SessionRegistry

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_session_registry)) -> HealthResponse:
    calls = await registry.active_calls()
    return HealthResponse(active_calls=len(calls))
