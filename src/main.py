"""Entry point for the Retell custom LLM bridge service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import close_llm_client, get_session_registry
from api.retell_routes import router as retell_router
from api.routes import router as api_router
from api.twilio_routes import router as twilio_router
from bridge.errors import BridgeError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_session_registry().close_all()
    await close_llm_client()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Retell LLM Bridge",
    description="Streams LLM answers into Retell voice calls placed through Twilio.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(twilio_router, prefix="/api")
app.include_router(retell_router)


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    LOGGER.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
