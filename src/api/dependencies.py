"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from bridge.registry import SessionRegistry
from bridge.session import SessionFactory
from config.settings import Settings, get_settings
from integrations.retell_client import RetellClient
from llm.base import BaseLLMClient


@lru_cache(maxsize=1)
def _llm_client_factory() -> BaseLLMClient:
    # Lazy import to keep provider SDKs out of module import time.
    from llm.factory import build_llm_client

    return build_llm_client(get_settings())


def get_llm_client() -> BaseLLMClient:
    return _llm_client_factory()


@lru_cache(maxsize=1)
def get_session_registry() -> SessionRegistry:
    return SessionRegistry()


def get_session_factory(
    settings: Settings = Depends(get_settings),
    llm_client: BaseLLMClient = Depends(get_llm_client),
) -> SessionFactory:
    return SessionFactory(settings, llm_client)


def get_retell_client(settings: Settings = Depends(get_settings)) -> RetellClient:
    return RetellClient(settings)


async def close_llm_client() -> None:
    """Release the shared LLM client, if one was ever built."""

    if not _llm_client_factory.cache_info().currsize:
        return
    client = _llm_client_factory()
    _llm_client_factory.cache_clear()
    await client.aclose()
