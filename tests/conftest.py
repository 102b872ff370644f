from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class FakeLLMClient:
    def __init__(self, fragments: list[str]) -> None:
        self._fragments = fragments
        self.calls: list[list[dict[str, str]]] = []

    async def stream_chat(self, messages):
        self.calls.append(list(messages))
        for fragment in self._fragments:
            yield fragment

    async def aclose(self) -> None:
        return None


@pytest.fixture(scope="session")
def app():
    # Must be set before importing modules that read settings at import time.
    os.environ["LLM_PROVIDER"] = "openai"
    os.environ["LLM_API_KEY"] = "sk-test"
    os.environ["RETELL_API_KEY"] = "retell-test"
    os.environ["LOG_LEVEL"] = "DEBUG"

    import importlib

    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.routes",
        "api.retell_routes",
        "api.twilio_routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    # Override the LLM so tests never reach a real provider.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_llm_client] = lambda: FakeLLMClient(["Hel", "lo"])

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
