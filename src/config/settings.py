"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # LLM connectivity
    llm_provider: Literal["openai", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None,
        description="Base URL for a self-hosted server or an OpenAI-compatible proxy.",
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-3.5-turbo")
    llm_max_tokens: int = Field(default=200, ge=1)
    llm_temperature: float = Field(default=1.0, ge=0.0, le=2.0)

    # Turn orchestration
    generation_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound for a single streamed answer; exceeding it yields the fallback marker.",
    )
    history_max_turns: int = Field(
        default=40,
        ge=1,
        description="Number of most recent transcript turns sent to the LLM.",
    )
    system_prompt: str | None = Field(
        default=None,
        description="Inline system directive. Takes precedence over system_prompt_file.",
    )
    system_prompt_file: str = Field(default="friend_agent.txt")
    greeting: str = Field(default="Hello, I'm your AI buddy. How did your day go?")

    # Retell
    retell_api_key: str | None = Field(default=None)
    retell_base_url: str = Field(default="https://api.retellai.com")
    retell_audio_websocket_url: str = Field(
        default="wss://api.re-tell.ai/audio-websocket",
        description="Base URL Twilio streams call audio to; the call id is appended.",
    )
    retell_audio_encoding: str = Field(default="s16le")
    retell_sample_rate: int = Field(default=16000)
    retell_audio_websocket_protocol: str = Field(default="twilio")
    retell_request_timeout_seconds: float = Field(default=30.0, gt=0.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
