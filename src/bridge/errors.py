"""Domain-specific exceptions for the call bridge.

These exceptions are safe to import from API layers without pulling in LLM clients.
"""

from __future__ import annotations


class BridgeError(Exception):
    status_code: int = 500
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class SessionConnectionError(BridgeError):
    """The duplex connection to the voice provider is gone."""

    default_detail = "Connection to the voice provider lost."


class GenerationError(BridgeError):
    """The LLM backend failed while streaming an answer."""

    status_code = 503
    default_detail = "LLM generation failed."


class EmptyGenerationError(GenerationError):
    default_detail = "LLM stream ended without any content."


class InvalidMessageError(BridgeError):
    status_code = 422
    default_detail = "Malformed transcript message."


class CallRegistrationError(BridgeError):
    status_code = 503
    default_detail = "Cannot handle the call at the moment."
