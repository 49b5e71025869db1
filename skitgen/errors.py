from __future__ import annotations

from typing import Any


class SkitgenError(Exception):
    """Base class for every error raised on purpose by the service."""


class ValidationError(SkitgenError, ValueError):
    """Input rejected before any state was mutated."""


class NotFoundError(SkitgenError, ValueError):
    """Referenced record does not exist."""


class ProviderError(SkitgenError, RuntimeError):
    """An external collaborator (LLM, TTS, storage, ffmpeg) failed."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


def error_message(error: Any) -> str:
    """Extract a readable message from any raised value."""
    if isinstance(error, BaseException):
        message = getattr(error, "message", None)
        if isinstance(message, str) and message:
            return message
        text = str(error)
        if text:
            return text
        return error.__class__.__name__
    if isinstance(error, str):
        return error
    return "An unknown error occurred"


def wrap_provider_error(prefix: str, error: BaseException, provider: str | None = None) -> ProviderError:
    if isinstance(error, ProviderError):
        return error
    wrapped = ProviderError(f"{prefix}: {error_message(error)}", provider=provider)
    wrapped.__cause__ = error
    return wrapped
