from __future__ import annotations

from typing import Any


class TutorError(Exception):
    """Base class for failures of the AI tutor pipeline."""


class ConfigurationError(TutorError):
    """Required configuration (the Gemini API key) is missing.

    Fatal for the whole tutor feature and never retried.
    """


class GenerationFailed(TutorError):
    """The generation endpoint answered with a non-success status."""

    def __init__(self, status_code: int, detail: Any = None) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Gemini request failed with status {status_code}")


class GenerationTimeout(TutorError):
    """The client-side timeout aborted the in-flight generation call."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Gemini did not answer within {timeout_seconds:g}s")


class MalformedOutput(TutorError):
    """Upstream text could not be read in the shape a parser expected.

    Only raised between the normalizer's parsing layers; callers never see it.
    """


def error_response(exc: TutorError) -> tuple[int, dict[str, Any]]:
    """HTTP status and JSON body for a tutor failure, shared by handlers and SSE error events."""
    if isinstance(exc, ConfigurationError):
        return 500, {"error": str(exc)}
    if isinstance(exc, GenerationFailed):
        return 502, {"error": "Gemini request failed", "status": exc.status_code, "details": exc.detail}
    if isinstance(exc, GenerationTimeout):
        return 504, {"error": str(exc), "retryable": True}
    return 500, {"error": str(exc) or exc.__class__.__name__}
