"""Errors raised by the refinement engine.

Gateway failures use the ``pilot_llm.errors`` hierarchy; everything here is
about the engine's own collaborators.
"""
from __future__ import annotations

from typing import Any


class PilotError(Exception):
    """Base error for stylepilot."""

    retryable: bool = False

    def __init__(self, message: str, *, detail: Any = None, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.detail = detail
        self.cause = cause


class MalformedResponseError(PilotError):
    """A model response carried neither the sentinel nor a CSS payload."""

    def __init__(self, message: str, *, raw: str = "", cause: Exception | None = None) -> None:
        super().__init__(message, detail=raw, cause=cause)
        self.raw = raw


class CaptureUnavailableError(PilotError):
    """The document could not produce a render capture."""


class DocumentApplyError(PilotError):
    """The document rejected or failed to apply a stylesheet."""


class RefinementCancelled(PilotError):
    """The caller cancelled the run."""
