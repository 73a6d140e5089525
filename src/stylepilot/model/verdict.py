from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Unchanged:
    """The model reports that no further changes are needed."""


@dataclass(frozen=True)
class Revised:
    css: str
    feedback: str = ""
    quality_score: float | None = None


@dataclass(frozen=True)
class MalformedResponse:
    """A response that could not be read as either verdict."""

    reason: str
    raw: str


EvaluationVerdict = Unchanged | Revised
