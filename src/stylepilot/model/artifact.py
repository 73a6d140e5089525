from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Artifact:
    """A saved stylesheet."""

    id: str
    label: str
    css: str
    created_at: str  # ISO 8601
    description: str = ""
