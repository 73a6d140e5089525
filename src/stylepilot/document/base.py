from __future__ import annotations

from typing import Protocol, runtime_checkable

from pilot_llm.types import ImageData
from stylepilot.model.snapshot import ElementTree


@runtime_checkable
class Document(Protocol):
    """The live document a refinement run styles."""

    async def apply_style(self, css: str) -> bool:
        """Replace the document's managed stylesheet; False on failure."""
        ...

    async def capture_render(self) -> ImageData | None:
        """Screenshot of the current render, or None if unavailable."""
        ...

    async def get_snapshot(self) -> ElementTree:
        ...
