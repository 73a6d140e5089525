"""In-memory document for tests and dry runs."""
from __future__ import annotations

from collections.abc import Sequence

from pilot_llm.types import ImageData
from stylepilot.model.snapshot import ElementTree


class StubDocument:
    """Records applied stylesheets and serves scripted captures.

    *captures* and *apply_results* are consumed in order; an ``Exception``
    instance is raised instead of returned. Once exhausted, captures yield
    None and applies succeed.
    """

    def __init__(
        self,
        snapshot: ElementTree | None = None,
        *,
        captures: Sequence[ImageData | None | Exception] = (),
        apply_results: Sequence[bool | Exception] = (),
    ) -> None:
        self.snapshot = snapshot or ElementTree(tag="body")
        self._captures = list(captures)
        self._apply_results = list(apply_results)
        self.applied: list[str] = []
        self.snapshot_calls = 0

    async def get_snapshot(self) -> ElementTree:
        self.snapshot_calls += 1
        return self.snapshot

    async def apply_style(self, css: str) -> bool:
        self.applied.append(css)
        if not self._apply_results:
            return True
        result = self._apply_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def capture_render(self) -> ImageData | None:
        if not self._captures:
            return None
        capture = self._captures.pop(0)
        if isinstance(capture, Exception):
            raise capture
        return capture
