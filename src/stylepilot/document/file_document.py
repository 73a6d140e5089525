"""Document backed by files on disk, used by the CLI."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from pilot_llm.types import ImageData
from stylepilot.model.snapshot import DEFAULT_CLASS_PREFIX, ElementTree

logger = logging.getLogger(__name__)


class FileDocument:
    """Reads the element tree from a JSON file and writes CSS to a file.

    If *capture_path* is given, the image found there (for example one
    refreshed by an external screenshot tool) is served as the render capture.
    """

    def __init__(
        self,
        snapshot_path: str | Path,
        css_path: str | Path,
        capture_path: str | Path | None = None,
        *,
        class_prefix: str = DEFAULT_CLASS_PREFIX,
    ) -> None:
        self.snapshot_path = Path(snapshot_path)
        self.css_path = Path(css_path)
        self.capture_path = Path(capture_path) if capture_path else None
        self.class_prefix = class_prefix

    async def get_snapshot(self) -> ElementTree:
        raw = await asyncio.to_thread(self.snapshot_path.read_text, encoding="utf-8")
        data = json.loads(raw)
        if isinstance(data, list):
            data = {"tag": "body", "children": data}
        return ElementTree.from_dict(data, prefix=self.class_prefix)

    async def apply_style(self, css: str) -> bool:
        try:
            self.css_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(self.css_path.write_text, css, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write %s: %s", self.css_path, exc)
            return False
        logger.debug("Wrote %d chars to %s", len(css), self.css_path)
        return True

    async def capture_render(self) -> ImageData | None:
        if self.capture_path is None or not self.capture_path.exists():
            return None
        return await asyncio.to_thread(ImageData.from_file, self.capture_path)
