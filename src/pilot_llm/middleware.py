"""Gateway wrappers."""
from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from pilot_llm.gateway import ModelServiceGateway
from pilot_llm.types import ContentKind, ContentPart


class LoggingGateway:
    """Wraps a gateway and logs each request with its latency."""

    def __init__(
        self,
        inner: ModelServiceGateway,
        logger: logging.Logger | None = None,
    ) -> None:
        self._inner = inner
        self._log = logger or logging.getLogger("pilot_llm")

    @property
    def name(self) -> str:
        return self._inner.name

    @property
    def inner(self) -> ModelServiceGateway:
        return self._inner

    async def send(
        self,
        session_id: str,
        system_prompt: str,
        parts: Sequence[ContentPart],
    ) -> str:
        images = sum(1 for p in parts if p.kind == ContentKind.IMAGE)
        self._log.info(
            "LLM request: provider=%s session=%s parts=%d images=%d",
            self._inner.name,
            session_id,
            len(parts),
            images,
        )
        start = time.monotonic()
        try:
            text = await self._inner.send(session_id, system_prompt, parts)
        except Exception as exc:
            self._log.warning(
                "LLM error: provider=%s session=%s error=%s latency=%.2fs",
                self._inner.name,
                session_id,
                type(exc).__name__,
                time.monotonic() - start,
            )
            raise
        elapsed = time.monotonic() - start
        self._log.info("LLM response: chars=%d latency=%.2fs", len(text), elapsed)
        return text

    async def aclose(self) -> None:
        """Close the wrapped gateway if it holds resources."""
        if hasattr(self._inner, "aclose"):
            await self._inner.aclose()
