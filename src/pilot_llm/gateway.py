"""Model service gateway interface."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pilot_llm.types import ContentKind, ContentPart


@runtime_checkable
class ModelServiceGateway(Protocol):
    """Protocol that every provider gateway must satisfy.

    Each ``send`` is a single stateless turn: the gateway keeps no history and
    passes *session_id* through only as an opaque, single-use correlation token.
    """

    @property
    def name(self) -> str:
        """Unique provider name."""
        ...

    async def send(
        self,
        session_id: str,
        system_prompt: str,
        parts: Sequence[ContentPart],
    ) -> str:
        """Send one multi-part request and return the raw response text."""
        ...


@dataclass(frozen=True)
class RecordedCall:
    """A call captured by :class:`StubGateway`."""

    session_id: str
    system_prompt: str
    parts: tuple[ContentPart, ...]

    @property
    def text(self) -> str:
        """All text parts joined with blank lines."""
        return "\n\n".join(p.text or "" for p in self.parts if p.kind == ContentKind.TEXT)

    @property
    def image_count(self) -> int:
        return sum(1 for p in self.parts if p.kind == ContentKind.IMAGE)


class StubGateway:
    """In-memory gateway for tests and dry runs.

    Replies are consumed in order; an ``Exception`` instance in the script is
    raised instead of returned. When the script runs out, *default* is
    returned.
    """

    def __init__(
        self,
        replies: Sequence[str | Exception] | None = None,
        *,
        default: str = "UNCHANGED",
        name: str = "stub",
    ) -> None:
        self._replies = list(replies or [])
        self._default = default
        self._name = name
        self.calls: list[RecordedCall] = []

    @property
    def name(self) -> str:
        return self._name

    async def send(
        self,
        session_id: str,
        system_prompt: str,
        parts: Sequence[ContentPart],
    ) -> str:
        self.calls.append(RecordedCall(session_id, system_prompt, tuple(parts)))
        if not self._replies:
            return self._default
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self) -> None:
        """Nothing to release."""
