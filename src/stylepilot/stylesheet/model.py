"""StyleDocument model: literal segments and addressable patch blocks."""

from __future__ import annotations

import re
from dataclasses import dataclass

_FORBIDDEN_IN_KEY = (":", "*/", "\n", "\r")
_WHITESPACE = " \t\r\n"

# Exact wire format of block delimiters.
MARKER_RE = re.compile(
    r"/\* PREF:(?P<element>[^:\n\r]+?):(?P<pref>[^:\n\r]+?):(?P<edge>START|END) \*/"
)


@dataclass(frozen=True, order=True)
class BlockKey:
    """Identifies one patch block: (element_id, preference_id)."""

    element_id: str
    preference_id: str

    def __post_init__(self) -> None:
        for part in (self.element_id, self.preference_id):
            if not part or part != part.strip():
                raise ValueError(f"Invalid block key part: {part!r}")
            if any(bad in part for bad in _FORBIDDEN_IN_KEY):
                raise ValueError(f"Block key part may not contain ':', '*/' or newlines: {part!r}")

    @classmethod
    def parse(cls, text: str) -> BlockKey:
        """Parse ``"element:preference"``."""
        element_id, sep, preference_id = text.partition(":")
        if not sep:
            raise ValueError(f"Block key must look like 'element:preference': {text!r}")
        return cls(element_id, preference_id)

    @property
    def start_marker(self) -> str:
        return f"/* PREF:{self.element_id}:{self.preference_id}:START */"

    @property
    def end_marker(self) -> str:
        return f"/* PREF:{self.element_id}:{self.preference_id}:END */"

    def __str__(self) -> str:
        return f"{self.element_id}:{self.preference_id}"


@dataclass(frozen=True)
class Literal:
    """Opaque text kept byte-for-byte."""

    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class PatchBlock:
    key: BlockKey
    body: str

    def render(self) -> str:
        return f"{self.key.start_marker}\n{self.body}\n{self.key.end_marker}"


Segment = Literal | PatchBlock


def _normalize(segments: list[Segment]) -> tuple[Segment, ...]:
    """Merge adjacent literals and drop empty ones."""
    result: list[Segment] = []
    for seg in segments:
        if isinstance(seg, Literal):
            if not seg.text:
                continue
            if result and isinstance(result[-1], Literal):
                result[-1] = Literal(result[-1].text + seg.text)
                continue
        result.append(seg)
    return tuple(result)


def _separator_before_block(text: str) -> str:
    """Newlines needed so that a block appended after *text* follows a blank line."""
    if not text or text.endswith("\n\n"):
        return ""
    if text.endswith("\n"):
        return "\n"
    return "\n\n"


@dataclass(frozen=True)
class StyleDocument:
    """A stylesheet made of literal text and keyed patch blocks.

    Documents are immutable; :meth:`upsert` and :meth:`remove` return new
    documents and leave every other segment byte-identical.
    """

    segments: tuple[Segment, ...] = ()

    @classmethod
    def parse(cls, text: str) -> StyleDocument:
        from stylepilot.stylesheet.parser import parse_document

        return parse_document(text)

    def render(self) -> str:
        return "".join(seg.render() for seg in self.segments)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def blocks(self) -> list[PatchBlock]:
        return [seg for seg in self.segments if isinstance(seg, PatchBlock)]

    def keys(self) -> list[BlockKey]:
        return [block.key for block in self.blocks()]

    def get(self, key: BlockKey) -> str | None:
        """Return the body stored under *key*, or None."""
        index = self._index_of(key)
        if index is None:
            return None
        block = self.segments[index]
        assert isinstance(block, PatchBlock)
        return block.body

    def literal_text(self) -> str:
        """All text outside patch blocks, concatenated."""
        return "".join(seg.text for seg in self.segments if isinstance(seg, Literal))

    @property
    def is_empty(self) -> bool:
        return not self.segments

    def __contains__(self, key: object) -> bool:
        return isinstance(key, BlockKey) and self._index_of(key) is not None

    def __len__(self) -> int:
        return len(self.blocks())

    def __bool__(self) -> bool:
        # Literal-only stylesheets are not empty even though len() is 0
        return not self.is_empty

    def _index_of(self, key: BlockKey) -> int | None:
        for i, seg in enumerate(self.segments):
            if isinstance(seg, PatchBlock) and seg.key == key:
                return i
        return None

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def upsert(self, key: BlockKey, body: str) -> StyleDocument:
        """Replace the block for *key* in place, or append a new one.

        A new block is preceded by a blank line when the document is not
        empty. Raises ValueError if *body* contains block marker syntax.
        """
        if MARKER_RE.search(body):
            raise ValueError(f"Body for {key} contains block marker syntax")

        block = PatchBlock(key, body)
        index = self._index_of(key)
        segments = list(self.segments)
        if index is not None:
            segments[index] = block
            return StyleDocument(_normalize(segments))

        separator = _separator_before_block(self.render()) if segments else ""
        segments.extend([Literal(separator), block])
        return StyleDocument(_normalize(segments))

    def remove(self, key: BlockKey) -> StyleDocument:
        """Delete the block for *key* and collapse the whitespace around it.

        At the start or end of the document the surrounding whitespace is
        dropped; elsewhere it shrinks to at most one blank line.
        """
        index = self._index_of(key)
        if index is None:
            return self

        segments = list(self.segments)
        lo, hi = index, index + 1
        before = after = ""
        if lo > 0 and isinstance(segments[lo - 1], Literal):
            lo -= 1
            before = segments[lo].text  # type: ignore[union-attr]
        if hi < len(segments) and isinstance(segments[hi], Literal):
            after = segments[hi].text  # type: ignore[union-attr]
            hi += 1

        head = before.rstrip(_WHITESPACE)
        tail = after.lstrip(_WHITESPACE)
        at_start = lo == 0 and not head
        at_end = hi == len(segments) and not tail
        if at_start or at_end:
            joiner = ""
        else:
            gap = before[len(head):] + after[: len(after) - len(tail)]
            newlines = gap.count("\n")
            if newlines >= 2:
                joiner = "\n\n"
            elif newlines == 1:
                joiner = "\n"
            else:
                joiner = " " if gap else ""

        segments[lo:hi] = [Literal(head + joiner + tail)]
        return StyleDocument(_normalize(segments))
