"""Tokenizer/parser turning stylesheet text into a StyleDocument.

A block is recognised only when it has the exact shape ``render`` produces::

    /* PREF:<element>:<pref>:START */
    <body>
    /* PREF:<element>:<pref>:END */

Anything else (unmatched, nested, duplicate or irregularly padded markers)
is kept as literal text, so ``parse(text).render() == text`` always holds.
"""

from __future__ import annotations

import re

from stylepilot.stylesheet.model import (
    MARKER_RE,
    BlockKey,
    Literal,
    PatchBlock,
    Segment,
    StyleDocument,
    _normalize,
)

__all__ = ["parse_document"]


def _key_of(match: re.Match[str]) -> BlockKey | None:
    try:
        return BlockKey(match.group("element"), match.group("pref"))
    except ValueError:
        return None


def parse_document(text: str) -> StyleDocument:
    """Parse stylesheet text. Never raises on malformed markers."""
    markers = list(MARKER_RE.finditer(text))
    segments: list[Segment] = []
    seen: set[BlockKey] = set()
    cursor = 0
    i = 0
    while i < len(markers):
        start = markers[i]
        if start.group("edge") != "START" or i + 1 >= len(markers):
            i += 1
            continue
        end = markers[i + 1]
        key = _key_of(start)
        if key is None or key in seen or end.group("edge") != "END" or _key_of(end) != key:
            i += 1
            continue
        inner = text[start.end():end.start()]
        if len(inner) < 2 or not (inner.startswith("\n") and inner.endswith("\n")):
            i += 1
            continue

        segments.append(Literal(text[cursor:start.start()]))
        segments.append(PatchBlock(key, inner[1:-1]))
        seen.add(key)
        cursor = end.end()
        i += 2

    segments.append(Literal(text[cursor:]))
    return StyleDocument(_normalize(segments))
