"""Turn raw model text into a verdict.

``extract`` is total: every input maps to ``Unchanged``, ``Revised`` or
``MalformedResponse``.
"""

from __future__ import annotations

import re

from stylepilot.errors import MalformedResponseError
from stylepilot.model.verdict import EvaluationVerdict, MalformedResponse, Revised, Unchanged

SENTINEL = "UNCHANGED"
SENTINEL_ALIASES = frozenset(
    {
        SENTINEL,
        "DONE",
        "NO CHANGES",
        "NO CHANGES NEEDED",
        "NO CHANGES REQUIRED",
        "NO FURTHER CHANGES",
        "NO FURTHER CHANGES NEEDED",
    }
)

_FENCE_RE = re.compile(r"```[ \t]*(?P<lang>[A-Za-z0-9_+-]*)[ \t]*\r?\n?(?P<body>.*?)```", re.DOTALL)
_SCORE_RE = re.compile(
    r"^[ \t*_#>-]*QUALITY[_ ]SCORE[ \t*_]*[:=][ \t*_]*(?P<score>-?\d+(?:\.\d+)?)[^\n]*(?:\n|$)",
    re.IGNORECASE | re.MULTILINE,
)
_STRIP_CHARS = " \t\r\n`'\""


def is_sentinel(raw: str) -> bool:
    """True if the whole response is the sentinel or one of its aliases."""
    text = raw.strip(_STRIP_CHARS)
    if text.endswith("."):
        text = text[:-1].rstrip(_STRIP_CHARS)
    text = " ".join(text.split()).upper()
    return text in SENTINEL_ALIASES


def _take_score(text: str) -> tuple[str, float | None]:
    match = _SCORE_RE.search(text)
    if match is None:
        return text, None
    try:
        score = float(match.group("score"))
    except ValueError:
        score = None
    return text[: match.start()] + text[match.end():], score


def extract(raw: str) -> EvaluationVerdict | MalformedResponse:
    """Classify a model response. Never raises."""
    if raw is None or not raw.strip():
        return MalformedResponse("empty response", raw or "")
    text, score = _take_score(raw)
    if is_sentinel(raw) or is_sentinel(text):
        return Unchanged()

    fence = _FENCE_RE.search(text)
    if fence is not None:
        css = fence.group("body").strip()
        if not css:
            return MalformedResponse("fenced block is empty", raw)
        feedback = (text[: fence.start()] + text[fence.end():]).strip()
        return Revised(css=css, feedback=feedback, quality_score=score)

    if "{" in text and "}" in text:
        return Revised(css=text.strip(), feedback="", quality_score=score)

    return MalformedResponse("no sentinel and no CSS payload", raw)


def extract_or_raise(raw: str) -> EvaluationVerdict:
    """Like :func:`extract` but raises MalformedResponseError."""
    verdict = extract(raw)
    if isinstance(verdict, MalformedResponse):
        raise MalformedResponseError(f"Malformed model response: {verdict.reason}", raw=raw)
    return verdict
