"""Lightweight structural checks on generated CSS."""

from __future__ import annotations

import re

from stylepilot.model.snapshot import DEFAULT_CLASS_PREFIX


def extract_addressable_classes(css: str, prefix: str = DEFAULT_CLASS_PREFIX) -> list[str]:
    """Class names with *prefix* used as selectors in *css*, in first-seen order."""
    pattern = re.compile(r"\." + re.escape(prefix) + r"[A-Za-z0-9_-]+")
    found: dict[str, None] = {}
    for match in pattern.finditer(css):
        found.setdefault(match.group(0)[1:], None)
    return list(found)


def check_css(css: str, prefix: str = DEFAULT_CLASS_PREFIX) -> list[str]:
    """Return non-fatal warnings about *css*; an empty list means it looks sane."""
    warnings: list[str] = []
    if "{" not in css or "}" not in css:
        warnings.append("CSS appears to be malformed (missing braces)")
    if css.count("{") != css.count("}"):
        warnings.append("Unbalanced CSS braces")
    if not extract_addressable_classes(css, prefix):
        warnings.append(f"CSS does not target any {prefix}* classes")
    return warnings
