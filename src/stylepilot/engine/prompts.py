"""Generation and evaluation prompts for the refinement loop."""
from __future__ import annotations

from collections.abc import Sequence

from stylepilot.engine.extractor import SENTINEL
from stylepilot.model.snapshot import ElementTree
from stylepilot.stylesheet import BlockKey

GENERATE_SYSTEM = f"""\
You are a CSS designer. You restyle an existing page by writing CSS that targets \
only the addressable classes listed in the element tree. You never change markup.

Reply with a single ```css fenced block containing the complete stylesheet for the \
managed block. If the current CSS already satisfies the request, reply with exactly \
{SENTINEL} and nothing else."""

EVALUATE_SYSTEM = f"""\
You are a meticulous visual reviewer. You compare a rendered page against the \
requested design and any reference images, then either approve it or improve its CSS.

If the result already satisfies the request, reply with exactly {SENTINEL}.
Otherwise reply with:
1. A short list of concrete problems you see
2. A ```css fenced block containing the complete improved stylesheet
3. A final line of the form QUALITY_SCORE: <0-10> rating the current render"""

_NO_CSS = "/* No existing CSS */"


def format_snapshot(snapshot: ElementTree, *, compact: bool = False) -> str:
    """Pseudo-markup of the tree; *compact* keeps only addressable elements."""
    tree: ElementTree | None = snapshot
    if compact:
        tree = snapshot.prune()
        if tree is None:
            return "(no addressable elements)"
    return tree.format_tree(include_auxiliary=not compact)


def format_preference_blocks(keys: Sequence[BlockKey]) -> str:
    """One START/END marker pair per key, the shape per-preference replies must use."""
    return "\n".join(f"{key.start_marker}\n...\n{key.end_marker}" for key in keys)


def build_generation_prompt(
    intent: str,
    snapshot: ElementTree,
    *,
    iteration: int,
    current_css: str = "",
    other_css: str = "",
    feedback: str = "",
    compact: bool = False,
    preference_keys: Sequence[BlockKey] = (),
) -> str:
    """Prompt for one generation attempt.

    *current_css* is the managed CSS; *other_css* is the rest of the
    stylesheet, shown so the model does not fight it. With *preference_keys*
    the model is asked for one marked block per preference.
    """
    classes = ", ".join(f".{c}" for c in snapshot.all_addressable_classes()) or "(none)"
    lines = [
        "Create CSS that transforms this page to match the requested design."
        if iteration == 1 and not current_css
        else "Improve the CSS to better match the requested design.",
        "",
        f"DESIGN GOAL: {intent.strip() or 'Match the reference design aesthetics'}",
        f"ITERATION: {iteration}",
    ]
    if feedback:
        lines += ["", "PREVIOUS FEEDBACK:", feedback.strip()]
    lines += [
        "",
        "ADDRESSABLE CLASSES:",
        classes,
        "",
        "ELEMENT TREE:",
        format_snapshot(snapshot, compact=compact),
        "",
        "CURRENT CSS:",
        current_css.strip() or _NO_CSS,
    ]
    if other_css.strip():
        lines += ["", "OTHER STYLES ON THE PAGE (read-only):", other_css.strip()]
    if preference_keys:
        lines += ["", "PREFERENCE BLOCKS:", format_preference_blocks(preference_keys)]
    lines += [
        "",
        "REQUIREMENTS:",
        "1. Use ONLY the addressable classes listed above",
        "2. Wrap each preference's CSS in its START and END markers, each marker on its own line"
        if preference_keys
        else "2. Produce the complete stylesheet for the managed block, not a diff",
    ]
    if feedback:
        lines.append("3. Address the feedback while keeping what already works")
    else:
        lines.append("3. Cover colors, typography, spacing and layout")
    return "\n".join(lines)


def build_evaluation_prompt(
    intent: str,
    applied_css: str,
    *,
    iteration: int,
    has_capture: bool,
    reference_count: int = 0,
    quality_threshold: float | None = None,
    preference_keys: Sequence[BlockKey] = (),
) -> str:
    """Prompt for judging the render produced by *applied_css*."""
    lines = [
        f"Evaluate iteration {iteration} of this restyling.",
        "",
        f"DESIGN GOAL: {intent.strip() or 'Match the reference design aesthetics'}",
        "",
    ]
    if reference_count:
        lines.append(f"The first {reference_count} image(s) are the reference design.")
    if has_capture:
        lines.append("The last image is a screenshot of the page with the CSS below applied.")
    else:
        lines.append("No screenshot is available; judge the CSS on its own.")
    lines += ["", "APPLIED CSS:", applied_css.strip() or _NO_CSS]
    if preference_keys:
        lines += [
            "",
            "Keep every preference in its own marked block in the improved CSS:",
            format_preference_blocks(preference_keys),
        ]
    if quality_threshold is not None:
        lines += [
            "",
            f"A QUALITY_SCORE of {quality_threshold:g} or more counts as done.",
        ]
    return "\n".join(lines)
