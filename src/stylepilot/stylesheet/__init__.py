from stylepilot.stylesheet.model import BlockKey, Literal, PatchBlock, Segment, StyleDocument
from stylepilot.stylesheet.parser import parse_document
from stylepilot.stylesheet.validation import check_css, extract_addressable_classes

__all__ = [
    "BlockKey",
    "Literal",
    "PatchBlock",
    "Segment",
    "StyleDocument",
    "check_css",
    "extract_addressable_classes",
    "parse_document",
]
