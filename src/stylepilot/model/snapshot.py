"""Immutable snapshot of the document's element tree."""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

DEFAULT_CLASS_PREFIX = "portal-"
TEXT_PREVIEW_LIMIT = 50


def _class_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return value.split()
    return [str(v) for v in value]


@dataclass(frozen=True)
class ElementTree:
    """One element of the document and its descendants.

    *addressable_classes* are the stable hooks that generated CSS may target;
    *auxiliary_classes* are everything else (utility classes) and are shown to
    the model only as context.
    """

    tag: str
    addressable_classes: frozenset[str] = frozenset()
    auxiliary_classes: frozenset[str] = frozenset()
    text: str | None = None
    children: tuple[ElementTree, ...] = field(default=())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], prefix: str = DEFAULT_CLASS_PREFIX) -> ElementTree:
        """Build a tree from a JSON-like mapping.

        Accepts snake_case keys or the camelCase ones produced by page
        inspectors (``tagName``/``element``, ``portalClasses``,
        ``tailwindClasses``). A flat ``classes`` list is split by *prefix*.
        """
        tag = data.get("tag") or data.get("tagName") or data.get("element") or "div"
        addressable = _class_list(data.get("addressable_classes", data.get("portalClasses")))
        auxiliary = _class_list(data.get("auxiliary_classes", data.get("tailwindClasses")))
        for cls_name in _class_list(data.get("classes")):
            (addressable if cls_name.startswith(prefix) else auxiliary).append(cls_name)
        text = data.get("text")
        children = tuple(cls.from_dict(child, prefix) for child in data.get("children") or ())
        return cls(
            tag=str(tag).lower(),
            addressable_classes=frozenset(addressable),
            auxiliary_classes=frozenset(auxiliary),
            text=text.strip() or None if isinstance(text, str) else None,
            children=children,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "tag": self.tag,
            "addressable_classes": sorted(self.addressable_classes),
            "auxiliary_classes": sorted(self.auxiliary_classes),
            "children": [child.to_dict() for child in self.children],
        }
        if self.text is not None:
            result["text"] = self.text
        return result

    def walk(self) -> Iterator[ElementTree]:
        """Yield this element and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def all_addressable_classes(self) -> list[str]:
        """Every addressable class in the tree, sorted and de-duplicated."""
        found: set[str] = set()
        for node in self.walk():
            found.update(node.addressable_classes)
        return sorted(found)

    def prune(self) -> ElementTree | None:
        """Drop subtrees that contain no addressable class.

        Returns None when nothing in this subtree is addressable.
        """
        kept = tuple(p for p in (child.prune() for child in self.children) if p is not None)
        if not self.addressable_classes and not kept:
            return None
        return ElementTree(
            tag=self.tag,
            addressable_classes=self.addressable_classes,
            auxiliary_classes=self.auxiliary_classes,
            text=self.text,
            children=kept,
        )

    def format_tree(self, indent: int = 0, *, include_auxiliary: bool = True) -> str:
        """Render the tree as indented pseudo-markup for prompts."""
        pad = "  " * indent
        line = f"{pad}<{self.tag}"
        if self.addressable_classes:
            line += f' classes="{" ".join(sorted(self.addressable_classes))}"'
        if include_auxiliary and self.auxiliary_classes:
            line += f' utility-classes="{" ".join(sorted(self.auxiliary_classes))}"'
        line += ">"
        if self.text:
            preview = self.text[:TEXT_PREVIEW_LIMIT]
            if len(self.text) > TEXT_PREVIEW_LIMIT:
                preview += "..."
            line += f" {preview}"

        if not self.children:
            return f"{line} </{self.tag}>"
        inner = "\n".join(
            child.format_tree(indent + 1, include_auxiliary=include_auxiliary)
            for child in self.children
        )
        return f"{line}\n{inner}\n{pad}</{self.tag}>"
