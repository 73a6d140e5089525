"""Content parts sent to a model service."""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from pilot_llm._base64 import decode_data_uri, infer_media_type


class ContentKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"


@dataclass(frozen=True)
class ImageData:
    """Raw image bytes plus their media type."""

    data: bytes
    media_type: str = "image/png"
    name: str = ""

    @classmethod
    def from_data_uri(cls, uri: str, name: str = "") -> ImageData:
        """Build from a ``data:image/...;base64,...`` URI."""
        data, media_type = decode_data_uri(uri)
        return cls(data=data, media_type=media_type, name=name)

    @classmethod
    def from_file(cls, path: str | Path) -> ImageData:
        """Read an image from disk, guessing its media type from the suffix."""
        p = Path(path)
        return cls(data=p.read_bytes(), media_type=infer_media_type(str(p)), name=p.name)

    def __repr__(self) -> str:
        return f"ImageData(name={self.name!r}, media_type={self.media_type!r}, size={len(self.data)})"


@dataclass(frozen=True)
class ContentPart:
    """A single piece of request content (tagged union of text or image)."""

    kind: ContentKind
    text: str | None = None
    image: ImageData | None = None

    @classmethod
    def of_text(cls, text: str) -> ContentPart:
        """Create a text content part."""
        return cls(kind=ContentKind.TEXT, text=text)

    @classmethod
    def of_image(cls, image: ImageData) -> ContentPart:
        """Create an image content part."""
        return cls(kind=ContentKind.IMAGE, image=image)
