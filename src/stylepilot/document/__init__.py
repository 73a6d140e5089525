from __future__ import annotations

from stylepilot.document.base import Document
from stylepilot.document.file_document import FileDocument
from stylepilot.document.stub import StubDocument

__all__ = ["Document", "FileDocument", "StubDocument"]
