"""Session ids for model calls; every call gets one nobody else holds."""
from __future__ import annotations

import uuid


class SessionIdIssuer:
    """Issues single-use session ids so no model call can share context."""

    def issue(self, purpose: str) -> str:
        return f"{purpose}_fresh_{uuid.uuid4().hex}"
