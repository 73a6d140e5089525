from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class GenerationAttempt:
    """One call to the model service, including retries of the same stage."""

    iteration: int
    retry_count: int
    session_id: str
    purpose: str  # "generate" or "evaluate"
    prompt_context: str
    started_at: str = field(default_factory=_now)
