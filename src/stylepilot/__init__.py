"""stylepilot: iterative, model-driven stylesheet refinement."""
from __future__ import annotations

from stylepilot.config import PilotConfig
from stylepilot.runner import PilotRunner

__all__ = [
    "PilotConfig",
    "PilotRunner",
]
