"""Event system: bus and progress events for refinement runs."""

from stylepilot.events.bus import EventBus
from stylepilot.events.types import ProgressEvent, RunFinished

__all__ = [
    "EventBus",
    "ProgressEvent",
    "RunFinished",
]
