from __future__ import annotations

from stylepilot.model.artifact import Artifact
from stylepilot.model.attempt import GenerationAttempt
from stylepilot.model.run import (
    HistoryEntry,
    Outcome,
    RefinementFailure,
    RefinementResult,
    RefinementRun,
    RunState,
)
from stylepilot.model.snapshot import ElementTree
from stylepilot.model.verdict import EvaluationVerdict, MalformedResponse, Revised, Unchanged

__all__ = [
    # snapshot
    "ElementTree",
    # attempt
    "GenerationAttempt",
    # verdict
    "EvaluationVerdict",
    "MalformedResponse",
    "Revised",
    "Unchanged",
    # run
    "HistoryEntry",
    "Outcome",
    "RefinementFailure",
    "RefinementResult",
    "RefinementRun",
    "RunState",
    # artifact
    "Artifact",
]
