from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from stylepilot.model.verdict import EvaluationVerdict, Revised

if TYPE_CHECKING:
    from stylepilot.stylesheet import StyleDocument


class RunState(StrEnum):
    IDLE = "idle"
    GENERATING = "generating"
    APPLYING = "applying"
    CAPTURING = "capturing"
    EVALUATING = "evaluating"
    DECIDING = "deciding"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {RunState.CONVERGED, RunState.EXHAUSTED, RunState.FAILED, RunState.CANCELLED}
)


class Outcome(StrEnum):
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class HistoryEntry:
    iteration: int
    verdict: EvaluationVerdict
    applied_css: str


@dataclass
class RefinementRun:
    """Mutable state of one refinement run.

    The caller creates and owns the object; only the orchestrator mutates it.
    """

    max_iterations: int = 3
    quality_threshold: float | None = None
    stall_ratio: float | None = None
    history: list[HistoryEntry] = field(default_factory=list)
    state: RunState = RunState.IDLE
    iteration: int = 0

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.stall_ratio is not None and not 0.0 <= self.stall_ratio <= 1.0:
            raise ValueError("stall_ratio must be between 0 and 1")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def last_verdict(self) -> EvaluationVerdict | None:
        return self.history[-1].verdict if self.history else None

    @property
    def last_feedback(self) -> str:
        verdict = self.last_verdict
        return verdict.feedback if isinstance(verdict, Revised) else ""


@dataclass(frozen=True)
class RefinementFailure:
    iteration: int
    stage: str
    message: str
    detail: Any = None
    error: BaseException | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RefinementResult:
    outcome: Outcome
    final_css: str
    document: StyleDocument
    run: RefinementRun = field(compare=False)
    failure: RefinementFailure | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (Outcome.CONVERGED, Outcome.EXHAUSTED)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "outcome": str(self.outcome),
            "final_css": self.final_css,
            "stylesheet": self.document.render(),
            "iterations": self.run.iteration,
        }
        if self.failure is not None:
            result["failure"] = {
                "iteration": self.failure.iteration,
                "stage": self.failure.stage,
                "message": self.failure.message,
            }
        return result
