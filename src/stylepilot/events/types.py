"""Event types emitted during a refinement run."""

from dataclasses import dataclass

from stylepilot.model.run import RefinementResult, RunState


@dataclass(frozen=True)
class ProgressEvent:
    iteration: int
    stage: RunState
    message: str
    level: str = "info"  # info, warning or error

    def format(self) -> str:
        return f"[{self.stage}] ({self.iteration}) {self.message}"


@dataclass(frozen=True)
class RunFinished:
    result: RefinementResult
