"""Refinement engine: orchestrator, retry policy, extractor and session ids."""

from stylepilot.engine.extractor import SENTINEL, extract, extract_or_raise, is_sentinel
from stylepilot.engine.orchestrator import (
    DEFAULT_BLOCK_KEY,
    CancellationToken,
    RefinementOrchestrator,
    RefinementRequest,
    collect,
    final_result,
    stall_distance,
)
from stylepilot.engine.retry import (
    Classification,
    RetryNotice,
    RetryPolicy,
    RetryResult,
    classify_error,
    with_retry,
)
from stylepilot.engine.session import SessionIdIssuer
from stylepilot.model.run import Outcome, RefinementFailure, RefinementResult

__all__ = [
    "CancellationToken",
    "Classification",
    "DEFAULT_BLOCK_KEY",
    "Outcome",
    "RefinementFailure",
    "RefinementOrchestrator",
    "RefinementRequest",
    "RefinementResult",
    "RetryNotice",
    "RetryPolicy",
    "RetryResult",
    "SENTINEL",
    "SessionIdIssuer",
    "classify_error",
    "collect",
    "extract",
    "extract_or_raise",
    "final_result",
    "is_sentinel",
    "stall_distance",
    "with_retry",
]
