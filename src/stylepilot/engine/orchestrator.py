"""Refinement orchestrator: drives generate -> apply -> capture -> evaluate -> decide."""

from __future__ import annotations

import asyncio
import contextlib
import difflib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pilot_llm.errors import GatewayError
from pilot_llm.gateway import ModelServiceGateway
from pilot_llm.types import ContentPart, ImageData
from stylepilot.config import PilotConfig
from stylepilot.document.base import Document
from stylepilot.engine import prompts
from stylepilot.engine.extractor import extract_or_raise
from stylepilot.engine.retry import RetryNotice, RetryPolicy
from stylepilot.engine.session import SessionIdIssuer
from stylepilot.errors import (
    CaptureUnavailableError,
    DocumentApplyError,
    MalformedResponseError,
    RefinementCancelled,
)
from stylepilot.events.bus import EventBus
from stylepilot.events.types import ProgressEvent, RunFinished
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
from stylepilot.model.verdict import EvaluationVerdict, Revised, Unchanged
from stylepilot.stylesheet import BlockKey, PatchBlock, StyleDocument, check_css

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BLOCK_KEY = BlockKey("pilot", "generated")

Emit = Callable[[Any], None]


class CancellationToken:
    """Cooperative cancellation flag checked at every state boundary."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RefinementCancelled("Refinement cancelled by caller")


@dataclass(frozen=True)
class RefinementRequest:
    """What to refine and where the result goes.

    By default the model writes one combined stylesheet into *block_key*.
    When *preference_keys* is given the model answers with one marked block
    per preference and each block is stored under its own key.
    """

    intent: str
    images: tuple[ImageData, ...] = field(default=())
    block_key: BlockKey = DEFAULT_BLOCK_KEY
    preference_keys: tuple[BlockKey, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "images", tuple(self.images))
        object.__setattr__(self, "preference_keys", tuple(self.preference_keys))
        if len(set(self.preference_keys)) != len(self.preference_keys):
            raise ValueError("preference_keys must be unique")

    @property
    def per_preference(self) -> bool:
        return bool(self.preference_keys)

    @property
    def managed_keys(self) -> tuple[BlockKey, ...]:
        return self.preference_keys or (self.block_key,)

    def managed_css(self, doc: StyleDocument) -> str:
        """The CSS this run owns in *doc*; marked blocks in per-preference mode."""
        if not self.per_preference:
            return doc.get(self.block_key) or ""
        rendered = []
        for key in self.preference_keys:
            body = doc.get(key)
            if body is not None:
                rendered.append(PatchBlock(key, body).render())
        return "\n\n".join(rendered)

    def outside(self, doc: StyleDocument) -> StyleDocument:
        """*doc* without the blocks this run owns."""
        for key in self.managed_keys:
            doc = doc.remove(key)
        return doc

    def merge(self, doc: StyleDocument, css: str) -> StyleDocument:
        """Store a model payload in *doc*.

        In per-preference mode the payload is parsed and every block for a
        requested key is upserted; blocks for other keys are ignored.
        """
        if not self.per_preference:
            return doc.upsert(self.block_key, css)
        found = [b for b in StyleDocument.parse(css).blocks() if b.key in self.preference_keys]
        if not found:
            raise MalformedResponseError(
                "Response contains no blocks for the requested preferences", raw=css
            )
        for block in found:
            doc = doc.upsert(block.key, block.body)
        return doc


def stall_distance(old: str, new: str) -> float:
    """Fraction of *old* that changed in *new*: 0.0 identical, 1.0 disjoint."""
    return 1.0 - difflib.SequenceMatcher(None, old, new, autojunk=False).ratio()


def _failure_detail(exc: BaseException) -> dict[str, Any]:
    detail: dict[str, Any] = {"type": type(exc).__name__}
    notes = getattr(exc, "__notes__", None)
    if notes:
        detail["notes"] = list(notes)
    if isinstance(exc, GatewayError):
        detail["provider"] = exc.provider
        if exc.status_code is not None:
            detail["status_code"] = exc.status_code
        if exc.raw is not None:
            detail["raw"] = exc.raw
    elif isinstance(exc, MalformedResponseError) and exc.raw:
        detail["raw"] = exc.raw
    return detail


class RefinementOrchestrator:
    """Runs one refinement loop against a gateway and a document.

    Independent runs share nothing mutable: each call gets its own run
    object, document and cancellation token.
    """

    def __init__(
        self,
        gateway: ModelServiceGateway,
        document: Document,
        *,
        config: PilotConfig | None = None,
        bus: EventBus | None = None,
        issuer: SessionIdIssuer | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._document = document
        self._config = config or PilotConfig()
        self._bus = bus or EventBus()
        self._issuer = issuer or SessionIdIssuer()
        self._sleep = sleep
        self._retry = RetryPolicy(self._config.max_attempts, self._config.retry_delay)

    @property
    def bus(self) -> EventBus:
        return self._bus

    def new_run(self) -> RefinementRun:
        """A fresh run carrying the configured budget and thresholds."""
        return RefinementRun(
            max_iterations=self._config.max_iterations,
            quality_threshold=self._config.quality_threshold,
            stall_ratio=self._config.stall_ratio,
        )

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        request: RefinementRequest,
        run: RefinementRun | None = None,
        document: StyleDocument | None = None,
        cancel: CancellationToken | None = None,
    ) -> RefinementResult:
        """Run to completion and return the result."""
        return await self._execute(
            request,
            run if run is not None else self.new_run(),
            document if document is not None else StyleDocument(),
            cancel or CancellationToken(),
            self._bus.emit,
        )

    async def stream(
        self,
        request: RefinementRequest,
        run: RefinementRun | None = None,
        document: StyleDocument | None = None,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[ProgressEvent | RefinementResult]:
        """Yield progress events as they happen, then the final result."""
        cancel = cancel or CancellationToken()
        queue: asyncio.Queue = asyncio.Queue()
        done = object()

        def emit(event: Any) -> None:
            self._bus.emit(event)
            if isinstance(event, ProgressEvent):
                queue.put_nowait(event)

        async def drive() -> RefinementResult:
            try:
                return await self._execute(
                    request,
                    run if run is not None else self.new_run(),
                    document if document is not None else StyleDocument(),
                    cancel,
                    emit,
                )
            finally:
                queue.put_nowait(done)

        task = asyncio.create_task(drive())
        try:
            while True:
                item = await queue.get()
                if item is done:
                    break
                yield item
            yield await task
        finally:
            if not task.done():
                cancel.cancel()
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _enter(
        self,
        run: RefinementRun,
        state: RunState,
        message: str,
        emit: Emit,
        cancel: CancellationToken,
    ) -> None:
        cancel.raise_if_cancelled()
        run.state = state
        logger.info("[%s] iteration %d: %s", state, run.iteration, message)
        emit(ProgressEvent(run.iteration, state, message))

    async def _execute(
        self,
        request: RefinementRequest,
        run: RefinementRun,
        doc: StyleDocument,
        cancel: CancellationToken,
        emit: Emit,
    ) -> RefinementResult:
        if run.state is not RunState.IDLE:
            raise ValueError(f"RefinementRun already used (state={run.state})")
        # Last document confirmed by apply_style; doc may hold a pending revision.
        applied = doc

        try:
            while True:
                run.iteration += 1
                iteration = run.iteration
                self._enter(
                    run,
                    RunState.GENERATING,
                    f"Generating CSS (iteration {iteration}/{run.max_iterations})",
                    emit,
                    cancel,
                )
                snapshot = await self._fetch_snapshot(run, emit, cancel)
                baseline = request.managed_css(doc)
                generated = await self._generate(request, run, doc, snapshot, baseline, emit, cancel)

                if isinstance(generated, Unchanged):
                    if not baseline:
                        raise MalformedResponseError(
                            "Model reported no changes but there is no CSS to keep",
                            raw="UNCHANGED",
                        )
                    if doc != applied:
                        self._enter(run, RunState.APPLYING, "Applying the kept revision", emit, cancel)
                        await self._apply(doc, baseline, run, emit)
                        applied = doc
                    run.history.append(HistoryEntry(iteration, generated, baseline))
                    return self._finish(run, Outcome.CONVERGED, request, applied, emit, cancel,
                                        "Model reported the current CSS needs no changes")

                doc = request.merge(doc, generated.css)
                applied_css = request.managed_css(doc)
                self._enter(run, RunState.APPLYING, "Applying generated CSS", emit, cancel)
                await self._apply(doc, applied_css, run, emit)
                applied = doc

                self._enter(run, RunState.CAPTURING, "Capturing render", emit, cancel)
                capture = await self._capture_or_none(run, emit)

                self._enter(run, RunState.EVALUATING, "Evaluating result", emit, cancel)
                verdict = await self._evaluate(request, run, applied_css, capture, emit, cancel)

                self._enter(run, RunState.DECIDING, self._describe(verdict), emit, cancel)
                run.history.append(HistoryEntry(iteration, verdict, applied_css))

                if isinstance(verdict, Unchanged):
                    return self._finish(run, Outcome.CONVERGED, request, applied, emit, cancel,
                                        "Evaluator accepted the result")
                if (
                    run.quality_threshold is not None
                    and verdict.quality_score is not None
                    and verdict.quality_score >= run.quality_threshold
                ):
                    return self._finish(
                        run, Outcome.CONVERGED, request, applied, emit, cancel,
                        f"Quality score {verdict.quality_score:g} meets threshold "
                        f"{run.quality_threshold:g}",
                    )
                if run.stall_ratio is not None and iteration >= 2:
                    distance = stall_distance(applied_css, verdict.css)
                    if distance < run.stall_ratio:
                        return self._finish(
                            run, Outcome.CONVERGED, request, applied, emit, cancel,
                            f"Revision changed only {distance:.1%} of the CSS",
                        )

                doc = request.merge(doc, verdict.css)
                if iteration >= run.max_iterations:
                    self._enter(run, RunState.APPLYING, "Applying final revision", emit, cancel)
                    await self._apply(doc, request.managed_css(doc), run, emit)
                    applied = doc
                    return self._finish(run, Outcome.EXHAUSTED, request, applied, emit, cancel,
                                        f"Iteration budget of {run.max_iterations} used up")

        except RefinementCancelled:
            run.state = RunState.CANCELLED
            emit(ProgressEvent(run.iteration, RunState.CANCELLED, "Refinement cancelled", "warning"))
            result = RefinementResult(Outcome.CANCELLED, request.managed_css(applied), applied, run)
            emit(RunFinished(result))
            return result
        except Exception as exc:
            stage = run.state
            failure = RefinementFailure(
                iteration=run.iteration,
                stage=str(stage),
                message=str(exc),
                detail=_failure_detail(exc),
                error=exc,
            )
            logger.error("Refinement failed in %s at iteration %d: %s", stage, run.iteration, exc)
            run.state = RunState.FAILED
            emit(ProgressEvent(run.iteration, RunState.FAILED, f"{stage} failed: {exc}", "error"))
            result = RefinementResult(
                Outcome.FAILED, request.managed_css(applied), applied, run, failure
            )
            emit(RunFinished(result))
            return result

    def _finish(
        self,
        run: RefinementRun,
        outcome: Outcome,
        request: RefinementRequest,
        doc: StyleDocument,
        emit: Emit,
        cancel: CancellationToken,
        message: str,
    ) -> RefinementResult:
        state = RunState.CONVERGED if outcome is Outcome.CONVERGED else RunState.EXHAUSTED
        self._enter(run, state, message, emit, cancel)
        result = RefinementResult(outcome, request.managed_css(doc), doc, run)
        emit(RunFinished(result))
        return result

    @staticmethod
    def _describe(verdict: EvaluationVerdict) -> str:
        if isinstance(verdict, Unchanged):
            return "Verdict: unchanged"
        if verdict.quality_score is not None:
            return f"Verdict: revised (quality score {verdict.quality_score:g})"
        return "Verdict: revised"

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _on_retry(self, run: RefinementRun, emit: Emit, purpose: str) -> Callable[[RetryNotice], None]:
        def notify(notice: RetryNotice) -> None:
            emit(
                ProgressEvent(
                    run.iteration,
                    run.state,
                    f"{purpose} attempt {notice.attempt}/{notice.max_attempts} failed "
                    f"({type(notice.error).__name__}: {notice.error}); "
                    f"retry {notice.attempt} in {notice.delay:g}s",
                    "warning",
                )
            )

        return notify

    async def _fetch_snapshot(
        self, run: RefinementRun, emit: Emit, cancel: CancellationToken
    ) -> ElementTree:
        async def fetch(attempt: int) -> ElementTree:
            cancel.raise_if_cancelled()
            return await asyncio.wait_for(
                self._document.get_snapshot(), timeout=self._config.snapshot_timeout
            )

        result = await self._retry.run(
            fetch, on_retry=self._on_retry(run, emit, "Snapshot"), sleep=self._sleep
        )
        return result.value

    async def _call_model(
        self,
        run: RefinementRun,
        purpose: str,
        system_prompt: str,
        build: Callable[[int], tuple[list[ContentPart], str]],
        emit: Emit,
        cancel: CancellationToken,
    ) -> str:
        """Call the gateway under the retry policy with a fresh session per attempt.

        *build* receives the attempt number and returns ``(parts, prompt_context)``.
        """

        async def attempt(number: int) -> str:
            cancel.raise_if_cancelled()
            parts, context = build(number)
            record = GenerationAttempt(
                iteration=run.iteration,
                retry_count=number - 1,
                session_id=self._issuer.issue(purpose),
                purpose=purpose,
                prompt_context=context,
            )
            logger.debug(
                "%s attempt: iteration=%d retry=%d session=%s",
                purpose,
                record.iteration,
                record.retry_count,
                record.session_id,
            )
            return await asyncio.wait_for(
                self._gateway.send(record.session_id, system_prompt, parts),
                timeout=self._config.request_timeout,
            )

        result = await self._retry.run(
            attempt, on_retry=self._on_retry(run, emit, purpose.capitalize()), sleep=self._sleep
        )
        cancel.raise_if_cancelled()
        if result.retry_count:
            emit(
                ProgressEvent(
                    run.iteration,
                    run.state,
                    f"{purpose.capitalize()} succeeded after {result.retry_count} retr"
                    f"{'y' if result.retry_count == 1 else 'ies'}",
                )
            )
        return result.value

    async def _generate(
        self,
        request: RefinementRequest,
        run: RefinementRun,
        doc: StyleDocument,
        snapshot: ElementTree,
        baseline: str,
        emit: Emit,
        cancel: CancellationToken,
    ) -> EvaluationVerdict:
        other_css = request.outside(doc).render()
        feedback = run.last_feedback

        def build(number: int) -> tuple[list[ContentPart], str]:
            retrying = number > 1
            text = prompts.build_generation_prompt(
                request.intent,
                snapshot,
                iteration=run.iteration,
                current_css=baseline,
                other_css=other_css,
                feedback=feedback,
                compact=retrying,
                preference_keys=request.preference_keys,
            )
            images = () if retrying else request.images
            parts = [ContentPart.of_image(img) for img in images]
            parts.append(ContentPart.of_text(text))
            return parts, text

        raw = await self._call_model(run, "generate", prompts.GENERATE_SYSTEM, build, emit, cancel)
        return extract_or_raise(raw)

    async def _apply(
        self, doc: StyleDocument, css: str, run: RefinementRun, emit: Emit
    ) -> None:
        for warning in check_css(css, self._config.class_prefix):
            emit(ProgressEvent(run.iteration, run.state, f"CSS warning: {warning}", "warning"))

        timeout = self._config.apply_timeout
        try:
            ok = await asyncio.wait_for(self._document.apply_style(doc.render()), timeout=timeout)
        except TimeoutError as exc:
            raise DocumentApplyError(
                f"Applying the stylesheet timed out after {timeout:g}s", cause=exc
            ) from exc
        except DocumentApplyError:
            raise
        except Exception as exc:
            raise DocumentApplyError(f"Applying the stylesheet failed: {exc}", cause=exc) from exc
        if not ok:
            raise DocumentApplyError("Document rejected the stylesheet")

        if self._config.settle_delay > 0:
            await self._sleep(self._config.settle_delay)

    async def _capture(self) -> ImageData:
        timeout = self._config.capture_timeout
        try:
            capture = await asyncio.wait_for(self._document.capture_render(), timeout=timeout)
        except TimeoutError as exc:
            raise CaptureUnavailableError(
                f"Capture timed out after {timeout:g}s", cause=exc
            ) from exc
        except CaptureUnavailableError:
            raise
        except Exception as exc:
            raise CaptureUnavailableError(f"Capture failed: {exc}", cause=exc) from exc
        if capture is None:
            raise CaptureUnavailableError("Document returned no capture")
        return capture

    async def _capture_or_none(self, run: RefinementRun, emit: Emit) -> ImageData | None:
        try:
            return await self._capture()
        except CaptureUnavailableError as exc:
            logger.warning("Capture unavailable at iteration %d: %s", run.iteration, exc)
            emit(
                ProgressEvent(
                    run.iteration,
                    run.state,
                    f"{exc}; evaluating without a screenshot",
                    "warning",
                )
            )
            return None

    async def _evaluate(
        self,
        request: RefinementRequest,
        run: RefinementRun,
        applied_css: str,
        capture: ImageData | None,
        emit: Emit,
        cancel: CancellationToken,
    ) -> EvaluationVerdict:
        text = prompts.build_evaluation_prompt(
            request.intent,
            applied_css,
            iteration=run.iteration,
            has_capture=capture is not None,
            reference_count=len(request.images),
            quality_threshold=run.quality_threshold,
            preference_keys=request.preference_keys,
        )
        parts: list[ContentPart] = [ContentPart.of_image(img) for img in request.images]
        if capture is not None:
            parts.append(ContentPart.of_image(capture))
        parts.append(ContentPart.of_text(text))

        def build(number: int) -> tuple[list[ContentPart], str]:
            return parts, text

        raw = await self._call_model(run, "evaluate", prompts.EVALUATE_SYSTEM, build, emit, cancel)
        return extract_or_raise(raw)


async def collect(stream: AsyncIterator[T]) -> list[T]:
    """Drain an async iterator into a list."""
    return [item async for item in stream]


def final_result(items: Sequence[Any]) -> RefinementResult:
    """The RefinementResult at the end of a drained stream."""
    result = items[-1] if items else None
    if not isinstance(result, RefinementResult):
        raise ValueError("Stream did not end with a RefinementResult")
    return result
