"""Tests for the refinement orchestrator."""
from __future__ import annotations

import pytest

from pilot_llm.errors import AuthError, OverloadedError
from pilot_llm.gateway import StubGateway
from pilot_llm.types import ContentKind, ImageData
from stylepilot.config import PilotConfig
from stylepilot.document.stub import StubDocument
from stylepilot.engine.orchestrator import (
    DEFAULT_BLOCK_KEY,
    CancellationToken,
    RefinementOrchestrator,
    RefinementRequest,
    collect,
    final_result,
)
from stylepilot.errors import CaptureUnavailableError, DocumentApplyError, MalformedResponseError
from stylepilot.events.bus import EventBus
from stylepilot.events.types import ProgressEvent, RunFinished
from stylepilot.model.run import Outcome, RefinementResult, RefinementRun, RunState
from stylepilot.model.snapshot import ElementTree
from stylepilot.model.verdict import Revised, Unchanged
from stylepilot.stylesheet import BlockKey, StyleDocument

SNAPSHOT = ElementTree.from_dict(
    {
        "tag": "body",
        "children": [
            {
                "tagName": "header",
                "portalClasses": ["portal-hdr"],
                "tailwindClasses": ["flex"],
                "text": "Welcome",
            }
        ],
    }
)
REF = ImageData(b"reference", name="ref.png")
CAP = ImageData(b"capture", name="capture.png")

CSS_A = ".portal-hdr { color: red; }"
CSS_B = ".portal-hdr { color: blue; }"
CSS_C = ".portal-hdr { color: navy; padding: 8px; }"
CSS_D = ".portal-hdr { color: navy; padding: 12px; }"


def fenced(css: str, prose: str = "", score: float | None = None) -> str:
    text = f"{prose}\n```css\n{css}\n```" if prose else f"```css\n{css}\n```"
    if score is not None:
        text += f"\nQUALITY_SCORE: {score}"
    return text


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Harness:
    def __init__(self, replies, document: StubDocument | None = None, **config) -> None:
        self.gateway = StubGateway(replies)
        self.document = document or StubDocument(SNAPSHOT)
        self.bus = EventBus()
        self.events: list = []
        self.bus.on_all(self.events.append)
        self.sleep = FakeSleep()
        self.config = PilotConfig(retry_delay=0.0, settle_delay=0.0, **config)
        self.orchestrator = RefinementOrchestrator(
            self.gateway, self.document, config=self.config, bus=self.bus, sleep=self.sleep
        )

    @property
    def progress(self) -> list[ProgressEvent]:
        return [e for e in self.events if isinstance(e, ProgressEvent)]

    def stages(self) -> list[RunState]:
        return [e.stage for e in self.progress if e.level == "info"]


def request(images=()) -> RefinementRequest:
    return RefinementRequest(intent="A calm blue header", images=images)


class TestConvergence:
    async def test_evaluator_unchanged_converges(self) -> None:
        h = Harness([fenced(CSS_A), "UNCHANGED"])
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.CONVERGED
        assert result.final_css == CSS_A
        assert result.document.get(DEFAULT_BLOCK_KEY) == CSS_A
        assert h.document.applied == [result.document.render()]
        assert result.run.state is RunState.CONVERGED
        assert result.run.iteration == 1
        assert [entry.verdict for entry in result.run.history] == [Unchanged()]
        assert h.stages() == [
            RunState.GENERATING,
            RunState.APPLYING,
            RunState.CAPTURING,
            RunState.EVALUATING,
            RunState.DECIDING,
            RunState.CONVERGED,
        ]
        assert isinstance(h.events[-1], RunFinished)

    async def test_quality_threshold_keeps_applied_css(self) -> None:
        h = Harness([fenced(CSS_A), fenced(CSS_B, "Nearly there", 9)], quality_threshold=8.0)
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.CONVERGED
        assert result.final_css == CSS_A
        verdict = result.run.history[-1].verdict
        assert isinstance(verdict, Revised) and verdict.quality_score == 9.0

    async def test_score_below_threshold_continues(self) -> None:
        h = Harness(
            [fenced(CSS_A), fenced(CSS_B, score=5), fenced(CSS_C), "UNCHANGED"],
            quality_threshold=8.0,
        )
        result = await h.orchestrator.run(request())
        assert result.outcome is Outcome.CONVERGED
        assert result.run.iteration == 2
        assert result.final_css == CSS_C

    async def test_stall_detection(self) -> None:
        h = Harness(
            [fenced(CSS_A), fenced(".portal-hdr { margin: 0 auto; }"), fenced(CSS_C), fenced(CSS_D)],
            max_iterations=5,
            stall_ratio=0.2,
        )
        result = await h.orchestrator.run(request())
        assert result.outcome is Outcome.CONVERGED
        assert result.run.iteration == 2
        assert result.final_css == CSS_C

    async def test_generation_unchanged_with_baseline_converges(self) -> None:
        h = Harness(["UNCHANGED"])
        start = StyleDocument().upsert(DEFAULT_BLOCK_KEY, CSS_A)
        result = await h.orchestrator.run(request(), document=start)
        assert result.outcome is Outcome.CONVERGED
        assert result.final_css == CSS_A
        assert h.document.applied == []

    async def test_generation_unchanged_without_baseline_fails(self) -> None:
        h = Harness(["UNCHANGED"])
        result = await h.orchestrator.run(request())
        assert result.outcome is Outcome.FAILED
        assert isinstance(result.failure.error, MalformedResponseError)
        assert result.failure.stage == "generating"


class TestExhaustion:
    async def test_budget_exhausted_applies_final_revision(self) -> None:
        h = Harness(
            [
                fenced(CSS_A),
                fenced(CSS_B, "feedback one: header too loud"),
                fenced(CSS_C),
                fenced(CSS_D, "still off"),
            ],
            max_iterations=2,
        )
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.EXHAUSTED
        assert result.final_css == CSS_D
        assert result.run.iteration == 2
        assert len(result.run.history) == 2
        assert [StyleDocument.parse(css).get(DEFAULT_BLOCK_KEY) for css in h.document.applied] == [
            CSS_A,
            CSS_C,
            CSS_D,
        ]
        assert len(h.gateway.calls) == 4

    async def test_feedback_and_baseline_carried_forward(self) -> None:
        h = Harness(
            [fenced(CSS_A), fenced(CSS_B, "feedback one: header too loud"), fenced(CSS_C), "UNCHANGED"],
            max_iterations=3,
        )
        await h.orchestrator.run(request())

        first, second = h.gateway.calls[0].text, h.gateway.calls[2].text
        assert "PREVIOUS FEEDBACK" not in first
        assert "feedback one: header too loud" in second
        assert CSS_B in second

    async def test_single_iteration_budget(self) -> None:
        h = Harness([fenced(CSS_A), fenced(CSS_B)], max_iterations=1)
        result = await h.orchestrator.run(request())
        assert result.outcome is Outcome.EXHAUSTED
        assert result.final_css == CSS_B


class TestModelCalls:
    async def test_fresh_session_per_call(self) -> None:
        h = Harness([OverloadedError("busy"), fenced(CSS_A), fenced(CSS_B), fenced(CSS_C), "UNCHANGED"])
        await h.orchestrator.run(request())

        session_ids = [call.session_id for call in h.gateway.calls]
        assert len(session_ids) == len(set(session_ids)) == 5
        assert session_ids[0].startswith("generate_fresh_")
        assert session_ids[2].startswith("evaluate_fresh_")

    async def test_retry_sends_compact_payload_and_reports(self) -> None:
        h = Harness([OverloadedError("busy"), fenced(CSS_A), "UNCHANGED"])
        result = await h.orchestrator.run(request(images=(REF,)))

        assert result.outcome is Outcome.CONVERGED
        first, retry = h.gateway.calls[0], h.gateway.calls[1]
        assert first.image_count == 1
        assert 'utility-classes="flex"' in first.text
        assert retry.image_count == 0
        assert "utility-classes" not in retry.text
        assert h.document.snapshot_calls == 1
        assert any("retry 1" in e.message for e in h.progress)
        assert any("succeeded after 1 retry" in e.message for e in h.progress)
        assert h.sleep.delays == [0.0]

    async def test_evaluation_parts_order(self) -> None:
        document = StubDocument(SNAPSHOT, captures=[CAP])
        h = Harness([fenced(CSS_A), "UNCHANGED"], document=document)
        await h.orchestrator.run(request(images=(REF,)))

        parts = h.gateway.calls[1].parts
        assert [p.kind for p in parts] == [ContentKind.IMAGE, ContentKind.IMAGE, ContentKind.TEXT]
        assert parts[0].image == REF
        assert parts[1].image == CAP
        assert CSS_A in parts[2].text

    async def test_other_styles_are_shown(self) -> None:
        h = Harness([fenced(CSS_A), "UNCHANGED"])
        start = StyleDocument.parse("body { background: #eee; }")
        result = await h.orchestrator.run(request(), document=start)

        assert "body { background: #eee; }" in h.gateway.calls[0].text
        assert result.document.render().startswith("body { background: #eee; }\n\n")


class TestCapture:
    @pytest.mark.parametrize("capture", [None, RuntimeError("tab closed"), CaptureUnavailableError("x")])
    async def test_capture_failure_falls_back_to_text(self, capture) -> None:
        document = StubDocument(SNAPSHOT, captures=[capture])
        h = Harness([fenced(CSS_A), "UNCHANGED"], document=document)
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.CONVERGED
        assert h.gateway.calls[1].image_count == 0
        assert "No screenshot is available" in h.gateway.calls[1].text
        warnings = [e for e in h.progress if e.level == "warning"]
        assert any("without a screenshot" in e.message for e in warnings)


class TestFailures:
    async def test_fatal_gateway_error(self) -> None:
        h = Harness([AuthError("bad key", provider="gemini", status_code=401)])
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.FAILED
        assert result.run.state is RunState.FAILED
        failure = result.failure
        assert failure.iteration == 1
        assert failure.stage == "generating"
        assert failure.message == "bad key"
        assert failure.detail["type"] == "AuthError"
        assert failure.detail["status_code"] == 401
        assert isinstance(failure.error, AuthError)
        assert len(h.gateway.calls) == 1

    async def test_retries_exhausted(self) -> None:
        h = Harness([OverloadedError("busy")] * 3, max_attempts=3)
        result = await h.orchestrator.run(request())
        assert result.outcome is Outcome.FAILED
        assert len(h.gateway.calls) == 3
        assert any("3 attempt(s)" in note for note in result.failure.detail["notes"])

    @pytest.mark.parametrize("apply_result", [False, RuntimeError("renderer crashed")])
    async def test_apply_failure(self, apply_result) -> None:
        document = StubDocument(SNAPSHOT, apply_results=[apply_result])
        h = Harness([fenced(CSS_A)], document=document)
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.FAILED
        assert result.failure.stage == "applying"
        assert isinstance(result.failure.error, DocumentApplyError)

    async def test_malformed_evaluation(self) -> None:
        h = Harness([fenced(CSS_A), "I cannot see the page"], max_iterations=3)
        result = await h.orchestrator.run(request())
        assert result.outcome is Outcome.FAILED
        assert result.failure.stage == "evaluating"
        assert result.failure.detail["raw"] == "I cannot see the page"
        assert result.final_css == CSS_A

    async def test_run_cannot_be_reused(self) -> None:
        h = Harness([fenced(CSS_A), "UNCHANGED"])
        run = RefinementRun(max_iterations=2)
        await h.orchestrator.run(request(), run)
        with pytest.raises(ValueError):
            await h.orchestrator.run(request(), run)


class CancellingGateway(StubGateway):
    def __init__(self, token: CancellationToken, replies) -> None:
        super().__init__(replies)
        self.token = token

    async def send(self, session_id, system_prompt, parts):
        self.token.cancel()
        return await super().send(session_id, system_prompt, parts)


class TestCancellation:
    async def test_cancel_before_start(self) -> None:
        h = Harness([fenced(CSS_A)])
        token = CancellationToken()
        token.cancel()
        result = await h.orchestrator.run(request(), cancel=token)
        assert result.outcome is Outcome.CANCELLED
        assert result.run.state is RunState.CANCELLED
        assert h.gateway.calls == []

    async def test_result_after_cancel_is_discarded(self) -> None:
        token = CancellationToken()
        document = StubDocument(SNAPSHOT)
        orchestrator = RefinementOrchestrator(
            CancellingGateway(token, [fenced(CSS_A)]),
            document,
            config=PilotConfig(retry_delay=0.0, settle_delay=0.0),
        )
        result = await orchestrator.run(request(), cancel=token)
        assert result.outcome is Outcome.CANCELLED
        assert document.applied == []
        assert result.final_css == ""


class TestStream:
    async def test_stream_yields_events_then_result(self) -> None:
        h = Harness([fenced(CSS_A), "UNCHANGED"])
        items = await collect(h.orchestrator.stream(request()))

        result = final_result(items)
        assert isinstance(result, RefinementResult)
        assert result.outcome is Outcome.CONVERGED
        events = items[:-1]
        assert all(isinstance(e, ProgressEvent) for e in events)
        assert events[0].stage is RunState.GENERATING
        assert events[0].iteration == 1
        assert events == h.progress

    async def test_settle_delay_between_apply_and_capture(self) -> None:
        sleep = FakeSleep()
        orchestrator = RefinementOrchestrator(
            StubGateway([fenced(CSS_A), "UNCHANGED"]),
            StubDocument(SNAPSHOT),
            config=PilotConfig(settle_delay=1.5),
            sleep=sleep,
        )
        await orchestrator.run(request())
        assert sleep.delays == [1.5]


class CancelOnCall(StubGateway):
    """Cancels the token when the given (1-based) call starts."""

    def __init__(self, token: CancellationToken, replies, call: int) -> None:
        super().__init__(replies)
        self.token = token
        self.call = call

    async def send(self, session_id, system_prompt, parts):
        if len(self.calls) + 1 == self.call:
            self.token.cancel()
        return await super().send(session_id, system_prompt, parts)


def blocks_applied(document: StubDocument) -> list[str | None]:
    return [StyleDocument.parse(css).get(DEFAULT_BLOCK_KEY) for css in document.applied]


class TestPendingRevision:
    async def test_kept_revision_is_applied_before_converging(self) -> None:
        h = Harness([fenced(CSS_A), fenced(CSS_B, "needs blue"), "UNCHANGED"], max_iterations=3)
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.CONVERGED
        assert result.final_css == CSS_B
        assert blocks_applied(h.document) == [CSS_A, CSS_B]
        assert h.document.applied[-1] == result.document.render()
        assert h.stages().count(RunState.APPLYING) == 2

    async def test_no_extra_apply_when_nothing_pending(self) -> None:
        h = Harness(["UNCHANGED"])
        start = StyleDocument().upsert(DEFAULT_BLOCK_KEY, CSS_A)
        await h.orchestrator.run(request(), document=start)
        assert h.document.applied == []

    async def test_failure_reports_last_applied_css(self) -> None:
        h = Harness([fenced(CSS_A), fenced(CSS_B, "needs blue"), AuthError("bad key")], max_iterations=3)
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.FAILED
        assert result.failure.iteration == 2
        assert result.final_css == CSS_A
        assert result.document.get(DEFAULT_BLOCK_KEY) == CSS_A
        assert blocks_applied(h.document) == [CSS_A]

    async def test_failed_apply_of_kept_revision(self) -> None:
        document = StubDocument(SNAPSHOT, apply_results=[True, False])
        h = Harness([fenced(CSS_A), fenced(CSS_B), "UNCHANGED"], document=document)
        result = await h.orchestrator.run(request())

        assert result.outcome is Outcome.FAILED
        assert result.failure.stage == "applying"
        assert result.final_css == CSS_A

    async def test_cancel_reports_last_applied_css(self) -> None:
        token = CancellationToken()
        document = StubDocument(SNAPSHOT)
        orchestrator = RefinementOrchestrator(
            CancelOnCall(token, [fenced(CSS_A), fenced(CSS_B), fenced(CSS_C)], call=3),
            document,
            config=PilotConfig(retry_delay=0.0, settle_delay=0.0),
        )
        result = await orchestrator.run(request(), cancel=token)

        assert result.outcome is Outcome.CANCELLED
        assert result.final_css == CSS_A
        assert blocks_applied(document) == [CSS_A]


class TestStartingStylesheet:
    async def test_literal_only_stylesheet_is_kept(self) -> None:
        h = Harness([fenced(CSS_A), "UNCHANGED"])
        start = StyleDocument.parse("body { margin: 0; }\n")
        assert len(start) == 0

        result = await h.orchestrator.run(request(), document=start)

        assert result.document.render().startswith("body { margin: 0; }\n")
        assert h.document.applied[0].startswith("body { margin: 0; }\n")
        assert result.document.literal_text().startswith("body { margin: 0; }\n")


HDR = BlockKey("hdr", "color")
BTN = BlockKey("btn", "shape")
HDR_CSS = ".portal-hdr { color: navy; }"
BTN_CSS = ".portal-btn { border-radius: 8px; }"


def marked(key: BlockKey, body: str) -> str:
    return f"{key.start_marker}\n{body}\n{key.end_marker}"


def per_preference(images=()) -> RefinementRequest:
    return RefinementRequest(intent="Navy header, round buttons", images=images, preference_keys=(HDR, BTN))


class TestPerPreference:
    async def test_each_block_stored_under_its_key(self) -> None:
        payload = f"{marked(HDR, HDR_CSS)}\n\n{marked(BTN, BTN_CSS)}"
        h = Harness([fenced(payload), "UNCHANGED"])
        result = await h.orchestrator.run(per_preference())

        assert result.outcome is Outcome.CONVERGED
        assert result.document.get(HDR) == HDR_CSS
        assert result.document.get(BTN) == BTN_CSS
        assert DEFAULT_BLOCK_KEY not in result.document
        assert result.final_css == payload
        assert h.document.applied == [result.document.render()]

        generation, evaluation = h.gateway.calls[0].text, h.gateway.calls[1].text
        assert "PREFERENCE BLOCKS:" in generation
        assert HDR.start_marker in generation and BTN.end_marker in generation
        assert payload in evaluation

    async def test_partial_reply_leaves_other_blocks(self) -> None:
        start = (
            StyleDocument.parse("body { margin: 0; }")
            .upsert(HDR, ".portal-hdr { color: red; }")
            .upsert(BTN, BTN_CSS)
        )
        reply = fenced(f"{marked(HDR, HDR_CSS)}\n{marked(BlockKey('x', 'y'), '.portal-x {}')}")
        h = Harness([reply, "UNCHANGED"])
        result = await h.orchestrator.run(per_preference(), document=start)

        assert result.document.get(HDR) == HDR_CSS
        assert result.document.get(BTN) == BTN_CSS
        assert BlockKey("x", "y") not in result.document
        assert result.document.keys() == [HDR, BTN]
        assert result.document.render().startswith("body { margin: 0; }\n\n")

    async def test_current_blocks_shown_as_baseline(self) -> None:
        start = StyleDocument().upsert(HDR, HDR_CSS)
        h = Harness(["UNCHANGED"])
        result = await h.orchestrator.run(per_preference(), document=start)

        assert result.outcome is Outcome.CONVERGED
        assert result.final_css == marked(HDR, HDR_CSS)
        assert marked(HDR, HDR_CSS) in h.gateway.calls[0].text

    async def test_reply_without_requested_blocks_fails(self) -> None:
        h = Harness([fenced(HDR_CSS)])
        result = await h.orchestrator.run(per_preference())

        assert result.outcome is Outcome.FAILED
        assert result.failure.stage == "generating"
        assert isinstance(result.failure.error, MalformedResponseError)
        assert h.document.applied == []

    async def test_revision_updates_blocks(self) -> None:
        first = f"{marked(HDR, '.portal-hdr { color: red; }')}\n\n{marked(BTN, BTN_CSS)}"
        revised = marked(HDR, HDR_CSS)
        h = Harness([fenced(first), fenced(revised, "header should be navy")], max_iterations=1)
        result = await h.orchestrator.run(per_preference())

        assert result.outcome is Outcome.EXHAUSTED
        assert result.document.get(HDR) == HDR_CSS
        assert result.document.get(BTN) == BTN_CSS

    def test_duplicate_keys_rejected(self) -> None:
        with pytest.raises(ValueError):
            RefinementRequest(intent="x", preference_keys=(HDR, HDR))
