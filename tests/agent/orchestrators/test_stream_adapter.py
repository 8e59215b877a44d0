"""
Tests for translating pipeline events into caller stream events.

Tests verify:
- Synthesizer tokens are held until the quality gate accepts the draft
- A rejected draft is discarded and never reaches the caller
- Citations and escalation are emitted once
- Source failures end with an error event and a single done
- Web search urls are sent once at the end of a successful stream
"""

from agent.orchestrators.stream_adapter import GENERIC_STREAM_ERROR, StageEvent, StreamAdapter, adapt_stream
from agent.schemas.agent_state import (
    Citation,
    ConversationState,
    EscalationInfo,
    QualityCheckResult,
)


def citation() -> Citation:
    return Citation(title="USA Swimming Selection Procedures", section="Section 3", snippet="Athletes are ranked")


def escalation() -> EscalationInfo:
    return EscalationInfo(
        target="safesport_center",
        organization="U.S. Center for SafeSport",
        contact_phone="833-5US-SAFE (833-587-7233)",
        reason="Report of misconduct",
        urgency="immediate",
    )


async def replay(events):
    for event in events:
        yield event


async def collect(source, settings):
    return [event async for event in adapt_stream(source, settings)]


def answer_text(events) -> str:
    return "".join(e.text for e in events if e.type == "text-delta")


class TestStreamAdapter:
    def test_tokens_buffered_until_quality_passes(self, settings):
        adapter = StreamAdapter(settings)
        assert adapter.on_token(StageEvent.token("synthesizer", "Hello ")) == []
        assert adapter.on_token(StageEvent.token("synthesizer", "athlete")) == []

        state = ConversationState(answer="Hello athlete")
        events = adapter.on_snapshot(StageEvent.snapshot("synthesizer", state))
        assert [e.type for e in events] == ["status"]

        state.quality_check_result = QualityCheckResult(passed=True, score=0.9)
        events = adapter.on_snapshot(StageEvent.snapshot("qualityChecker", state))

        assert [e.type for e in events] == ["status", "text-delta", "text-delta"]
        assert answer_text(events) == "Hello athlete"
        assert adapter.sent_answer == "Hello athlete"

    def test_tokens_from_other_stages_ignored(self, settings):
        adapter = StreamAdapter(settings)
        adapter.on_token(StageEvent.token("escalate", "ignored"))
        assert adapter.pending == []

    def test_snapshot_replaces_diverging_tokens(self, settings):
        adapter = StreamAdapter(settings)
        adapter.on_token(StageEvent.token("synthesizer", "partial"))

        adapter.on_snapshot(StageEvent.snapshot("synthesizer", ConversationState(answer="Fallback answer")))

        assert adapter.pending == ["Fallback answer"]

    def test_rejected_draft_discarded(self, settings):
        adapter = StreamAdapter(settings)
        adapter.on_token(StageEvent.token("synthesizer", "Vague draft"))
        state = ConversationState(answer="Vague draft")
        adapter.on_snapshot(StageEvent.snapshot("synthesizer", state))

        state.quality_check_result = QualityCheckResult(passed=False, score=0.3)
        events = adapter.on_snapshot(StageEvent.snapshot("qualityChecker", state))

        assert [e.type for e in events] == ["status"]
        assert adapter.pending == []
        assert adapter.sent_answer == ""

    def test_failed_draft_at_retry_limit_is_final(self, settings):
        adapter = StreamAdapter(settings)
        state = ConversationState(answer="Revised draft", quality_retry_count=1)
        adapter.on_token(StageEvent.token("synthesizer", "Revised draft"))
        adapter.on_snapshot(StageEvent.snapshot("synthesizer", state))

        state.quality_check_result = QualityCheckResult(passed=False, score=0.4)
        events = adapter.on_snapshot(StageEvent.snapshot("qualityChecker", state))

        assert answer_text(events) == "Revised draft"

    def test_non_streaming_answer_sent_from_snapshot(self, settings):
        adapter = StreamAdapter(settings)
        events = adapter.on_snapshot(StageEvent.snapshot("clarify", ConversationState(answer="Which sport?")))
        assert answer_text(events) == "Which sport?"

    def test_disclaimer_sent_as_suffix(self, settings):
        adapter = StreamAdapter(settings)
        adapter.on_snapshot(StageEvent.snapshot("escalate", ConversationState(answer="Call SafeSport.")))

        events = adapter.on_snapshot(
            StageEvent.snapshot("disclaimerGuard", ConversationState(answer="Call SafeSport.\n\n---\n\nDisclaimer"))
        )

        assert answer_text(events) == "\n\n---\n\nDisclaimer"

    def test_diverged_answer_not_resent(self, settings):
        adapter = StreamAdapter(settings)
        adapter.on_snapshot(StageEvent.snapshot("clarify", ConversationState(answer="First")))

        events = adapter.on_snapshot(StageEvent.snapshot("disclaimerGuard", ConversationState(answer="Other")))

        assert answer_text(events) == ""

    def test_citations_and_escalation_sent_once(self, settings):
        adapter = StreamAdapter(settings)
        state = ConversationState(citations=[citation()], escalation=escalation())

        first = adapter.on_snapshot(StageEvent.snapshot("citationBuilder", state))
        second = adapter.on_snapshot(StageEvent.snapshot("disclaimerGuard", state))

        assert [e.type for e in first].count("citations") == 1
        assert [e.type for e in first].count("escalation") == 1
        assert [e.type for e in second] == ["status"]

    def test_snapshot_is_isolated_from_later_mutation(self):
        state = ConversationState(answer="before")
        event = StageEvent.snapshot("synthesizer", state)
        state.answer = "after"
        assert event.state.answer == "before"


class TestAdaptStream:
    async def test_full_turn_sequence(self, settings):
        state = ConversationState(answer="Answer")
        synthesized = StageEvent.snapshot("synthesizer", state)
        state.quality_check_result = QualityCheckResult(passed=True, score=0.9)
        checked = StageEvent.snapshot("qualityChecker", state)
        state.citations = [citation()]
        cited = StageEvent.snapshot("citationBuilder", state)

        events = await collect(
            replay([StageEvent.token("synthesizer", "Ans"), StageEvent.token("synthesizer", "wer"), synthesized, checked, cited]),
            settings,
        )

        types = [e.type for e in events]
        assert answer_text(events) == "Answer"
        assert types.count("citations") == 1
        assert types[-1] == "done"
        assert types.count("done") == 1
        assert "error" not in types

    async def test_source_failure_flushes_then_errors(self, settings):
        async def failing():
            yield StageEvent.token("synthesizer", "Partial answer")
            raise RuntimeError("database password leaked in message")

        events = await collect(failing(), settings)

        assert [e.type for e in events] == ["text-delta", "error", "done"]
        assert events[0].text == "Partial answer"
        assert events[1].error == GENERIC_STREAM_ERROR

    async def test_empty_source_yields_done(self, settings):
        events = await collect(replay([]), settings)
        assert [e.type for e in events] == ["done"]

    async def test_discovered_urls_sent_once_before_done(self, settings):
        state = ConversationState()
        state.web_search_result_urls = ["https://www.usopc.org/athlete-ombuds"]
        researched = StageEvent.snapshot("researcher", state)
        state.answer = "Contact the Ombuds."
        synthesized = StageEvent.snapshot("synthesizer", state)

        events = await collect(replay([researched, synthesized]), settings)

        types = [e.type for e in events]
        assert types.count("discovered-urls") == 1
        assert types[-2:] == ["discovered-urls", "done"]
        assert events[-2].discovered_urls == ["https://www.usopc.org/athlete-ombuds"]

    async def test_discovered_urls_skipped_after_error(self, settings):
        async def failing():
            state = ConversationState(web_search_result_urls=["https://www.usada.org"])
            yield StageEvent.snapshot("researcher", state)
            raise RuntimeError("synthesis crashed")

        events = await collect(failing(), settings)

        assert [e.type for e in events] == ["status", "error", "done"]

    async def test_no_discovered_urls_without_research(self, settings):
        events = await collect(replay([StageEvent.snapshot("synthesizer", ConversationState(answer="A"))]), settings)
        assert "discovered-urls" not in [e.type for e in events]
