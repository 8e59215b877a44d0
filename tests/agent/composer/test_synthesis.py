"""Tests for context assembly and answer synthesis."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.composer.synthesis import (
    EMPTY_QUESTION_ANSWER,
    NO_CONTEXT_MESSAGE,
    SYNTHESIS_ERROR_ANSWER,
    build_context,
    build_synthesis_messages,
    format_document,
    synthesize_answer,
)
from agent.schemas.agent_state import AlternativeSource, QualityCheckResult, QualityIssue


@pytest.fixture
def gateway():
    mock = MagicMock()
    mock.astream = AsyncMock(return_value="Athletes may file under Section 9.")
    return mock


class TestBuildContext:
    def test_empty_context_notice(self):
        assert build_context([], []) == NO_CONTEXT_MESSAGE

    def test_documents_ordered_by_score(self, doc):
        context = build_context([doc("low passage", 0.2), doc("high passage", 0.9)], [])

        assert context.index("high passage") < context.index("low passage")
        assert context.startswith("[Document 1]")

    def test_provenance_header(self, doc):
        passage = doc(
            "Athletes have the right to a hearing.",
            0.81234,
            document_title="USOPC Bylaws",
            section_title="Section 9",
            org_id="usopc",
            authority_level="usopc_governance",
            source_url="https://www.usopc.org/bylaws",
        )

        block = format_document(passage, 0)

        assert "Title: USOPC Bylaws" in block
        assert "Section: Section 9" in block
        assert "Authority Level: USOPC Governance" in block
        assert "Relevance Score: 0.8123" in block
        assert block.endswith("Athletes have the right to a hearing.")

    def test_alternative_sources_listed(self, doc):
        passage = doc("Shared text", 0.7)
        passage.metadata.alternative_sources = [AlternativeSource(title="NGB Handbook", section="Art. 4", score=0.6)]

        assert "Also found in: NGB Handbook - Art. 4" in format_document(passage, 0)

    def test_web_results_follow_documents(self, doc):
        context = build_context([doc("corpus text", 0.6)], ["Title: USADA\nURL: https://www.usada.org"])

        assert context.index("corpus text") < context.index("[Web Search Results]")
        assert "[Web Result 1]" in context


class TestBuildSynthesisMessages:
    def test_revision_feedback_included_for_failed_grade(self):
        feedback = QualityCheckResult(
            passed=False,
            score=0.3,
            issues=[QualityIssue(type="missing_specificity", description="No deadline given", severity="major")],
            critique="State the filing deadline.",
        )

        messages = build_synthesis_messages("ctx", "How long do I have?", intent="deadline", quality_feedback=feedback)
        text = messages[-1].content

        assert "## Revision Feedback" in text
        assert "State the filing deadline." in text
        assert "[major] missing_specificity: No deadline given" in text

    def test_no_feedback_for_passing_grade(self):
        messages = build_synthesis_messages(
            "ctx", "q", quality_feedback=QualityCheckResult(passed=True, score=0.9)
        )
        assert "Revision Feedback" not in messages[-1].content

    def test_history_section(self):
        messages = build_synthesis_messages("ctx", "q", conversation_history="User: earlier question")
        assert "## Conversation History" in messages[-1].content


class TestSynthesizeAnswer:
    async def test_answer_streamed_through_sink(self, gateway):
        sink = AsyncMock()

        answer = await synthesize_answer(gateway, "Can I appeal?", "ctx", on_token=sink)

        assert answer == "Athletes may file under Section 9."
        assert gateway.astream.await_args.kwargs["on_token"] is sink
        assert gateway.astream.await_args.kwargs["role"] == "agent"

    async def test_empty_question(self, gateway):
        assert await synthesize_answer(gateway, "  ", "ctx") == EMPTY_QUESTION_ANSWER
        gateway.astream.assert_not_awaited()

    async def test_llm_failure_returns_apology(self, gateway):
        gateway.astream.side_effect = TimeoutError("slow")
        assert await synthesize_answer(gateway, "Can I appeal?", "ctx") == SYNTHESIS_ERROR_ANSWER

    async def test_blank_completion_returns_apology(self, gateway):
        gateway.astream.return_value = "   "
        assert await synthesize_answer(gateway, "Can I appeal?", "ctx") == SYNTHESIS_ERROR_ANSWER
